"""FastAPI route definitions for the short-link REST API.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/shorten
        ├─ URLCreate (request body)
        └─ URLResponse (201) or 400 / 409 / 503

    GET    /api/urls?limit=
        └─ list[URLResponse] (200), newest first, last 7 days

    GET    /api/urls/:code
        └─ URLInfoResponse (200) or 404

    PUT    /api/urls/:code
        ├─ URLUpdate (request body)
        └─ URLResponse (200) or 400 / 404

    DELETE /api/urls/:code
        └─ 204 or 404

    GET    /api/validate/:code
        └─ CodeAvailabilityResponse (200)

    GET    /:code
        └─ 302 Redirect or 400 / 403 / 404 / 410

How to Use
===========
**Step 1 — Include the router**::
    from shortener.routes import router
    app.include_router(router)

**Step 2 — Call the API**::
    POST http://localhost:8080/api/shorten
    {"url": "https://example.com", "custom_code": "launch"}

    GET http://localhost:8080/launch

Key Behaviours
===============
- Handlers raise typed ``ShortenerError`` subclasses; the exception handler in
  ``shortener.main`` turns them into ``ErrorResponse`` bodies.
- Redirects are 302 so every visit comes back through the service.
- ``/api/...`` routes are declared before the catch-all ``/{code}`` route.
"""

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse

from shortener.analytics import parse_click_context
from shortener.dependencies import RequestContext, get_request_context, get_service
from shortener.errors import ConflictError, InvalidInputError
from shortener.schemas import (
    CodeAvailabilityResponse,
    HealthResponse,
    URLCreate,
    URLInfoResponse,
    URLResponse,
    URLUpdate,
)
from shortener.service import ShortenerService

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_service),
) -> HealthResponse:
    health = await service.health()
    ctx.logger.debug(f"Health check completed: {health.status.value}")
    return health


@router.post("/api/shorten", response_model=URLResponse, status_code=201, tags=["urls"])
async def shorten_url(
    payload: URLCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_service),
) -> URLResponse:
    ctx.logger.info(f"URL shortening requested: {payload.url[:200]}")
    link = await service.create_short_url(payload.url, payload.custom_code, payload.expires_at)
    ctx.logger.info(f"URL shortened: {link.code} in {ctx.get_duration():.1f}ms")
    return URLResponse.from_link(link, ctx.settings.BASE_URL)


@router.get("/api/urls", response_model=list[URLResponse], tags=["urls"])
async def list_recent_urls(
    limit: int = Query(50, ge=1, le=100),
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_service),
) -> list[URLResponse]:
    links = await service.get_recent_urls(limit)
    return [URLResponse.from_link(link, ctx.settings.BASE_URL) for link in links]


@router.get("/api/urls/{code}", response_model=URLInfoResponse, tags=["urls"])
async def get_url_info(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_service),
) -> URLInfoResponse:
    info = await service.get_url_info(code)
    base = URLResponse.from_link(info.link, ctx.settings.BASE_URL)
    return URLInfoResponse(
        **base.model_dump(),
        click_count=info.click_count,
        last_clicked=info.last_clicked_at,
    )


@router.put("/api/urls/{code}", response_model=URLResponse, tags=["urls"])
async def update_url(
    code: str,
    payload: URLUpdate,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_service),
) -> URLResponse:
    link = await service.update_url(
        code,
        target_url=payload.target_url,
        is_active=payload.is_active,
        expires_at=payload.expires_at,
    )
    return URLResponse.from_link(link, ctx.settings.BASE_URL)


@router.delete("/api/urls/{code}", status_code=204, tags=["urls"])
async def deactivate_url(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_service),
) -> Response:
    await service.deactivate_url(code)
    ctx.logger.info(f"Short link deactivated via API: {code}")
    return Response(status_code=204)


@router.get("/api/validate/{code}", response_model=CodeAvailabilityResponse, tags=["urls"])
async def check_code_availability(
    code: str,
    service: ShortenerService = Depends(get_service),
) -> CodeAvailabilityResponse:
    try:
        await service.validate_custom_code(code)
    except (InvalidInputError, ConflictError) as exc:
        return CodeAvailabilityResponse(code=code, available=False, reason=exc.public_message)
    return CodeAvailabilityResponse(code=code, available=True)


@router.get("/{code}", tags=["redirect"])
async def redirect_to_url(
    code: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_service),
) -> RedirectResponse:
    click_context = parse_click_context(
        request.headers,
        request.query_params,
        request.client.host if request.client else None,
    )
    link = await service.resolve(code, click_context)
    ctx.logger.debug(f"Redirect: {code} -> {link.target_url} in {ctx.get_duration():.1f}ms")
    return RedirectResponse(url=link.target_url, status_code=302)
