"""FastAPI application entry point for the short-link service.

Application Lifecycle Diagram
=============================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌──────────────┐
    │ create_app() │
    │ + CORS       │
    │ + /metrics   │
    └──────┬───────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ startup:    │
    │ container   │
    │ (db, cache, │
    │  kafka,     │
    │  workers)   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ shutdown:   │
    │ drain clicks│
    │ close all   │
    └─────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8080

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8080/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

**Step 3 — Build an isolated app for tests**::
    app = create_app(Settings(DATABASE_URL="sqlite+aiosqlite:///./test.db", CACHE_ENABLED=False))

Key Behaviours
===============
- Database tables are created on startup; the click worker pool starts with
  the app and is drained on shutdown.
- ``ShortenerError`` subclasses become ``ErrorResponse`` bodies with the
  status code the class declares.
- Prometheus metrics are exposed at ``/metrics``.
"""

__all__ = ["app", "create_app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import Settings, get_settings
from shortener.dependencies import ServiceContainer
from shortener.errors import DependencyError, ShortenerError
from shortener.routes import router
from shortener.schemas import ErrorResponse

logger = logging.getLogger("urlshortener")


async def shortener_error_handler(request: Request, exc: ShortenerError) -> JSONResponse:
    if isinstance(exc, DependencyError):
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    body = ErrorResponse(error=exc.error, message=exc.public_message, code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        container = ServiceContainer(settings)
        await container.startup()
        app.state.container = container
        yield
        # Shutdown
        await container.shutdown()

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Short-link service: create, resolve and manage short codes",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ShortenerError, shortener_error_handler)

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(app).expose(app)

    app.include_router(router)
    return app


app = create_app()
