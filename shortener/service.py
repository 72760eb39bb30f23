"""Business logic layer for short-link operations.

This module provides the service facade the HTTP layer talks to: link
creation (random or custom code), redirect resolution, and the management
operations around a link's lifecycle.

Flow Diagram — Link Creation
============================
::
    ┌─────────────┐
    │  POST /api/ │
    │  shorten     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ validate_url │──▶ InvalidURLError / URLTooLongError / MaliciousURLError
    │ normalize    │
    └──────┬──────┘
           ▼
    ┌─────────────┐        custom code?
    │ custom code  │──yes──▶ static checks ─▶ stored reserved ─▶ assign_custom
    └──────┬──────┘
           │ no
           ▼
    ┌─────────────┐
    │ resolver     │──▶ TooManyRetriesError after max_retries
    │ assign()     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache fill   │
    └─────────────┘

Flow Diagram — Redirect
=======================
::
    ┌─────────────┐
    │  GET /:code  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ code format  │──bad──▶ InvalidCodeError (store untouched)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache / store│──miss─▶ LinkNotFoundError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ is_active?   │──no───▶ LinkInactiveError
    │ expired?     │──yes──▶ LinkExpiredError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ submit click │  (fire and forget)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ ShortLink    │
    └─────────────┘

How to Use
===========
**Step 1 — Create a short link**::
    link = await service.create_short_url("https://example.com/path")
    link = await service.create_short_url("https://example.com", custom_code="launch")

**Step 2 — Resolve for a redirect**::
    link = await service.resolve("abc1234", click_context)
    return RedirectResponse(link.target_url, status_code=302)

**Step 3 — Manage**::
    info = await service.get_url_info("abc1234")
    await service.update_url("abc1234", target_url="https://example.org")
    await service.deactivate_url("abc1234")

Key Behaviours
===============
- Every failure is a typed ``ShortenerError``; nothing here builds HTTP responses.
- Inactive takes precedence over expired when both apply.
- Cache entries are invalidated on update and deactivation.
- Click analytics can never fail a redirect.
"""

import datetime
import logging
import time
from dataclasses import dataclass

from prometheus_client import Counter, Histogram

from shortener.analytics import ClickRecorder
from shortener.cache import LinkCache
from shortener.enums import CreationPath, HealthStatus, RedirectOutcome, RequestStatus
from shortener.errors import (
    CodeAlreadyTakenError,
    ConflictError,
    InvalidCodeError,
    InvalidCustomCodeError,
    InvalidInputError,
    LinkExpiredError,
    LinkInactiveError,
    LinkNotFoundError,
    ReservedCodeError,
    ResourceExhaustedError,
    ShortenerError,
    StoreError,
)
from shortener.generator import is_valid_code
from shortener.models import ShortLink, utcnow
from shortener.resolver import CollisionResolver
from shortener.schemas import ClickContext, HealthResponse
from shortener.store import URLStore
from shortener.validation import (
    MAX_CUSTOM_CODE_LENGTH,
    is_custom_code_format,
    normalize_url,
    validate_custom_code,
    validate_url,
)

__all__ = ["ShortenerService", "LinkInfo"]

logger = logging.getLogger("urlshortener.service")

URL_CREATION_REQUESTS_TOTAL = Counter(
    "shortener_url_creation_requests_total",
    "Short link creation requests",
    ["status", "path"],
)
URL_CREATION_DURATION = Histogram(
    "shortener_url_creation_duration_seconds",
    "Short link creation latency",
)
REDIRECTS_TOTAL = Counter(
    "shortener_redirects_total",
    "Redirect resolutions by outcome",
    ["outcome"],
)

REDIRECT_OUTCOMES = {
    InvalidCodeError: RedirectOutcome.INVALID,
    LinkNotFoundError: RedirectOutcome.NOT_FOUND,
    LinkInactiveError: RedirectOutcome.INACTIVE,
    LinkExpiredError: RedirectOutcome.EXPIRED,
}


def _creation_status(exc: ShortenerError) -> RequestStatus:
    if isinstance(exc, InvalidInputError):
        return RequestStatus.VALIDATION_ERROR
    if isinstance(exc, ConflictError):
        return RequestStatus.CONFLICT
    if isinstance(exc, ResourceExhaustedError):
        return RequestStatus.EXHAUSTED
    return RequestStatus.ERROR


def _to_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


@dataclass(frozen=True)
class LinkInfo:
    link: ShortLink
    click_count: int = 0
    last_clicked_at: datetime.datetime | None = None


class ShortenerService:
    """Facade over the resolver, the URL store, the link cache and the click recorder.

    One instance is built at startup and shared by all requests; it holds no
    per-request state.
    """

    def __init__(
        self,
        store: URLStore,
        resolver: CollisionResolver,
        recorder: ClickRecorder | None = None,
        cache: LinkCache | None = None,
        *,
        max_custom_code_length: int = MAX_CUSTOM_CODE_LENGTH,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._recorder = recorder
        self._cache = cache
        self.max_custom_code_length = max_custom_code_length

    @property
    def code_length(self) -> int:
        return self._resolver.code_length

    # ========================================================================
    # CREATION
    # ========================================================================

    async def create_short_url(
        self,
        url: str,
        custom_code: str | None = None,
        expires_at: datetime.datetime | None = None,
    ) -> ShortLink:
        """Bind a validated target to a fresh or caller-chosen code.

        Args:
            url: Raw target URL
            custom_code: Caller-chosen code; empty or None generates one
            expires_at: Optional absolute expiry, stored in UTC

        Returns:
            ShortLink: The persisted link

        Raises:
            InvalidInputError: Target or custom code rejected before any write
            ConflictError: Custom code reserved or already taken
            TooManyRetriesError: Random path ran out of collision retries
            DependencyError: Store or random source failure
        """
        path = CreationPath.CUSTOM if custom_code else CreationPath.RANDOM
        start_time = time.perf_counter()

        try:
            validate_url(url)
            target_url = normalize_url(url)
            expires_at = _to_utc(expires_at)

            if custom_code:
                await self._check_custom_code(custom_code)
                link = await self._resolver.assign_custom(custom_code, target_url, expires_at)
            else:
                link = await self._resolver.assign(target_url, expires_at)
        except ShortenerError as exc:
            status = _creation_status(exc)
            URL_CREATION_REQUESTS_TOTAL.labels(status=status, path=path).inc()
            URL_CREATION_DURATION.observe(time.perf_counter() - start_time)
            if status is RequestStatus.ERROR:
                logger.error(f"Short link creation failed: {exc}")
            else:
                logger.warning(f"Short link creation rejected ({exc.error}): {exc}")
            raise

        if self._cache is not None:
            await self._cache.set(link)

        duration = time.perf_counter() - start_time
        URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, path=path).inc()
        URL_CREATION_DURATION.observe(duration)
        logger.info(f"Short link created: {link.code} -> {link.target_url} in {duration:.3f}s")
        return link

    async def validate_custom_code(self, code: str) -> None:
        """Raise unless ``code`` could be claimed right now.

        Availability is advisory: a concurrent request may still claim the
        code before the caller does.
        """
        if not code:
            raise InvalidCustomCodeError("Custom code is required")
        await self._check_custom_code(code)
        if await self._store.exists(code):
            raise CodeAlreadyTakenError(code)

    async def _check_custom_code(self, code: str) -> None:
        validate_custom_code(code, self.max_custom_code_length)
        if await self._store.is_reserved(code):
            raise ReservedCodeError(code)

    # ========================================================================
    # REDIRECT
    # ========================================================================

    async def resolve(self, code: str, click_context: ClickContext | None = None) -> ShortLink:
        """Return the accessible link for ``code`` and hand a click to the recorder.

        Raises:
            InvalidCodeError: ``code`` is neither a generated nor a custom code shape
            LinkNotFoundError: No link owns ``code``
            LinkInactiveError: The link was deactivated
            LinkExpiredError: The link's expiry has passed
            StoreError: The store failed or timed out
        """
        try:
            link = await self._lookup(code)
        except ShortenerError as exc:
            outcome = REDIRECT_OUTCOMES.get(type(exc))
            if outcome is not None:
                REDIRECTS_TOTAL.labels(outcome=outcome).inc()
                logger.info(f"Redirect refused for {code!r}: {outcome}")
            raise

        REDIRECTS_TOTAL.labels(outcome=RedirectOutcome.REDIRECTED).inc()
        if self._recorder is not None:
            try:
                self._recorder.submit(link, click_context)
            except Exception as exc:
                logger.error(f"Click hand-off failed for {code}: {exc}")
        return link

    async def _lookup(self, code: str) -> ShortLink:
        if not (is_valid_code(code) or is_custom_code_format(code, self.max_custom_code_length)):
            raise InvalidCodeError(f"Invalid short code: {code[:64]!r}")

        link = await self._cache.get(code) if self._cache is not None else None
        if link is None:
            link = await self._store.get_by_code(code)
            if link is None:
                raise LinkNotFoundError(code)
            if self._cache is not None:
                await self._cache.set(link)

        if not link.is_active:
            raise LinkInactiveError(code)
        if link.is_expired():
            raise LinkExpiredError(code)
        return link

    # ========================================================================
    # MANAGEMENT
    # ========================================================================

    async def get_url_info(self, code: str) -> LinkInfo:
        link = await self._store.get_by_code(code)
        if link is None:
            raise LinkNotFoundError(code)

        if self._recorder is None:
            return LinkInfo(link=link)

        try:
            click_count = await self._recorder.count(link.id)
            last_clicked_at = await self._recorder.last_clicked_at(link.id)
        except StoreError as exc:
            logger.warning(f"Click facts unavailable for {code}: {exc}")
            return LinkInfo(link=link)

        return LinkInfo(link=link, click_count=click_count, last_clicked_at=_to_utc(last_clicked_at))

    async def update_url(
        self,
        code: str,
        *,
        target_url: str | None = None,
        is_active: bool | None = None,
        expires_at: datetime.datetime | None = None,
    ) -> ShortLink:
        fields: dict = {}
        if target_url is not None:
            validate_url(target_url)
            fields["target_url"] = normalize_url(target_url)
        if is_active is not None:
            fields["is_active"] = is_active
        if expires_at is not None:
            fields["expires_at"] = _to_utc(expires_at)

        if not fields:
            link = await self._store.get_by_code(code)
            if link is None:
                raise LinkNotFoundError(code)
            return link

        link = await self._store.update(code, **fields)
        if self._cache is not None:
            await self._cache.invalidate(code)
        logger.info(f"Short link updated: {code} ({', '.join(sorted(fields))})")
        return link

    async def deactivate_url(self, code: str) -> None:
        await self._store.deactivate(code)
        if self._cache is not None:
            await self._cache.invalidate(code)

    async def get_recent_urls(self, limit: int = 50, days: int = 7) -> list[ShortLink]:
        assert limit > 0, f"limit must be positive, got {limit!r}"
        since = utcnow() - datetime.timedelta(days=days)
        return await self._store.list_created_since(since, limit)

    async def cleanup_expired(self) -> int:
        return await self._store.cleanup_expired()

    async def health(self) -> HealthResponse:
        database_status = HealthStatus.HEALTHY
        try:
            await self._store.ping()
        except StoreError as exc:
            logger.error(f"Database health check failed: {exc}")
            database_status = HealthStatus.UNHEALTHY

        if self._cache is None:
            cache_status = HealthStatus.DISABLED
        elif await self._cache.ping():
            cache_status = HealthStatus.HEALTHY
        else:
            cache_status = HealthStatus.UNHEALTHY

        status = (
            HealthStatus.HEALTHY
            if database_status is HealthStatus.HEALTHY and cache_status is not HealthStatus.UNHEALTHY
            else HealthStatus.UNHEALTHY
        )
        return HealthResponse(
            status=status,
            database=database_status,
            cache=cache_status,
            code_length=self.code_length,
        )
