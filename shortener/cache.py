"""Redis read-through cache for short links on the redirect hot path.

Flow Diagram — Cached Lookup
============================
::
    ┌─────────────┐
    │  GET /:code  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Redis GET    │
    │ link:{code}  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ URLStore│  │ Rebuild │
│ lookup  │  │ detached│
└────┬────┘  │ link    │
     ▼       └─────────┘
┌─────────┐
│ SETEX    │
│ (TTL)    │
└─────────┘

How to Use
===========
**Step 1 — Build on startup**::
    client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    cache = LinkCache(client, ttl=settings.CACHE_TTL_SECONDS)

**Step 2 — Read / fill / invalidate**::
    link = await cache.get("abc1234")
    await cache.set(link)
    await cache.invalidate("abc1234")

Key Behaviours
===============
- The payload keeps ``is_active`` and ``expires_at`` so the lifecycle check at
  redirect time still applies to cached links.
- Updates and deactivations invalidate the key; other instances see changes
  within the TTL.
- Redis failures are logged and treated as a miss; the store stays authoritative.
"""

import logging

import redis.asyncio as redis
from prometheus_client import Counter

from shortener.models import ShortLink
from shortener.schemas import CachedLinkPayload

__all__ = ["LinkCache", "DEFAULT_CACHE_TTL_SECONDS"]

logger = logging.getLogger("urlshortener.cache")

DEFAULT_CACHE_TTL_SECONDS = 3600  # 1 hour

CACHE_REQUESTS_TOTAL = Counter(
    "shortener_link_cache_requests_total",
    "Link cache lookups",
    ["result"],
)


class LinkCache:
    def __init__(self, client: redis.Redis, ttl: int = DEFAULT_CACHE_TTL_SECONDS) -> None:
        self._client = client
        self._ttl = ttl

    @staticmethod
    def _key(code: str) -> str:
        return f"link:{code}"

    async def get(self, code: str) -> ShortLink | None:
        try:
            cached = await self._client.get(self._key(code))
        except redis.RedisError as exc:
            logger.warning(f"Cache read failed for {code}: {exc}")
            CACHE_REQUESTS_TOTAL.labels(result="error").inc()
            return None

        if not cached:
            CACHE_REQUESTS_TOTAL.labels(result="miss").inc()
            return None

        try:
            payload = CachedLinkPayload.model_validate_json(cached)
        except ValueError as exc:
            logger.error(f"Cache deserialization error for {code}: {exc}")
            CACHE_REQUESTS_TOTAL.labels(result="error").inc()
            return None

        CACHE_REQUESTS_TOTAL.labels(result="hit").inc()
        return ShortLink(
            id=payload.id,
            code=payload.code,
            target_url=payload.target_url,
            is_active=payload.is_active,
            created_at=payload.created_at,
            expires_at=payload.expires_at,
        )

    async def set(self, link: ShortLink) -> None:
        payload = CachedLinkPayload.model_validate(link)
        try:
            await self._client.setex(self._key(link.code), self._ttl, payload.model_dump_json())
        except redis.RedisError as exc:
            logger.warning(f"Cache write failed for {link.code}: {exc}")

    async def invalidate(self, code: str) -> None:
        try:
            await self._client.delete(self._key(code))
        except redis.RedisError as exc:
            logger.warning(f"Cache invalidation failed for {code}: {exc}")

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError as exc:
            logger.error(f"Cache health check failed: {exc}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
