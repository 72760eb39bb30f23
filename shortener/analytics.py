"""Best-effort click recording on a bounded background worker pool.

Redirects never wait for analytics. The request path builds an immutable
``ClickFact`` and drops it on a bounded queue; a fixed pool of worker tasks,
started with the application and independent of any request, persists it.

Flow Diagram — Click Hand-off
=============================
::
    request task                       worker tasks (N)
    ────────────                       ────────────────
    ┌─────────────┐
    │ ClickContext │
    └──────┬──────┘
           ▼
    ┌─────────────┐  DNT / disabled
    │ build fact   │──────────────▶ SKIPPED
    │ (anonymize)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐  queue full
    │ put_nowait   │──────────────▶ DROPPED (logged)
    └──────┬──────┘
           │                       ┌─────────────┐
           └─────────────────────▶ │ record fact  │──error──▶ logged
                                   └──────┬──────┘
                                          ▼
                                   ┌─────────────┐
                                   │ counter shard│──error──▶ logged, skipped
                                   └──────┬──────┘
                                          ▼
                                   ┌─────────────┐
                                   │ Kafka event  │──error──▶ logged, skipped
                                   └─────────────┘

How to Use
===========
**Step 1 — Start with the app**::
    recorder = ClickRecorder(ClickStore(database), workers=4, queue_size=1000)
    await recorder.start()

**Step 2 — Hand off from the redirect path**::
    recorder.submit(link, click_context)   # never raises, never awaits

**Step 3 — Drain on shutdown**::
    await recorder.stop()

Key Behaviours
===============
- ``submit`` is synchronous and non-blocking; a client disconnect cannot
  cancel persistence because workers do not run in the request task.
- Each fact is attempted once under ``timeout``; failures are logged and
  counted, never retried and never surfaced to the redirecting caller.
- IPv4 addresses are truncated to /24 and IPv6 to /48 when anonymizing.
"""

import asyncio
import datetime
import ipaddress
import json
import logging
from collections.abc import Mapping

from prometheus_client import Counter, Gauge

from shortener.enums import ClickOutcome
from shortener.errors import StoreError
from shortener.kafka import ClickEventPublisher
from shortener.models import ShortLink, utcnow
from shortener.schemas import ClickContext, ClickFact
from shortener.store import ClickStore

__all__ = [
    "ClickRecorder",
    "anonymize_ip",
    "build_click_fact",
    "encode_query_params",
    "parse_click_context",
]

logger = logging.getLogger("urlshortener.analytics")

MAX_HEADER_VALUE_LENGTH = 500
MAX_QUERY_KEY_LENGTH = 100
MAX_QUERY_VALUE_LENGTH = 500
MAX_QUERY_JSON_LENGTH = 1000
UTM_FIELDS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")

CLICKS_TOTAL = Counter(
    "shortener_clicks_total",
    "Click facts by outcome",
    ["outcome"],
)
CLICK_SHARD_FAILURES_TOTAL = Counter(
    "shortener_click_shard_failures_total",
    "Counter shard increments skipped after an error",
)
CLICK_QUEUE_DEPTH = Gauge(
    "shortener_click_queue_depth",
    "Click facts waiting for a worker",
)


# ============================================================================
# CLICK FACT CONSTRUCTION
# ============================================================================


def anonymize_ip(value: str) -> str | None:
    """Zero the host part of an address; None when ``value`` is not an IP."""
    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError:
        return None

    prefix = 24 if address.version == 4 else 48
    network = ipaddress.ip_network(f"{address}/{prefix}", strict=False)
    return str(network.network_address)


def _truncate(value: str | None, limit: int = MAX_HEADER_VALUE_LENGTH) -> str | None:
    if not value:
        return None
    return value[:limit]


def encode_query_params(params: Mapping[str, str]) -> str | None:
    if not params:
        return None

    trimmed = {key[:MAX_QUERY_KEY_LENGTH]: value[:MAX_QUERY_VALUE_LENGTH] for key, value in params.items()}
    encoded = json.dumps(trimmed, ensure_ascii=False)
    while len(encoded) > MAX_QUERY_JSON_LENGTH and trimmed:
        # Drop whole entries so the stored text stays valid JSON.
        trimmed.pop(next(reversed(trimmed)))
        encoded = json.dumps(trimmed, ensure_ascii=False)
    return encoded if trimmed else None


def build_click_fact(
    link: ShortLink,
    context: ClickContext,
    *,
    anonymize_ips: bool = True,
    occurred_at: datetime.datetime | None = None,
) -> ClickFact:
    ip = None
    if context.ip:
        ip = anonymize_ip(context.ip) if anonymize_ips else context.ip[:45]

    utm = {name: _truncate(context.utm_params.get(name)) for name in UTM_FIELDS}

    return ClickFact(
        short_link_id=link.id,
        occurred_at=occurred_at or utcnow(),
        ip=ip,
        user_agent=_truncate(context.user_agent),
        referrer=_truncate(context.referrer),
        query_params=encode_query_params(context.query_params),
        **utm,
    )


def parse_click_context(
    headers: Mapping[str, str],
    query_params: Mapping[str, str],
    client_host: str | None,
) -> ClickContext:
    """Extract click facts from request headers and query string.

    The client address prefers the first ``X-Forwarded-For`` hop, then
    ``X-Real-IP``, then the socket peer.
    """
    ip = client_host
    forwarded_for = headers.get("x-forwarded-for")
    real_ip = headers.get("x-real-ip")
    if forwarded_for:
        ip = forwarded_for.split(",")[0].strip()
    elif real_ip:
        ip = real_ip.strip()

    params = {key: value for key, value in query_params.items()}
    return ClickContext(
        ip=ip or None,
        user_agent=headers.get("user-agent"),
        referrer=headers.get("referer"),
        utm_params={key: value for key, value in params.items() if key.startswith("utm_")},
        query_params=params,
        do_not_track=headers.get("dnt") == "1" or headers.get("sec-gpc") == "1",
    )


# ============================================================================
# RECORDER
# ============================================================================


class ClickRecorder:
    def __init__(
        self,
        store: ClickStore,
        *,
        workers: int = 4,
        queue_size: int = 1000,
        timeout: float = 5.0,
        enabled: bool = True,
        anonymize_ips: bool = True,
        respect_dnt: bool = True,
        publisher: ClickEventPublisher | None = None,
    ) -> None:
        self._store = store
        self._worker_count = workers
        self._queue: asyncio.Queue[tuple[str, ClickFact]] = asyncio.Queue(maxsize=queue_size)
        self._timeout = timeout
        self._publisher = publisher
        self._workers: list[asyncio.Task] = []
        self.enabled = enabled
        self.anonymize_ips = anonymize_ips
        self.respect_dnt = respect_dnt

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers or not self.enabled:
            return
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"click-recorder-{index}")
            for index in range(self._worker_count)
        ]
        logger.info(f"Click recorder started with {self._worker_count} workers")

    async def stop(self, drain_timeout: float = 5.0) -> None:
        if not self._workers:
            return
        try:
            async with asyncio.timeout(drain_timeout):
                await self._queue.join()
        except TimeoutError:
            logger.warning(f"Click recorder stopped with {self._queue.qsize()} facts undelivered")

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Click recorder stopped")

    async def join(self) -> None:
        """Wait until every submitted fact has been processed."""
        await self._queue.join()

    def submit(self, link: ShortLink, context: ClickContext | None) -> ClickOutcome:
        """Hand a click off to the worker pool without waiting for it."""
        try:
            if not self.enabled or context is None:
                outcome = ClickOutcome.SKIPPED
            elif self.respect_dnt and context.do_not_track:
                outcome = ClickOutcome.SKIPPED
            elif not self._workers:
                logger.warning(f"Click recorder not running, dropping click for {link.code}")
                outcome = ClickOutcome.DROPPED
            else:
                fact = build_click_fact(link, context, anonymize_ips=self.anonymize_ips)
                try:
                    self._queue.put_nowait((link.code, fact))
                except asyncio.QueueFull:
                    logger.warning(f"Click queue full, dropping click for {link.code}")
                    outcome = ClickOutcome.DROPPED
                else:
                    CLICK_QUEUE_DEPTH.set(self._queue.qsize())
                    return ClickOutcome.RECORDED
        except Exception as exc:
            logger.error(f"Click hand-off failed for {link.code}: {exc}")
            outcome = ClickOutcome.FAILED

        CLICKS_TOTAL.labels(outcome=outcome).inc()
        return outcome

    async def count(self, short_link_id: int) -> int:
        return await self._store.count(short_link_id)

    async def last_clicked_at(self, short_link_id: int) -> datetime.datetime | None:
        return await self._store.last_clicked_at(short_link_id)

    async def _worker(self, index: int) -> None:
        while True:
            code, fact = await self._queue.get()
            try:
                await self._process(code, fact)
            except Exception:
                logger.exception(f"Click worker {index} failed on {code}")
                CLICKS_TOTAL.labels(outcome=ClickOutcome.FAILED).inc()
            finally:
                self._queue.task_done()
                CLICK_QUEUE_DEPTH.set(self._queue.qsize())

    async def _process(self, code: str, fact: ClickFact) -> None:
        try:
            async with asyncio.timeout(self._timeout):
                await self._store.record(fact)
        except (StoreError, TimeoutError) as exc:
            logger.error(f"Failed to record click for {code}: {exc}")
            CLICKS_TOTAL.labels(outcome=ClickOutcome.FAILED).inc()
            return

        CLICKS_TOTAL.labels(outcome=ClickOutcome.RECORDED).inc()

        try:
            await self._store.increment_counter_shard(fact.short_link_id)
        except StoreError as exc:
            CLICK_SHARD_FAILURES_TOTAL.inc()
            logger.warning(f"Counter shard update skipped for {code}: {exc}")

        if self._publisher is not None:
            try:
                await self._publisher.publish(code, fact)
            except Exception as exc:
                logger.warning(f"Kafka publish failed for {code}: {exc}")
