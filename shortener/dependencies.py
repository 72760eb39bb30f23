"""Dependency injection with an explicitly owned service container.

The container is built once in the application lifespan and stored on
``app.state``; request dependencies read it from there. Nothing is created at
import time, so tests can build as many independent applications as they need.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from shortener.analytics import ClickRecorder
from shortener.cache import LinkCache
from shortener.config import Settings
from shortener.database import Database
from shortener.generator import CodeGenerator
from shortener.kafka import ClickEventPublisher
from shortener.resolver import CollisionResolver
from shortener.service import ShortenerService
from shortener.store import ClickStore, URLStore

__all__ = [
    "ServiceContainer",
    "RequestContext",
    "setup_logger",
    "get_container",
    "get_request_context",
    "get_service",
]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(level: str = "INFO") -> logging.Logger:
    """Configure the ``urlshortener`` logger tree once."""
    logger = logging.getLogger("urlshortener")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level.upper())
    return logger


# ============================================================================
# SERVICE CONTAINER
# ============================================================================


class ServiceContainer:
    """Shared resources for one application instance.

    Owns the database engine, the Redis client, the Kafka producer and the
    click worker pool, and wires them into a single ``ShortenerService``.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.logger = setup_logger(settings.LOG_LEVEL)

        self.database = Database(
            settings.DATABASE_URL,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
        )
        self.url_store = URLStore(self.database, timeout=settings.STORE_TIMEOUT_SECONDS)
        self.click_store = ClickStore(self.database, timeout=settings.CLICK_TIMEOUT_SECONDS)

        self.cache: LinkCache | None = None
        if settings.CACHE_ENABLED:
            client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
            self.cache = LinkCache(client, ttl=settings.CACHE_TTL_SECONDS)

        self.publisher: ClickEventPublisher | None = None
        if settings.KAFKA_ENABLED:
            self.publisher = ClickEventPublisher(settings.KAFKA_BOOTSTRAP_SERVERS, settings.KAFKA_CLICK_TOPIC)

        self.recorder = ClickRecorder(
            self.click_store,
            workers=settings.CLICK_WORKERS,
            queue_size=settings.CLICK_QUEUE_SIZE,
            timeout=settings.CLICK_TIMEOUT_SECONDS,
            enabled=settings.ENABLE_ANALYTICS,
            anonymize_ips=settings.ANONYMIZE_IPS,
            respect_dnt=settings.RESPECT_DNT,
            publisher=self.publisher,
        )
        self.resolver = CollisionResolver(
            self.url_store,
            CodeGenerator(settings.DEFAULT_CODE_LENGTH),
            max_retries=settings.MAX_RETRIES,
            collision_threshold=settings.COLLISION_THRESHOLD,
        )
        self.service = ShortenerService(
            self.url_store,
            self.resolver,
            recorder=self.recorder,
            cache=self.cache,
            max_custom_code_length=settings.MAX_CUSTOM_CODE_LENGTH,
        )

    async def startup(self) -> None:
        await self.database.init()
        if self.publisher is not None:
            await self.publisher.start()
        await self.recorder.start()
        self.logger.info(
            f"{self.settings.APP_NAME} started ({self.settings.APP_ENV}), "
            f"code length {self.resolver.code_length}, analytics {'on' if self.settings.ENABLE_ANALYTICS else 'off'}"
        )

    async def shutdown(self) -> None:
        await self.recorder.stop()
        if self.publisher is not None:
            await self.publisher.stop()
        if self.cache is not None:
            await self.cache.close()
        await self.database.close()
        self.logger.info(f"{self.settings.APP_NAME} stopped")


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking data plus access to the shared container.

    Attributes:
        container: Service container built at startup
        request_id: Unique identifier for this request
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    container: ServiceContainer
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def settings(self) -> Settings:
        return self.container.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(
            self.container.logger,
            {"request_id": self.request_id, "client_ip": self.client_ip, "user_agent": self.user_agent},
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_request_context(
    request: Request,
    container: ServiceContainer = Depends(get_container),
) -> RequestContext:
    return RequestContext(
        container=container,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def get_service(container: ServiceContainer = Depends(get_container)) -> ShortenerService:
    return container.service
