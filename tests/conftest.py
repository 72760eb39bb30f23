"""Shared pytest fixtures for store, service and API tests."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from shortener.analytics import ClickRecorder
from shortener.config import Settings
from shortener.database import Database
from shortener.generator import CodeGenerator
from shortener.main import create_app
from shortener.resolver import CollisionResolver
from shortener.service import ShortenerService
from shortener.store import ClickStore, URLStore


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def settings(database_url: str) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=database_url,
        BASE_URL="http://test",
        CACHE_ENABLED=False,
        KAFKA_ENABLED=False,
        CLICK_WORKERS=2,
        LOG_LEVEL="DEBUG",
    )


@pytest_asyncio.fixture(scope="function")
async def database(database_url: str) -> AsyncGenerator[Database, None]:
    db = Database(database_url)
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def url_store(database: Database) -> URLStore:
    return URLStore(database, timeout=5.0)


@pytest.fixture
def click_store(database: Database) -> ClickStore:
    return ClickStore(database, timeout=5.0)


@pytest_asyncio.fixture(scope="function")
async def recorder(click_store: ClickStore) -> AsyncGenerator[ClickRecorder, None]:
    recorder = ClickRecorder(click_store, workers=2, queue_size=100)
    await recorder.start()
    yield recorder
    await recorder.stop()


@pytest.fixture
def service(url_store: URLStore, recorder: ClickRecorder) -> ShortenerService:
    resolver = CollisionResolver(url_store, CodeGenerator(7), max_retries=5, collision_threshold=3)
    return ShortenerService(url_store, resolver, recorder=recorder)


@pytest_asyncio.fixture(scope="function")
async def app(settings: Settings) -> AsyncGenerator[FastAPI, None]:
    application = create_app(settings)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture(scope="function")
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
