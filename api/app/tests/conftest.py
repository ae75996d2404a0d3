"""Shared pytest fixtures for API tests and database isolation."""

from __future__ import annotations

import os
import uuid

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./vara_test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("OPS_ADMIN_EMAILS", "ops@example.com")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.api.deps import get_db, get_recommendation_service
from app.core.config import settings
from app.db.base import Base
from app.ingestion.observability import upstream_monitor
from app.main import app
from app.recommender.taxonomy import TaxonomyCache
from app.recommender.understanding import HeuristicExtractor, QueryUnderstanding
from app.services.recommendation_service import RecommendationService
from app.tests.utils import FakeCatalog


@pytest.fixture(autouse=True)
def _reset_upstream_monitor():
    upstream_monitor.reset()
    yield
    upstream_monitor.reset()


@pytest_asyncio.fixture()
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    database_url = settings.test_database_url or f"sqlite+aiosqlite:///{tmp_path / 'vara.db'}"
    url = make_url(database_url)
    schema_name: str | None = None
    engine = create_async_engine(database_url, future=True)
    if url.drivername.startswith("postgresql"):
        # Isolate each test run in its own schema for parallel-friendly cleanup.
        schema_name = f"test_{uuid.uuid4().hex}"
        engine = engine.execution_options(schema_translate_map={None: schema_name})
    async with engine.begin() as conn:
        if schema_name:
            await conn.exec_driver_sql(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"')
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    finally:
        async with engine.begin() as conn:
            if schema_name:
                await conn.exec_driver_sql(f'DROP SCHEMA IF EXISTS "{schema_name}" CASCADE')
            else:
                await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest_asyncio.fixture()
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture()
def recommendation_service(catalog: FakeCatalog) -> RecommendationService:
    """Service wired to the fake catalog with heuristic-only understanding."""
    return RecommendationService(
        catalog=catalog,
        taxonomy=TaxonomyCache(catalog, ttl_seconds=60),
        understanding=QueryUnderstanding([HeuristicExtractor()]),
    )


@pytest_asyncio.fixture()
async def client(session: AsyncSession, recommendation_service: RecommendationService) -> AsyncClient:
    async def _get_test_db():
        yield session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_recommendation_service] = lambda: recommendation_service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as async_client:
        yield async_client
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_recommendation_service, None)
