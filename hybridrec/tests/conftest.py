"""Pytest configuration and shared fixtures."""

import os

# Set test environment variables before any imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_hybridrec.db"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["MODEL_DIR"] = "./test_models"

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest.fixture
async def db_engine(tmp_path):
    """Create a throwaway database with all tables."""
    from hybridrec.storage.db import ensure_schema

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await ensure_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the throwaway database."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def redis_client():
    """In-process Redis with a private server per test."""
    from fakeredis import FakeServer
    from fakeredis.aioredis import FakeRedis

    client = FakeRedis(server=FakeServer(), decode_responses=True)

    yield client

    await client.aclose()
