"""
Shared pytest configuration for pickleclub tests.

Store tests run against TEST_DATABASE_URL, which defaults to an in-memory
SQLite database (aiosqlite). Point it at a PostgreSQL test database to run
the same tests against the production dialect.

SAFETY: This module REFUSES to run against any non-SQLite database whose
name does not contain the substring "test". The fixtures drop and recreate
every table.
"""

import os
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from pickleclub.database import db
from pickleclub.database.db import Base
from pickleclub.utils.datetime_utils import as_utc
from in_memory_store import InMemoryCapacityStore


def _resolve_test_database_url() -> str:
    """Build the test database URL with safety checks.

    Raises ``RuntimeError`` if the URL is not SQLite and does not point to a
    database whose name contains "test".
    """
    url = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    if url.startswith("sqlite"):
        return url

    # ── Safety gate: database name MUST contain "test" ──────────────────
    db_name = url.rsplit("/", 1)[-1].split("?")[0]  # strip query params
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Fix: unset TEST_DATABASE_URL to use in-memory SQLite, or\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../{db_name}_test\n"
            f"{'=' * 70}"
        )
    return url


TEST_DATABASE_URL = _resolve_test_database_url()

# Fixed reference time shared by engine and store tests
NOW = as_utc(datetime(2026, 3, 14, 8, 0, 0))


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def starts_soon(now):
    """Start time inside a 60 minute cutoff window."""
    return now + timedelta(minutes=30)


@pytest.fixture
def store() -> InMemoryCapacityStore:
    return InMemoryCapacityStore()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine with a fresh schema."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared connection, otherwise each checkout sees a new empty database
        engine = create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens db.AsyncSessionLocal() (sqlalchemy_transaction) must
    # hit the test database too
    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """Session for seeding and inspecting the test database."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
