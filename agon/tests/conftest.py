"""
Shared pytest configuration for the game scheduling tests.

Runs against TEST_DATABASE_URL when it is set (e.g. a PostgreSQL test
database), otherwise against a throwaway SQLite file per test.

SAFETY: This module REFUSES to run against any database whose name does not
contain the substring "test".  This prevents accidental drop of the
development or production database when environment variables are
misconfigured.
"""

import os
import asyncio
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from agon.database.db import Base
from agon.tests.helpers import create_user, fixed_clock


def _check_test_database_url(url: str) -> str:
    """Raise ``RuntimeError`` unless the database name contains "test"."""
    # Extract the database name (last segment after the final '/').
    db_name = url.rsplit("/", 1)[-1].split("?")[0]  # strip query params
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Resolved URL: {url}\n\n"
            f"  Fix: set TEST_DATABASE_URL to a test database, e.g.:\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../{db_name}_test\n"
            f"  Or unset it to use a temporary SQLite database.\n"
            f"{'=' * 70}"
        )
    return url


# Validated at import time so pytest fails immediately with a clear message
# rather than silently hitting the wrong DB.
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "")
if TEST_DATABASE_URL:
    _check_test_database_url(TEST_DATABASE_URL)


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine with a fresh schema."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'agon_test.db'}"
    _check_test_database_url(url)

    # NullPool avoids "Future attached to different loop" errors across tests
    engine = create_async_engine(url, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens its own sessions (the refresh worker) must see the
    # same database as the test fixtures
    from agon.database import db

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

    await asyncio.sleep(0.05)  # let connections finish
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose(close=True)


@pytest_asyncio.fixture
async def db_session(test_engine):
    """Database session for one test."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


# ---------------------------------------------------------------------------
# Shared data fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def users(db_session):
    """Create five users: an organiser and four players."""
    ids = ["owner", "alice", "bob", "carol", "dave"]
    for user_id in ids:
        await create_user(db_session, user_id)
    return ids


@pytest.fixture
def monday_morning():
    """Clock fixed at Monday 2024-01-01 09:00 UTC."""
    return fixed_clock(2024, 1, 1, 9)
