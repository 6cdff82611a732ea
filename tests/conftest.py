"""
Global pytest configuration and fixtures for dynamic pricing tests.
"""

import asyncio
import os

# Keep the test run away from any developer .env database
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("OBSERVABILITY__LOG_FORMAT", "console")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dynamic_pricing.db import create_all_tables_async, drop_all_tables_async


@pytest_asyncio.fixture
async def async_db_engine():
    """In-memory SQLite engine with the pricing tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,  # Required for SQLite in-memory async
    )
    await create_all_tables_async(engine)

    try:
        yield engine
    finally:
        await drop_all_tables_async(engine)
        await engine.dispose()
        await asyncio.sleep(0)


@pytest_asyncio.fixture
async def async_db_session(async_db_engine):
    """Async database session."""
    SessionMaker = async_sessionmaker(async_db_engine, expire_on_commit=False)
    async with SessionMaker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest.fixture
def session_maker(async_db_engine):
    """Session factory bound to the test engine, for multi-session scenarios."""
    return async_sessionmaker(async_db_engine, expire_on_commit=False)
