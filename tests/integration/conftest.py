"""Shared fixtures for integration tests requiring a live PostgreSQL."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from tracker_sync.config import get_settings
from tracker_sync.storage.orm import Base, TrackerUser

# ── Engine ─────────────────────────────────────────────────────


@pytest.fixture()
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an async engine from settings and make sure tables exist."""
    engine = create_async_engine(
        get_settings().database_url,
        pool_size=5,
        max_overflow=0,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


# ── Session with savepoint rollback ───────────────────────────────


@pytest.fixture()
async def db_session(
    async_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Provide a session wrapped in a transaction, rolled back after test.

    Nested ``begin_nested()`` calls become SAVEPOINTs inside it.
    """
    async with async_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(
            bind=conn,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )

        yield session

        await session.close()
        await trans.rollback()


# ── Seed fixtures ─────────────────────────────────────────────────


async def _make_user(session: AsyncSession, *tracker_uids: str) -> TrackerUser:
    suffix = uuid.uuid4().hex[:8]
    user = TrackerUser(
        tracker_uids=list(tracker_uids),
        display=f"User {suffix}",
        email=f"{suffix}@example.com",
        login=f"user-{suffix}",
    )
    session.add(user)
    await session.flush()
    return user


@pytest.fixture()
async def seed_user(db_session: AsyncSession) -> TrackerUser:
    """Tracker user with two tracker ids."""
    return await _make_user(db_session, "1100000000000001", "1100000000000002")


@pytest.fixture()
def user_factory(
    db_session: AsyncSession,
) -> Callable[..., Awaitable[TrackerUser]]:
    """Create further users: ``await user_factory("1100...")``."""

    async def create(*tracker_uids: str) -> TrackerUser:
        return await _make_user(db_session, *tracker_uids)

    return create
