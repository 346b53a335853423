"""
Shared fixtures.

Storage-backed tests run against an in-memory SQLite database through
aiosqlite; each test gets a fresh schema.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.database import Base
from app.models.availability import StateChangeEvent
from app.models.polling import ApiToken

T0 = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)  # a Monday


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def add_events(db, statuses, start=T0, step_seconds=30, account_id=1, device_id="dev-1"):
    """Insert events directly, bypassing the append hook."""
    events = []
    for i, status in enumerate(statuses):
        event = StateChangeEvent(
            account_id=account_id,
            device_id=device_id,
            status=status,
            occurred_at=start + timedelta(seconds=i * step_seconds),
            detection_method="polling",
            retry_attempts=0,
        )
        db.add(event)
        events.append(event)
    await db.commit()
    return events


async def add_token(db, account_id=1, expires_in=timedelta(hours=1), token="tok-1"):
    db.add(ApiToken(
        account_id=account_id,
        access_token=token,
        expires_at=datetime.now(timezone.utc) + expires_in,
    ))
    await db.commit()
