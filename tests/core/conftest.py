"""Shared fixtures for EatLocal core service tests."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

import eatlocal.db.models  # noqa: F401 -- registers all tables with SQLModel.metadata
from eatlocal.core.channels import DispatchResult
from eatlocal.db.engine import create_async_engine_from_url
from eatlocal.types import Channel


class FakeClock:
    """Settable naive-UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingDispatcher:
    """Dispatcher double that records calls and replays scripted results."""

    encode = None

    def __init__(self, channel: Channel, *results: DispatchResult) -> None:
        self.channel = channel
        self.results = list(results)
        self.calls: list[dict] = []

    async def dispatch(self, destination, subject, body, *, data=None) -> DispatchResult:
        self.calls.append(
            {"destination": destination, "subject": subject, "body": body, "data": data}
        )
        if self.results:
            return self.results.pop(0)
        return DispatchResult(success=True, external_id=f"ext-{len(self.calls)}")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine so concurrent sessions get real connections."""
    eng = create_async_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'core.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as sess:
        yield sess


@pytest.fixture
def make_dispatcher():
    """Return the :class:`RecordingDispatcher` class for building doubles."""
    return RecordingDispatcher
