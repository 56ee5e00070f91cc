"""Durable fixed-window counter operations on ``rate_limits``.

Every function takes ``session: AsyncSession`` as its first parameter.
All mutations are single-row conditional statements (``UPDATE ... WHERE``,
``INSERT ... ON CONFLICT DO NOTHING``) so the store's own atomicity decides
between concurrent callers; nothing here reads a count and writes it back.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from eatlocal.db.models import RateLimitEntry
from eatlocal.errors import RateLimitBackendError
from eatlocal.types import WindowState

logger = logging.getLogger(__name__)

# Rounds of increment / insert / re-read before giving up on a key that
# keeps changing underneath us.
MAX_CONTENTION_ROUNDS: int = 3

# Expired rows removed by the sweep inside each check; the rest are left to
# RateLimiter.sweep() and `eatlocal sweep-rate-limits`.
LAZY_SWEEP_BATCH: int = 100


def _insert(session: AsyncSession):  # noqa: ANN202
    """Return the dialect-specific ``insert`` that supports ON CONFLICT."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


async def sweep_expired(
    session: AsyncSession,
    now: datetime,
    *,
    batch: int | None = None,
    commit: bool = True,
) -> int:
    """Delete counters whose window ended at or before *now*.

    With *batch*, at most that many rows are deleted, skipping rows another
    transaction has locked (PostgreSQL).  Returns the number of rows deleted.
    """
    condition = RateLimitEntry.reset_at <= now
    if batch is not None:
        expired = (
            select(RateLimitEntry.key)
            .where(condition)
            .limit(batch)
            .with_for_update(skip_locked=True)
        )
        condition = RateLimitEntry.key.in_(expired)  # type: ignore[attr-defined]
    stmt = (
        delete(RateLimitEntry)
        .where(condition)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if commit:
        await session.commit()
    return result.rowcount or 0


async def _try_increment(
    session: AsyncSession, key: str, limit: int, now: datetime
) -> WindowState | None:
    stmt = (
        update(RateLimitEntry)
        .where(
            RateLimitEntry.key == key,
            RateLimitEntry.reset_at > now,
            RateLimitEntry.count < limit,
        )
        .values(count=RateLimitEntry.count + 1, last_request=now)
        .returning(RateLimitEntry.count, RateLimitEntry.window_start, RateLimitEntry.reset_at)
        .execution_options(synchronize_session=False)
    )
    row = (await session.execute(stmt)).first()
    if row is None:
        return None
    # Positional: Row.count is the tuple method, not the column.
    count, window_start, reset_at = row[0], row[1], row[2]
    return WindowState(True, count, window_start, reset_at)


async def _try_open_window(
    session: AsyncSession, key: str, window: timedelta, now: datetime
) -> WindowState | None:
    stmt = (
        _insert(session)(RateLimitEntry)
        .values(
            key=key,
            window_start=now,
            reset_at=now + window,
            count=1,
            last_request=now,
            created_at=now,
        )
        .on_conflict_do_nothing(index_elements=["key"])
        .returning(RateLimitEntry.count)
    )
    row = (await session.execute(stmt)).first()
    if row is None:
        return None
    return WindowState(True, 1, now, now + window)


async def _try_replace_expired(
    session: AsyncSession,
    key: str,
    stale_reset_at: datetime,
    window: timedelta,
    now: datetime,
) -> WindowState | None:
    stmt = (
        update(RateLimitEntry)
        .where(RateLimitEntry.key == key, RateLimitEntry.reset_at == stale_reset_at)
        .values(count=1, window_start=now, reset_at=now + window, last_request=now)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if not result.rowcount:
        return None
    return WindowState(True, 1, now, now + window)


async def increment_or_reject(
    session: AsyncSession,
    key: str,
    limit: int,
    window_seconds: float,
    now: datetime,
) -> WindowState:
    """Admit one request against *key* or report that the window is full.

    Runs in a single transaction: lazy sweep, conditional increment of the
    live row, insert-if-absent for a fresh window, and finally a re-read to
    build the denial.  A row another caller created between our increment
    and our insert is retried, bounded by :data:`MAX_CONTENTION_ROUNDS`.

    Raises
    ------
    RateLimitBackendError
        If the key stays contended for every round.
    """
    window = timedelta(seconds=window_seconds)
    await sweep_expired(session, now, batch=LAZY_SWEEP_BATCH, commit=False)

    for _ in range(MAX_CONTENTION_ROUNDS):
        state = await _try_increment(session, key, limit, now)
        if state is None:
            state = await _try_open_window(session, key, window, now)
        if state is not None:
            await session.commit()
            return state

        entry = await get_entry(session, key)
        if entry is None:
            # Deleted between our statements; start over.
            continue
        if entry.reset_at <= now:
            state = await _try_replace_expired(session, key, entry.reset_at, window, now)
            if state is not None:
                await session.commit()
                return state
            continue
        if entry.count >= limit:
            await session.commit()
            return WindowState(False, entry.count, entry.window_start, entry.reset_at)
        logger.debug("Counter %s changed under contention, retrying", key)

    await session.rollback()
    raise RateLimitBackendError(f"Counter {key!r} stayed contended for {MAX_CONTENTION_ROUNDS} rounds")


async def get_entry(session: AsyncSession, key: str) -> RateLimitEntry | None:
    """Return the stored counter row for *key*, live or not."""
    stmt = (
        select(RateLimitEntry)
        .where(RateLimitEntry.key == key)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def reset_key(session: AsyncSession, key: str) -> bool:
    """Drop the counter for *key* (admin unblock).  Returns ``True`` if one existed."""
    stmt = (
        delete(RateLimitEntry)
        .where(RateLimitEntry.key == key)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()
    return bool(result.rowcount)


async def count_live(session: AsyncSession, now: datetime) -> int:
    """Count counters whose window is still open at *now*."""
    stmt = select(func.count()).select_from(RateLimitEntry).where(RateLimitEntry.reset_at > now)
    result = await session.execute(stmt)
    return result.scalar_one()
