"""CRUD operations for SystemLog entities.

The system log is **append-only** -- no update or delete operations are
provided.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from eatlocal.db.models import SystemLog


async def log_event(
    session: AsyncSession,
    log_type: str,
    action: str,
    *,
    target: str | None = None,
    details: dict | None = None,
    success: bool = True,
) -> SystemLog:
    """Append an entry to the system log."""
    entry = SystemLog(
        log_type=log_type,
        action=action,
        target=target,
        details=details,
        success=success,
    )
    session.add(entry)
    await session.commit()
    await session.refresh(entry)
    return entry


async def query_system_log(
    session: AsyncSession,
    log_type: str | None = None,
    action: str | None = None,
    limit: int = 100,
) -> list[SystemLog]:
    """Query the log with optional filters, newest first."""
    stmt = select(SystemLog)
    if log_type is not None:
        stmt = stmt.where(SystemLog.log_type == log_type)
    if action is not None:
        stmt = stmt.where(SystemLog.action == action)
    stmt = stmt.order_by(SystemLog.id.desc()).limit(limit)  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return list(result.scalars().all())
