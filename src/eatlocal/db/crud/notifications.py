"""CRUD operations for the in-app notification inbox (``notifications``)."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from eatlocal.db.models import InAppNotification


async def create_notification(
    session: AsyncSession,
    user_id: str,
    title: str,
    message: str,
    *,
    type: str = "general",  # noqa: A002 -- column name
    action_url: str | None = None,
    payload: dict | None = None,
) -> InAppNotification:
    """Append an unread notification to *user_id*'s inbox."""
    notification = InAppNotification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        action_url=action_url,
        payload=payload,
    )
    session.add(notification)
    await session.commit()
    await session.refresh(notification)
    return notification


async def list_for_user(
    session: AsyncSession, user_id: str, *, unread_only: bool = False, limit: int = 50
) -> list[InAppNotification]:
    """List *user_id*'s notifications, newest first."""
    stmt = select(InAppNotification).where(InAppNotification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(InAppNotification.is_read.is_(False))  # type: ignore[attr-defined]
    stmt = stmt.order_by(InAppNotification.created_at.desc()).limit(limit)  # type: ignore[attr-defined]
    result = await session.execute(stmt)
    return list(result.scalars().all())
