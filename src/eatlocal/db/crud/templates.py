"""CRUD operations for NotificationTemplate entities."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from eatlocal.db.models import NotificationTemplate


async def create_template(
    session: AsyncSession,
    name: str,
    body: str,
    *,
    subject: str | None = None,
    sms_body: str | None = None,
    is_active: bool = True,
) -> NotificationTemplate:
    """Create a named template.  ``supports_sms`` follows from *sms_body*."""
    template = NotificationTemplate(
        name=name,
        subject=subject,
        body=body,
        sms_body=sms_body,
        supports_sms=sms_body is not None,
        is_active=is_active,
    )
    session.add(template)
    await session.commit()
    await session.refresh(template)
    return template


async def get_active_template(
    session: AsyncSession, name: str
) -> NotificationTemplate | None:
    """Get the active template called *name*, or ``None``."""
    stmt = select(NotificationTemplate).where(
        NotificationTemplate.name == name,
        NotificationTemplate.is_active.is_(True),  # type: ignore[attr-defined]
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
