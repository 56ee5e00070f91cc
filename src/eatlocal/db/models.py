"""SQLModel table definitions for the EatLocal core database.

The rate limiter owns ``rate_limits``; the notification queue owns
``notification_queue`` and reads/writes the supporting tables
(templates, in-app inbox, profiles, roles, system log).

Usage::

    from eatlocal.db.models import NotificationJob, RateLimitEntry
    from sqlmodel import SQLModel

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Index, UniqueConstraint, func
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Current UTC time as a naive ``datetime`` (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class RateLimitEntry(SQLModel, table=True):
    """Fixed-window counter for one ``endpoint:identifier`` key.

    The row is live while ``now < reset_at``.
    """

    __tablename__ = "rate_limits"

    key: str = Field(primary_key=True)
    window_start: datetime
    reset_at: datetime = Field(index=True)
    count: int = Field(default=0)
    last_request: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"server_default": func.now()})


# ---------------------------------------------------------------------------
# Notification queue
# ---------------------------------------------------------------------------


class NotificationJob(SQLModel, table=True):
    """A queued notification awaiting dispatch over one channel."""

    __tablename__ = "notification_queue"
    __table_args__ = (
        Index("ix_notification_queue_status_scheduled", "status", "scheduled_for"),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str | None = Field(default=None, index=True)
    email: str | None = None
    phone: str | None = None
    template_id: int | None = None
    channel: str
    subject: str | None = None
    body: str
    data: dict = Field(default_factory=dict, sa_type=JSON)
    scheduled_for: datetime = Field(default_factory=utcnow)
    priority: int = Field(default=5, index=True)
    status: str = Field(default="pending")
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    next_retry_at: datetime | None = None
    last_attempt_at: datetime | None = None
    claim_token: str | None = None
    sent_at: datetime | None = None
    external_id: str | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"server_default": func.now()})
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"server_default": func.now(), "onupdate": func.now()})


class NotificationTemplate(SQLModel, table=True):
    """Named reusable subject/body template."""

    __tablename__ = "notification_templates"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True)
    subject: str | None = None
    body: str
    sms_body: str | None = None
    supports_sms: bool = Field(default=False)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"server_default": func.now()})


class InAppNotification(SQLModel, table=True):
    """Row in a user's in-app notification inbox."""

    __tablename__ = "notifications"

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    title: str
    message: str
    type: str = Field(default="general")
    is_read: bool = Field(default=False)
    action_url: str | None = None
    payload: dict | None = Field(default=None, sa_type=JSON)
    created_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"server_default": func.now()})


# ---------------------------------------------------------------------------
# Identity and contact info
# ---------------------------------------------------------------------------


class Profile(SQLModel, table=True):
    """User contact info and API bearer token."""

    __tablename__ = "profiles"

    id: str = Field(primary_key=True)
    email: str | None = None
    phone: str | None = None
    full_name: str | None = None
    token: str | None = Field(default=None, index=True, unique=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"server_default": func.now()})


class UserRole(SQLModel, table=True):
    """Role granted to a user (``admin``, ``restaurant``, ...)."""

    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    role: str


# ---------------------------------------------------------------------------
# Operational log
# ---------------------------------------------------------------------------


class SystemLog(SQLModel, table=True):
    """Append-only record of background jobs and notable operations."""

    __tablename__ = "system_logs"

    id: int | None = Field(default=None, primary_key=True)
    log_type: str = Field(index=True)
    action: str
    target: str | None = None
    details: dict | None = Field(default=None, sa_type=JSON)
    success: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"server_default": func.now()})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

__all__ = [
    "utcnow",
    "RateLimitEntry",
    "NotificationJob",
    "NotificationTemplate",
    "InAppNotification",
    "Profile",
    "UserRole",
    "SystemLog",
]
