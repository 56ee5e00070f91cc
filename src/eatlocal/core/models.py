"""Pydantic request/response models for the core REST API."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from eatlocal.types import Channel

_E164 = re.compile(r"^\+[1-9]\d{1,14}$")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class EnqueueRequest(BaseModel):
    """A notification to deliver.

    Either *body* or *template* must be given.  The recipient must suit the
    channel: email needs ``email`` or ``user_id``, SMS and WhatsApp need
    ``phone`` or ``user_id``, in-app and push need ``user_id``.
    """

    channel: Channel
    user_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    template: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    data: dict[str, Union[str, int, float, bool, None]] = Field(default_factory=dict)
    priority: int = Field(default=5, ge=0, le=100)
    max_attempts: int = Field(default=3, ge=1, le=10)
    scheduled_for: Optional[datetime] = None

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str | None) -> str | None:
        if value is not None and not _E164.match(value):
            raise ValueError("phone must be in E.164 format, e.g. +27821234567")
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str | None) -> str | None:
        if value is not None and not _EMAIL.match(value):
            raise ValueError("email is not a valid address")
        return value

    @model_validator(mode="after")
    def _check_content_and_recipient(self) -> EnqueueRequest:
        if not self.body and not self.template:
            raise ValueError("either body or template is required")
        if self.channel is Channel.EMAIL:
            ok = bool(self.email or self.user_id)
        elif self.channel in (Channel.SMS, Channel.WHATSAPP):
            ok = bool(self.phone or self.user_id)
        else:
            ok = bool(self.user_id)
        if not ok:
            raise ValueError(f"no recipient suitable for channel {self.channel.value!r}")
        return self


class EnqueueResponse(BaseModel):
    id: str
    status: str
    channel: str
    scheduled_for: datetime


class JobStatusResponse(BaseModel):
    id: str
    channel: str
    status: str
    priority: int
    attempts: int
    max_attempts: int
    scheduled_for: datetime
    next_retry_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    external_id: Optional[str] = None
    error_message: Optional[str] = None


class ProcessRequest(BaseModel):
    batch_size: Optional[int] = Field(default=None, ge=1)


class ProcessResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    requeued: int
    errors: list[str]


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class RateLimitCheckRequest(BaseModel):
    """Check an identifier against a named policy or explicit limits."""

    identifier: str = Field(min_length=1)
    policy: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)
    window_seconds: Optional[float] = Field(default=None, gt=0)
    endpoint: str = "default"

    @model_validator(mode="after")
    def _check_policy_or_limits(self) -> RateLimitCheckRequest:
        if self.policy is None and (self.limit is None or self.window_seconds is None):
            raise ValueError("give either policy or both limit and window_seconds")
        return self


class RateLimitCheckResponse(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after: Optional[float] = None
    degraded: bool = False


# ---------------------------------------------------------------------------
# Admin / health
# ---------------------------------------------------------------------------


class QueueStatsResponse(BaseModel):
    counts: dict[str, int]


class RequeueResponse(BaseModel):
    requeued: int
    failed: int


class SweepResponse(BaseModel):
    deleted: int


class HealthResponse(BaseModel):
    status: str
    version: str
