"""Shared enums, aliases and the notification job state machine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union

from eatlocal.errors import IllegalTransitionError

# Values allowed in a job's ``data`` mapping (template variables).
TemplateValue = Union[str, int, float, bool, None]


class Channel(str, Enum):
    """Delivery media for a notification.

    Using ``str, Enum`` so that ``Channel.EMAIL == "email"`` is True.
    """

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"
    WHATSAPP = "whatsapp"


class JobStatus(str, Enum):
    """Persisted status of a notification job."""

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SENT, JobStatus.FAILED)

    def can_transition_to(self, target: JobStatus) -> bool:
        return target in _TRANSITIONS[self]


# pending -> processing -> {sent, pending (retry), failed (exhausted)}
_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.SENT, JobStatus.PENDING, JobStatus.FAILED}
    ),
    JobStatus.SENT: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def ensure_transition(current: JobStatus | str, target: JobStatus | str) -> None:
    """Raise :class:`IllegalTransitionError` unless *current* -> *target* is legal."""
    current = JobStatus(current)
    target = JobStatus(target)
    if not current.can_transition_to(target):
        raise IllegalTransitionError(current.value, target.value)


class DispatchErrorCode(str, Enum):
    """Prefixes for dispatch failure reasons.

    The retry state machine treats all of them identically; the code is
    kept in ``error_message`` for operators.
    """

    DESTINATION_UNRESOLVED = "DestinationUnresolved"
    PROVIDER_REJECTED = "ProviderRejected"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    CHANNEL_NOT_IMPLEMENTED = "ChannelNotImplemented"

    def describe(self, reason: str) -> str:
        return f"{self.value}: {reason}"


@dataclass(frozen=True)
class WindowState:
    """Outcome of one counter hit, shared by the durable and memory backends.

    ``count`` is the post-increment count when ``allowed`` and the current
    (unchanged) count when denied.
    """

    allowed: bool
    count: int
    window_start: datetime
    reset_at: datetime
