"""EatLocal exception hierarchy.

All package-specific exceptions inherit from :class:`EatLocalError`.
"""

from __future__ import annotations


class EatLocalError(Exception):
    """Base exception for all EatLocal core errors."""


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class RateLimitError(EatLocalError):
    """Base class for rate-limiter errors."""


class RateLimitBackendError(RateLimitError):
    """Raised when the durable counter store cannot decide a request.

    Never reaches callers of :meth:`RateLimiter.check` -- the limiter
    catches it and fails open.
    """


class UnknownPolicyError(RateLimitError, KeyError):
    """Raised when a rate-limit policy name is not in the policy table."""


# ---------------------------------------------------------------------------
# Notification queue
# ---------------------------------------------------------------------------


class QueueError(EatLocalError):
    """Base class for notification queue errors."""


class JobValidationError(QueueError):
    """Raised when a notification job is rejected at enqueue time."""


class TemplateNotFoundError(JobValidationError):
    """Raised when a named template is missing, inactive, or lacks the channel body."""


class IllegalTransitionError(QueueError):
    """Raised when a job status change is not allowed by the state machine."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Illegal job transition: {current} -> {target}")
        self.current = current
        self.target = target


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


class AuthError(EatLocalError):
    """Base class for identity resolution errors."""


class InvalidCredentialsError(AuthError):
    """Raised when a bearer credential matches neither the service key nor a user."""
