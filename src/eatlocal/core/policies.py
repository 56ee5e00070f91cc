"""Named rate-limit policies.

The limiter itself is policy-agnostic; call sites pick a policy by name and
pass its ``(limit, window_seconds)`` through :meth:`RateLimiter.check_policy`.
"""

from __future__ import annotations

from dataclasses import dataclass

from eatlocal.errors import UnknownPolicyError


@dataclass(frozen=True)
class RateLimitPolicy:
    """A named ``(limit, window)`` pair and the backend it needs."""

    name: str
    limit: int
    window_seconds: float
    durable: bool = True


RATE_LIMITS: dict[str, RateLimitPolicy] = {
    policy.name: policy
    for policy in (
        RateLimitPolicy("login", 5, 900),
        RateLimitPolicy("password_reset", 3, 3600),
        RateLimitPolicy("order_create", 10, 60),
        RateLimitPolicy("webhook", 100, 60),
        RateLimitPolicy("send_email", 20, 60),
        RateLimitPolicy("send_sms", 10, 60),  # SMS costs money per segment
        RateLimitPolicy("ride_match", 30, 60),
        RateLimitPolicy("notification_enqueue", 60, 60),
        RateLimitPolicy("notification_process", 10, 60),
        RateLimitPolicy("api_default", 100, 3600),
        # Anonymous probes; losing these counters on restart is harmless.
        RateLimitPolicy("health_check", 60, 60, durable=False),
    )
}


def get_policy(name: str) -> RateLimitPolicy:
    """Look up a policy by name.

    Raises
    ------
    UnknownPolicyError
        If *name* is not in :data:`RATE_LIMITS`.
    """
    try:
        return RATE_LIMITS[name]
    except KeyError:
        raise UnknownPolicyError(name) from None
