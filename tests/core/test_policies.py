"""Tests for the named rate-limit policy table."""

from __future__ import annotations

import pytest

from eatlocal.core.policies import RATE_LIMITS, RateLimitPolicy, get_policy
from eatlocal.errors import RateLimitError, UnknownPolicyError


@pytest.mark.parametrize(
    "name, limit, window",
    [
        ("login", 5, 900),
        ("password_reset", 3, 3600),
        ("order_create", 10, 60),
        ("webhook", 100, 60),
        ("send_email", 20, 60),
        ("send_sms", 10, 60),
        ("ride_match", 30, 60),
        ("api_default", 100, 3600),
    ],
)
def test_policy_values(name, limit, window):
    policy = get_policy(name)
    assert (policy.limit, policy.window_seconds) == (limit, window)
    assert policy.durable is True


def test_health_check_uses_memory():
    assert get_policy("health_check").durable is False


def test_table_is_keyed_by_name():
    assert all(key == policy.name for key, policy in RATE_LIMITS.items())


def test_unknown_policy_error():
    with pytest.raises(UnknownPolicyError) as info:
        get_policy("nope")
    assert isinstance(info.value, RateLimitError)
    assert isinstance(info.value, KeyError)


def test_policies_are_immutable():
    policy = RateLimitPolicy("x", 1, 1)
    with pytest.raises(AttributeError):
        policy.limit = 2  # type: ignore[misc]
