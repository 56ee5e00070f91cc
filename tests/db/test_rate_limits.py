"""Tests for the durable fixed-window counter operations."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from eatlocal.db.crud import rate_limits
from eatlocal.db.crud.rate_limits import (
    count_live,
    get_entry,
    increment_or_reject,
    reset_key,
    sweep_expired,
)
from eatlocal.errors import RateLimitBackendError

NOW = datetime(2026, 3, 1, 12, 0, 0)


class TestIncrementOrReject:
    async def test_first_hit_opens_window(self, session):
        state = await increment_or_reject(session, "login:u1", 5, 60, NOW)
        assert state.allowed is True
        assert state.count == 1
        assert state.window_start == NOW
        assert state.reset_at == NOW + timedelta(seconds=60)

        entry = await get_entry(session, "login:u1")
        assert entry is not None
        assert entry.count == 1

    async def test_counts_up_to_limit_then_denies(self, session):
        for expected in range(1, 4):
            state = await increment_or_reject(session, "k", 3, 60, NOW + timedelta(seconds=expected))
            assert state.allowed is True
            assert state.count == expected

        denied = await increment_or_reject(session, "k", 3, 60, NOW + timedelta(seconds=10))
        assert denied.allowed is False
        assert denied.count == 3
        # Denial reports the original window, not a new one.
        assert denied.reset_at == NOW + timedelta(seconds=61)

    async def test_denial_does_not_increment(self, session):
        await increment_or_reject(session, "k", 1, 60, NOW)
        for _ in range(3):
            await increment_or_reject(session, "k", 1, 60, NOW)
        entry = await get_entry(session, "k")
        assert entry.count == 1

    async def test_rollover_after_window(self, session):
        await increment_or_reject(session, "k", 1, 60, NOW)
        assert (await increment_or_reject(session, "k", 1, 60, NOW)).allowed is False

        later = NOW + timedelta(seconds=60)
        state = await increment_or_reject(session, "k", 1, 60, later)
        assert state.allowed is True
        assert state.count == 1
        assert state.window_start == later

    async def test_keys_are_independent(self, session):
        await increment_or_reject(session, "login:a", 1, 60, NOW)
        assert (await increment_or_reject(session, "login:a", 1, 60, NOW)).allowed is False
        assert (await increment_or_reject(session, "login:b", 1, 60, NOW)).allowed is True

    async def test_mixed_windows_do_not_expire_each_other(self, session):
        """A short-window hit must not sweep a long window that is still live."""
        await increment_or_reject(session, "password_reset:u1", 1, 3600, NOW)
        await increment_or_reject(session, "webhook:u1", 100, 60, NOW + timedelta(seconds=120))

        entry = await get_entry(session, "password_reset:u1")
        assert entry is not None
        state = await increment_or_reject(session, "password_reset:u1", 1, 3600, NOW + timedelta(seconds=130))
        assert state.allowed is False

    async def test_contention_exhaustion_raises(self, session):
        """A key that never settles gives up after the bounded rounds."""
        await increment_or_reject(session, "k", 5, 60, NOW)

        async def never(*args, **kwargs):
            return None

        with patch.object(rate_limits, "_try_increment", never):
            with pytest.raises(RateLimitBackendError):
                await increment_or_reject(session, "k", 5, 60, NOW)


class TestMaintenance:
    async def test_sweep_deletes_only_expired(self, session):
        await increment_or_reject(session, "old", 5, 60, NOW)
        await increment_or_reject(session, "new", 5, 600, NOW)

        deleted = await sweep_expired(session, NOW + timedelta(seconds=61))
        assert deleted == 1
        assert await get_entry(session, "old") is None
        assert await get_entry(session, "new") is not None

    async def test_batched_sweep(self, session):
        for key in ("a", "b", "c"):
            await increment_or_reject(session, key, 5, 60, NOW)
        later = NOW + timedelta(seconds=61)
        assert await sweep_expired(session, later, batch=2) == 2
        assert await sweep_expired(session, later, batch=2) == 1
        assert await sweep_expired(session, later, batch=2) == 0

    async def test_check_sweeps_a_bounded_batch(self, session):
        keys = ["a", "b", "c", "d"]
        for key in keys:
            await increment_or_reject(session, key, 5, 60, NOW)
        later = NOW + timedelta(seconds=61)

        with patch.object(rate_limits, "LAZY_SWEEP_BATCH", 2):
            await increment_or_reject(session, "fresh", 5, 60, later)
        remaining = [key for key in keys if await get_entry(session, key) is not None]
        assert len(remaining) == 2

        assert await sweep_expired(session, later) == 2

    async def test_count_live(self, session):
        await increment_or_reject(session, "a", 5, 60, NOW)
        await increment_or_reject(session, "b", 5, 120, NOW)
        assert await count_live(session, NOW) == 2
        assert await count_live(session, NOW + timedelta(seconds=90)) == 1

    async def test_reset_key(self, session):
        await increment_or_reject(session, "k", 1, 60, NOW)
        assert await reset_key(session, "k") is True
        assert await reset_key(session, "k") is False
        assert (await increment_or_reject(session, "k", 1, 60, NOW)).allowed is True
