"""Fixed-window rate limiting with a durable and an in-memory backend.

Each ``(endpoint, identifier)`` pair gets one counter per window.  The
durable backend keeps counters in ``rate_limits`` so they are shared by
every process and survive restarts; the memory backend keeps them in a dict
owned by one :class:`RateLimiter` instance and is meant for cheap, loss
tolerant limits such as health probes.

A window admits at most ``limit`` requests.  Because windows are fixed
rather than sliding, a caller can land up to ``2 * limit`` requests across a
window boundary.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from eatlocal.core.policies import RateLimitPolicy, get_policy
from eatlocal.db.crud.rate_limits import increment_or_reject, reset_key, sweep_expired
from eatlocal.db.models import utcnow
from eatlocal.db.session import SessionFactory
from eatlocal.errors import RateLimitBackendError
from eatlocal.types import WindowState

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitResult:
    """Admission decision for one request."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after: float | None = None
    # True when the durable store could not be consulted and the request
    # was admitted anyway.
    degraded: bool = False

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat(),
            "retry_after": self.retry_after,
            "degraded": self.degraded,
        }


def _epoch_seconds(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return math.ceil(value.timestamp())


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """HTTP headers describing *result*.

    ``Retry-After`` is only present on denials.
    """
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(_epoch_seconds(result.reset_at)),
    }
    if not result.allowed and result.retry_after is not None:
        headers["Retry-After"] = str(math.ceil(result.retry_after))
    return headers


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


@dataclass
class _Window:
    count: int
    window_start: datetime
    reset_at: datetime


class MemoryCounterCache:
    """Process-local fixed-window counters.

    Expired windows are replaced when their key is next hit, and every
    *sweep_every* hits all expired keys are dropped so idle identifiers do
    not accumulate.
    """

    def __init__(self, sweep_every: int = 1000) -> None:
        self.sweep_every = sweep_every
        self._windows: dict[str, _Window] = {}
        self._hits_since_sweep = 0

    def hit(
        self, key: str, limit: int, window_seconds: float, now: datetime
    ) -> WindowState:
        self._hits_since_sweep += 1
        if self._hits_since_sweep >= self.sweep_every:
            self.cleanup(now)

        window = self._windows.get(key)
        if window is None or window.reset_at <= now:
            window = _Window(1, now, now + timedelta(seconds=window_seconds))
            self._windows[key] = window
            return WindowState(True, 1, window.window_start, window.reset_at)
        if window.count >= limit:
            return WindowState(False, window.count, window.window_start, window.reset_at)
        window.count += 1
        return WindowState(True, window.count, window.window_start, window.reset_at)

    def cleanup(self, now: datetime) -> int:
        """Drop expired windows.  Returns how many were removed."""
        expired = [key for key, w in self._windows.items() if w.reset_at <= now]
        for key in expired:
            del self._windows[key]
        self._hits_since_sweep = 0
        return len(expired)

    def reset(self, key: str) -> bool:
        return self._windows.pop(key, None) is not None

    def __len__(self) -> int:
        """Return the number of tracked keys (for monitoring)."""
        return len(self._windows)


class WindowCounterStore:
    """Durable counters in the ``rate_limits`` table.

    Each call opens its own session so a limiter can be shared across
    requests.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def hit(
        self, key: str, limit: int, window_seconds: float, now: datetime
    ) -> WindowState:
        async with self._session_factory() as session:
            return await increment_or_reject(session, key, limit, window_seconds, now)

    async def sweep(self, now: datetime) -> int:
        async with self._session_factory() as session:
            return await sweep_expired(session, now)

    async def reset(self, key: str) -> bool:
        async with self._session_factory() as session:
            return await reset_key(session, key)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class RateLimiter:
    """Decide allow/deny for ``(endpoint, identifier)`` pairs.

    Parameters
    ----------
    store:
        Durable backend.  Pass a :class:`WindowCounterStore` or a session
        factory to build one from.
    memory:
        In-memory backend for ``durable=False`` checks.  A fresh cache is
        created when omitted.
    timeout:
        Seconds to wait on the durable store before failing open.
    clock:
        Returns the current naive-UTC time.  Overridable for tests.
    """

    def __init__(
        self,
        store: WindowCounterStore | SessionFactory,
        memory: MemoryCounterCache | None = None,
        timeout: float = 2.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if isinstance(store, async_sessionmaker):
            store = WindowCounterStore(store)
        self.store = store
        self.memory = memory if memory is not None else MemoryCounterCache()
        self.timeout = timeout
        self.clock = clock

    @staticmethod
    def make_key(identifier: str, endpoint: str) -> str:
        return f"{endpoint}:{identifier}"

    async def check(
        self,
        identifier: str,
        limit: int,
        window_seconds: float,
        endpoint: str = "default",
        *,
        durable: bool = True,
    ) -> RateLimitResult:
        """Admit or deny one request.

        Never raises for backend trouble: if the durable store times out or
        errors, the request is admitted with ``degraded=True``.
        """
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")

        key = self.make_key(identifier, endpoint)
        now = self.clock()

        if not durable:
            state = self.memory.hit(key, limit, window_seconds, now)
            return self._to_result(state, limit, now)

        try:
            state = await asyncio.wait_for(
                self.store.hit(key, limit, window_seconds, now), timeout=self.timeout
            )
        except (asyncio.TimeoutError, SQLAlchemyError, OSError, RateLimitBackendError) as exc:
            logger.warning(
                "Rate limit store unavailable for %s, failing open: %s: %s",
                key,
                type(exc).__name__,
                exc,
            )
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=limit,
                reset_at=now + timedelta(seconds=window_seconds),
                degraded=True,
            )
        return self._to_result(state, limit, now)

    async def check_policy(
        self, identifier: str, policy: str | RateLimitPolicy
    ) -> RateLimitResult:
        """Check *identifier* against a named policy.

        The policy name doubles as the endpoint part of the counter key.
        """
        if isinstance(policy, str):
            policy = get_policy(policy)
        return await self.check(
            identifier,
            policy.limit,
            policy.window_seconds,
            endpoint=policy.name,
            durable=policy.durable,
        )

    async def sweep(self) -> int:
        """Delete expired durable counters and expired memory windows."""
        now = self.clock()
        self.memory.cleanup(now)
        return await self.store.sweep(now)

    @staticmethod
    def _to_result(state: WindowState, limit: int, now: datetime) -> RateLimitResult:
        if state.allowed:
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=max(0, limit - state.count),
                reset_at=state.reset_at,
            )
        retry_after = max(0.0, (state.reset_at - now).total_seconds())
        logger.debug("Denied after %d requests, retry in %.1fs", state.count, retry_after)
        return RateLimitResult(
            allowed=False,
            limit=limit,
            remaining=0,
            reset_at=state.reset_at,
            retry_after=retry_after,
        )
