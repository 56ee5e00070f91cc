"""Retry helper for transient database errors.

Queue maintenance (stale-claim recovery, due-batch selection) and CLI
commands open their own sessions outside any request, so a dropped
connection or a locked SQLite file is worth a few short retries before the
error is reported.  Constraint violations and programming errors are never
retried.

The rate limiter does not use this: it has a hard timeout and
fails open instead of waiting.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES: int = 3
BASE_DELAY: float = 0.1
MAX_DELAY: float = 2.0

# Lower-cased substrings of driver messages that indicate a retriable error
# (aiosqlite / asyncpg / psycopg wording).
_TRANSIENT_MARKERS: tuple[str, ...] = (
    "database is locked",
    "deadlock",
    "could not serialize access",
    "connection refused",
    "connection reset",
    "connection was closed",
    "connection lost",
    "server closed",
    "broken pipe",
    "timeout",
)


def is_transient_error(exc: BaseException) -> bool:
    """Return ``True`` if *exc* is a database error worth retrying."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, OperationalError):
        message = str(exc).lower()
        return any(marker in message for marker in _TRANSIENT_MARKERS)
    return False


def backoff_delay(attempt: int, base_delay: float = BASE_DELAY, max_delay: float = MAX_DELAY) -> float:
    """Delay before retry number *attempt* (0-based), doubling each time."""
    return min(base_delay * (2**attempt), max_delay)


def db_retry(
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    max_delay: float = MAX_DELAY,
) -> Callable[[Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]]:
    """Decorate an async function so transient DB errors are retried.

    The wrapped function must be safe to call again from scratch -- it
    should open (or receive) a fresh session each time.

    Usage::

        @db_retry()
        async def fetch_due(factory):
            async with factory() as session:
                ...
    """

    def decorator(
        func: Callable[..., Coroutine[Any, Any, T]],
    ) -> Callable[..., Coroutine[Any, Any, T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except DBAPIError as exc:
                    if not is_transient_error(exc) or attempt >= max_retries:
                        if attempt:
                            logger.error(
                                "%s failed after %d attempts: %s",
                                func.__name__, attempt + 1, exc,
                            )
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    logger.warning(
                        "Transient DB error in %s (attempt %d/%d), retrying in %.2fs: %s",
                        func.__name__, attempt + 1, max_retries + 1, delay, exc,
                    )
                    attempt += 1
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
