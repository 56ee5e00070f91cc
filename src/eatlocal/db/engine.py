"""Async engine factory with dual-backend support.

Creates SQLAlchemy ``AsyncEngine`` instances from a ``DATABASE_URL`` that may
point to either **PostgreSQL** (via ``asyncpg``) or **SQLite** (via
``aiosqlite``).  Backend-specific connection defaults are applied
automatically.

The engine is owned by whoever creates it (the FastAPI lifespan or a CLI
command) and is disposed by the same owner.

Usage::

    from eatlocal.db.engine import create_async_engine_from_url

    engine = create_async_engine_from_url(settings.database_url)
    ...
    await engine.dispose()
"""

from __future__ import annotations

import logging
import os
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine as _create_async_engine,
)

logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    """Ensure *url* names an async driver (asyncpg / aiosqlite)."""
    if url.startswith("postgres://"):
        # Heroku / Railway use postgres:// which asyncpg doesn't accept
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://") and "+" not in url.split("://")[0]:
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and "+aiosqlite" not in url:
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def create_async_engine_from_url(url: str, **kwargs: Any) -> AsyncEngine:
    """Create an ``AsyncEngine`` from a database URL.

    Detects the backend from the URL scheme and applies sensible defaults:

    - **PostgreSQL** (``postgresql://`` or ``postgres://``): asyncpg with
      connection-pool tuning from ``DB_POOL_*`` environment variables.
    - **SQLite** (``sqlite://``): aiosqlite with ``check_same_thread=False``
      and a busy timeout so concurrent writers wait instead of failing.

    Parameters
    ----------
    url:
        A SQLAlchemy-compatible database URL.
    **kwargs:
        Additional keyword arguments forwarded to
        ``sqlalchemy.ext.asyncio.create_async_engine``.  They override any
        defaults set by this function.

    Raises
    ------
    ValueError
        If the URL scheme is not supported.
    """
    merged: dict[str, Any] = {"echo": False}
    url = normalize_database_url(url)

    if url.startswith("postgresql"):
        pool_size = int(os.environ.get("DB_POOL_SIZE", "5"))
        max_overflow = int(os.environ.get("DB_MAX_OVERFLOW", "10"))
        pool_timeout = int(os.environ.get("DB_POOL_TIMEOUT", "30"))
        pool_recycle = int(os.environ.get("DB_POOL_RECYCLE", "1800"))
        merged.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
        )
        logger.info(
            "Pool config: size=%d, overflow=%d, timeout=%d, recycle=%d",
            pool_size, max_overflow, pool_timeout, pool_recycle,
        )
        backend = "postgresql (asyncpg)"

    elif url.startswith("sqlite"):
        # SQLite uses NullPool/StaticPool -- pool_size/max_overflow are
        # not applicable and would raise if passed.
        merged.setdefault("connect_args", {})
        merged["connect_args"]["check_same_thread"] = False
        merged["connect_args"].setdefault("timeout", 30)
        merged.setdefault("pool_pre_ping", True)
        backend = "sqlite (aiosqlite)"

    else:
        raise ValueError(f"Unsupported DATABASE_URL scheme: {url}")

    # User-supplied kwargs take precedence
    merged.update(kwargs)

    logger.info("Creating async engine for %s backend", backend)
    return _create_async_engine(url, **merged)
