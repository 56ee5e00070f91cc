"""AsyncSession factory, FastAPI dependency and dev-time table creation.

The session factory lives on ``app.state.session_factory`` (set by the
application lifespan) so every app instance -- and every test -- owns its
own database binding.

Usage::

    from fastapi import Depends
    from sqlalchemy.ext.asyncio import AsyncSession
    from eatlocal.db.session import get_session

    @router.get("/jobs")
    async def list_jobs(session: AsyncSession = Depends(get_session)):
        ...
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel
from starlette.requests import Request

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def async_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Create a new ``async_sessionmaker`` bound to *engine*.

    Sessions use ``expire_on_commit=False`` so rows stay readable after
    commit.
    """
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a per-request ``AsyncSession``.

    Raises
    ------
    RuntimeError
        If the application lifespan has not created a session factory.
    """
    factory: SessionFactory | None = getattr(request.app.state, "session_factory", None)
    if factory is None:
        raise RuntimeError("Session factory not initialized on app.state")
    try:
        async with factory() as session:
            yield session
    except OperationalError as exc:
        from eatlocal.db.retry import is_transient_error

        if is_transient_error(exc):
            logger.warning("Transient DB error during session: %s", exc)
        raise


async def create_tables(engine: AsyncEngine) -> None:
    """Create all SQLModel tables in the database.

    Intended for development and tests.  Production deployments run the
    Alembic migrations instead.
    """
    import eatlocal.db.models  # noqa: F401 -- registers tables on SQLModel.metadata

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("All SQLModel tables created")
