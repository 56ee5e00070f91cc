"""FastAPI application factory for the EatLocal core service."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.exceptions import HTTPException, RequestValidationError
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from eatlocal import __version__
from eatlocal.core.channels import build_dispatchers, make_http_client
from eatlocal.core.config import Settings
from eatlocal.core.contacts import ContactResolver
from eatlocal.core.queue import QueueProcessor
from eatlocal.core.rate_limit import MemoryCounterCache, RateLimiter
from eatlocal.db.engine import create_async_engine_from_url
from eatlocal.db.session import async_session_factory, create_tables
from eatlocal.errors import JobValidationError

logger = logging.getLogger(__name__)

# Consistent JSON error shape: {"error": "<code>", "detail": "<message>"}
_STATUS_TO_ERROR = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    422: "validation_error",
    429: "rate_limited",
    503: "service_unavailable",
}


async def _queue_autorun_loop(app: FastAPI, interval: float) -> None:
    """Run the queue processor every *interval* seconds."""
    while True:
        await asyncio.sleep(interval)
        try:
            result = await app.state.processor.run()
            if result.errors:
                logger.warning("Queue autorun finished with %d error(s)", len(result.errors))
        except Exception:
            logger.exception("Error in queue autorun loop")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Own the engine, HTTP client, limiter and queue processor."""
    settings: Settings = app.state.settings
    engine = create_async_engine_from_url(settings.database_url)
    if settings.auto_create_tables:
        await create_tables(engine)
    session_factory = async_session_factory(engine)
    app.state.engine = engine
    app.state.session_factory = session_factory

    # One memory cache per app so each create_app() starts with fresh counters.
    app.state.limiter = RateLimiter(
        session_factory,
        memory=MemoryCounterCache(),
        timeout=settings.rate_limit_timeout,
    )

    owns_client = app.state.http_client is None
    if owns_client:
        app.state.http_client = make_http_client(settings)
    dispatchers = build_dispatchers(settings, session_factory, app.state.http_client)
    app.state.processor = QueueProcessor(
        session_factory,
        dispatchers,
        ContactResolver(session_factory),
        base_retry_delay=settings.queue_base_retry_delay,
        claim_timeout=settings.queue_claim_timeout,
        default_batch_size=settings.queue_batch_size,
        max_batch_size=settings.queue_max_batch_size,
    )

    autorun_task = None
    if settings.queue_autorun_interval > 0:
        autorun_task = asyncio.create_task(
            _queue_autorun_loop(app, settings.queue_autorun_interval)
        )
        logger.info("Queue autorun every %.0fs", settings.queue_autorun_interval)

    yield

    if autorun_task:
        autorun_task.cancel()
        try:
            await autorun_task
        except asyncio.CancelledError:
            pass
    if owns_client:
        await app.state.http_client.aclose()
        app.state.http_client = None
    await engine.dispose()


def create_app(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create and configure the EatLocal core FastAPI application.

    *http_client*, when given, is used by the provider dispatchers and is
    not closed on shutdown.
    """
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.debug:
        logging.getLogger("eatlocal").setLevel(logging.DEBUG)

    app = FastAPI(
        title="EatLocal Core",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.http_client = http_client

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": _STATUS_TO_ERROR.get(exc.status_code, "error"),
                "detail": exc.detail,
            },
            # Keeps Retry-After / X-RateLimit-* and WWW-Authenticate.
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "error": "validation_error",
                "detail": str(exc),
            },
        )

    @app.exception_handler(JobValidationError)
    async def job_validation_handler(request: Request, exc: JobValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"error": "validation_error", "detail": str(exc)},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )

    from eatlocal.core.routes.admin import router as admin_router
    from eatlocal.core.routes.health import router as health_router
    from eatlocal.core.routes.notifications import router as notifications_router
    from eatlocal.core.routes.rate_limit import router as rate_limit_router

    app.include_router(notifications_router, prefix="/api/v1")
    app.include_router(rate_limit_router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/v1")
    app.include_router(health_router)

    return app
