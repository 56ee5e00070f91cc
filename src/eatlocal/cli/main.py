"""EatLocal CLI -- operate the rate limiter and notification queue.

Every command reads the same environment variables as the HTTP service
(``DATABASE_URL``, ``EATLOCAL_*``, provider credentials) and runs its async
work with ``asyncio.run``.  Queue processing is meant to be triggered from
cron or a platform scheduler via ``eatlocal process-queue``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click

from eatlocal.core.channels import build_dispatchers, make_http_client
from eatlocal.core.config import Settings
from eatlocal.core.contacts import ContactResolver
from eatlocal.core.queue import ProcessResult, QueueProcessor
from eatlocal.core.rate_limit import RateLimiter, RateLimitResult
from eatlocal.db.engine import create_async_engine_from_url
from eatlocal.db.session import SessionFactory, async_session_factory, create_tables
from eatlocal.errors import UnknownPolicyError

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(msg: str) -> None:
    """Print an error message to stderr and exit 1."""
    click.echo(msg, err=True)
    raise SystemExit(1)


async def _with_database(
    settings: Settings, work: Callable[[SessionFactory], Awaitable[T]]
) -> T:
    """Run *work* with a session factory, disposing the engine afterwards."""
    engine = create_async_engine_from_url(settings.database_url)
    try:
        if settings.auto_create_tables:
            await create_tables(engine)
        return await work(async_session_factory(engine))
    finally:
        await engine.dispose()


def _build_processor(
    settings: Settings, factory: SessionFactory, client
) -> QueueProcessor:
    return QueueProcessor(
        factory,
        build_dispatchers(settings, factory, client),
        ContactResolver(factory),
        base_retry_delay=settings.queue_base_retry_delay,
        claim_timeout=settings.queue_claim_timeout,
        default_batch_size=settings.queue_batch_size,
        max_batch_size=settings.queue_max_batch_size,
    )


def _echo_result(result: RateLimitResult) -> None:
    state = "allowed" if result.allowed else "denied"
    if result.degraded:
        state += " (degraded)"
    click.echo(f"Result:    {state}")
    click.echo(f"Limit:     {result.limit}")
    click.echo(f"Remaining: {result.remaining}")
    click.echo(f"Resets at: {result.reset_at.isoformat()}Z")
    if result.retry_after is not None:
        click.echo(f"Retry in:  {result.retry_after:.0f}s")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="eatlocal-core")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """EatLocal core -- rate limiting and notification delivery."""
    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.debug:
        logging.getLogger("eatlocal").setLevel(logging.DEBUG)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create all tables (development; production uses Alembic)."""
    settings: Settings = ctx.obj["settings"]

    async def _init() -> None:
        engine = create_async_engine_from_url(settings.database_url)
        try:
            await create_tables(engine)
        finally:
            await engine.dispose()

    asyncio.run(_init())
    click.echo("Tables created.")


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


@cli.command("process-queue")
@click.option("--batch-size", "-b", type=int, default=None, help="Jobs to process (capped).")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.pass_context
def process_queue(ctx: click.Context, batch_size: int | None, as_json: bool) -> None:
    """Deliver one batch of due notifications."""
    settings: Settings = ctx.obj["settings"]

    async def _run(factory: SessionFactory) -> ProcessResult:
        async with make_http_client(settings) as client:
            return await _build_processor(settings, factory, client).run(batch_size)

    result = asyncio.run(_with_database(settings, _run))
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        click.echo(
            f"Processed {result.processed}: {result.succeeded} sent, "
            f"{result.failed} failed, {result.requeued} stale requeued"
        )
        for error in result.errors:
            click.echo(f"  {error}", err=True)
    if any(error.startswith("Fetch error:") for error in result.errors):
        raise SystemExit(1)


@cli.command("requeue-stale")
@click.pass_context
def requeue_stale(ctx: click.Context) -> None:
    """Release jobs stuck in processing past the claim timeout."""
    settings: Settings = ctx.obj["settings"]

    async def _run(factory: SessionFactory) -> tuple[int, int]:
        processor = QueueProcessor(factory, {}, claim_timeout=settings.queue_claim_timeout)
        return await processor.requeue_stale()

    requeued, failed = asyncio.run(_with_database(settings, _run))
    click.echo(f"Requeued {requeued}, failed {failed}.")


# ---------------------------------------------------------------------------
# Rate limits
# ---------------------------------------------------------------------------


@cli.command("sweep-rate-limits")
@click.pass_context
def sweep_rate_limits(ctx: click.Context) -> None:
    """Delete expired rate-limit counters."""
    settings: Settings = ctx.obj["settings"]

    async def _run(factory: SessionFactory) -> int:
        return await RateLimiter(factory, timeout=settings.rate_limit_timeout).sweep()

    deleted = asyncio.run(_with_database(settings, _run))
    click.echo(f"Deleted {deleted} expired counter(s).")


@cli.command("check-rate-limit")
@click.argument("identifier")
@click.option("--policy", "-p", default=None, help="Named policy, e.g. login.")
@click.option("--limit", "-l", type=int, default=None, help="Requests per window.")
@click.option("--window", "-w", type=float, default=None, help="Window length in seconds.")
@click.option("--endpoint", "-e", default="default", help="Endpoint part of the key.")
@click.option("--memory", is_flag=True, help="Use the in-process backend.")
@click.pass_context
def check_rate_limit(
    ctx: click.Context,
    identifier: str,
    policy: str | None,
    limit: int | None,
    window: float | None,
    endpoint: str,
    memory: bool,
) -> None:
    """Count one request for IDENTIFIER and print the decision.

    Exits 1 when the request is denied.
    """
    settings: Settings = ctx.obj["settings"]
    if policy is None and (limit is None or window is None):
        _error("Give --policy, or both --limit and --window.")

    async def _run(factory: SessionFactory) -> RateLimitResult:
        limiter = RateLimiter(factory, timeout=settings.rate_limit_timeout)
        if policy is not None:
            return await limiter.check_policy(identifier, policy)
        return await limiter.check(identifier, limit, window, endpoint, durable=not memory)

    try:
        result = asyncio.run(_with_database(settings, _run))
    except UnknownPolicyError:
        _error(f"Unknown policy: {policy}")
    except ValueError as exc:
        _error(str(exc))

    _echo_result(result)
    if not result.allowed:
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind address (default: EATLOCAL_HOST).")
@click.option("--port", type=int, default=None, help="Port (default: EATLOCAL_PORT).")
@click.option("--reload", is_flag=True, help="Reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Run the HTTP service with uvicorn."""
    import uvicorn

    settings: Settings = ctx.obj["settings"]
    uvicorn.run(
        "eatlocal.core.app:create_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    cli()
