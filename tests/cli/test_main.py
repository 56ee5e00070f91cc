"""CLI tests using click.testing.CliRunner.

Each test points ``DATABASE_URL`` at its own SQLite file.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from eatlocal.cli.main import cli
from eatlocal.core.models import EnqueueRequest
from eatlocal.core.queue import enqueue
from eatlocal.db.crud.notifications import list_for_user
from eatlocal.db.engine import create_async_engine_from_url
from eatlocal.db.session import async_session_factory, create_tables


@pytest.fixture
def runner():
    """Click CliRunner for CLI testing."""
    return CliRunner()


@pytest.fixture
def database_url(tmp_path: Path, monkeypatch) -> str:
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("EATLOCAL_LOG_LEVEL", "WARNING")
    return url


def _run_with_session(url: str, work):
    async def _go():
        engine = create_async_engine_from_url(url)
        try:
            await create_tables(engine)
            async with async_session_factory(engine)() as session:
                return await work(session)
        finally:
            await engine.dispose()

    return asyncio.run(_go())


# ---------------------------------------------------------------------------
# General
# ---------------------------------------------------------------------------


def test_cli_help(runner: CliRunner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for cmd in (
        "init-db",
        "process-queue",
        "requeue-stale",
        "sweep-rate-limits",
        "check-rate-limit",
        "serve",
    ):
        assert cmd in result.output


def test_cli_version(runner: CliRunner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_init_db(runner: CliRunner, database_url: str, tmp_path: Path):
    result = runner.invoke(cli, ["init-db"])
    assert result.exit_code == 0, result.output
    assert "Tables created." in result.output
    assert (tmp_path / "cli.db").exists()


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


def test_process_queue_empty(runner: CliRunner, database_url: str):
    result = runner.invoke(cli, ["process-queue"])
    assert result.exit_code == 0, result.output
    assert "Processed 0: 0 sent, 0 failed, 0 stale requeued" in result.output


def test_process_queue_delivers_in_app(runner: CliRunner, database_url: str):
    request = EnqueueRequest(channel="in_app", user_id="diner-1", subject="Hi", body="Your rider is close")
    _run_with_session(database_url, lambda s: enqueue(s, request))

    result = runner.invoke(cli, ["process-queue", "--json"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["processed"] == 1
    assert payload["succeeded"] == 1

    inbox = _run_with_session(database_url, lambda s: list_for_user(s, "diner-1"))
    assert [n.message for n in inbox] == ["Your rider is close"]


def test_requeue_stale(runner: CliRunner, database_url: str):
    result = runner.invoke(cli, ["requeue-stale"])
    assert result.exit_code == 0, result.output
    assert "Requeued 0, failed 0." in result.output


# ---------------------------------------------------------------------------
# Rate limits
# ---------------------------------------------------------------------------


def test_check_rate_limit_explicit(runner: CliRunner, database_url: str):
    args = ["check-rate-limit", "203.0.113.9", "--limit", "1", "--window", "60"]
    first = runner.invoke(cli, args)
    assert first.exit_code == 0, first.output
    assert "allowed" in first.output
    assert "Remaining: 0" in first.output

    second = runner.invoke(cli, args)
    assert second.exit_code == 1
    assert "denied" in second.output
    assert "Retry in:" in second.output


def test_check_rate_limit_policy(runner: CliRunner, database_url: str):
    result = runner.invoke(cli, ["check-rate-limit", "user-1", "-p", "login"])
    assert result.exit_code == 0, result.output
    assert "Limit:     5" in result.output
    assert "Remaining: 4" in result.output


def test_check_rate_limit_memory(runner: CliRunner, database_url: str):
    result = runner.invoke(cli, ["check-rate-limit", "x", "-l", "3", "-w", "10", "--memory"])
    assert result.exit_code == 0, result.output
    assert "Remaining: 2" in result.output


def test_check_rate_limit_unknown_policy(runner: CliRunner, database_url: str):
    result = runner.invoke(cli, ["check-rate-limit", "user-1", "--policy", "nope"])
    assert result.exit_code == 1
    assert "Unknown policy: nope" in result.output


def test_check_rate_limit_needs_limits(runner: CliRunner, database_url: str):
    result = runner.invoke(cli, ["check-rate-limit", "user-1", "--limit", "3"])
    assert result.exit_code == 1
    assert "Give --policy" in result.output


def test_sweep_rate_limits(runner: CliRunner, database_url: str):
    result = runner.invoke(cli, ["sweep-rate-limits"])
    assert result.exit_code == 0, result.output
    assert "Deleted 0 expired counter(s)." in result.output
