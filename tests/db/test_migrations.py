"""Tests for the Alembic migrations: upgrade, idempotency and downgrade."""

import sqlite3
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlmodel import SQLModel

import eatlocal.db.models  # noqa: F401

EXPECTED_TABLES = sorted([
    "notification_queue",
    "notification_templates",
    "notifications",
    "profiles",
    "rate_limits",
    "system_logs",
    "user_roles",
])


@pytest.fixture
def alembic_cfg(tmp_path, monkeypatch):
    """Alembic config pointing at a temp SQLite database."""
    db_path = tmp_path / "test_migration.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")

    project_root = Path(__file__).resolve().parents[2]
    ini_path = project_root / "alembic.ini"
    assert ini_path.exists(), f"alembic.ini not found at {ini_path}"
    return Config(str(ini_path)), db_path


def _get_tables(db_path: Path) -> list[str]:
    conn = sqlite3.connect(str(db_path))
    try:
        return sorted(
            r[0]
            for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name != 'alembic_version'"
            ).fetchall()
        )
    finally:
        conn.close()


def _get_columns(db_path: Path, table: str) -> set[str]:
    conn = sqlite3.connect(str(db_path))
    try:
        return {r[1] for r in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    finally:
        conn.close()


def _get_current_rev(db_path: Path) -> str | None:
    conn = sqlite3.connect(str(db_path))
    try:
        rows = conn.execute("SELECT version_num FROM alembic_version").fetchall()
        return rows[0][0] if rows else None
    except sqlite3.OperationalError:
        return None
    finally:
        conn.close()


class TestMigrationUpgrade:
    def test_upgrade_creates_expected_tables(self, alembic_cfg):
        cfg, db_path = alembic_cfg
        command.upgrade(cfg, "head")
        assert _get_tables(db_path) == EXPECTED_TABLES

    def test_schema_matches_models(self, alembic_cfg):
        cfg, db_path = alembic_cfg
        command.upgrade(cfg, "head")
        for name, table in SQLModel.metadata.tables.items():
            assert _get_columns(db_path, name) == {c.name for c in table.columns}, name

    def test_upgrade_sets_revision(self, alembic_cfg):
        cfg, db_path = alembic_cfg
        command.upgrade(cfg, "head")
        assert _get_current_rev(db_path) == "0001"

    def test_upgrade_idempotent(self, alembic_cfg):
        cfg, db_path = alembic_cfg
        command.upgrade(cfg, "head")
        command.upgrade(cfg, "head")
        assert _get_tables(db_path) == EXPECTED_TABLES
        assert _get_current_rev(db_path) == "0001"


class TestMigrationDowngrade:
    def test_downgrade_drops_all_tables(self, alembic_cfg):
        cfg, db_path = alembic_cfg
        command.upgrade(cfg, "head")
        command.downgrade(cfg, "base")
        assert _get_tables(db_path) == []
        assert _get_current_rev(db_path) is None

    def test_upgrade_after_downgrade(self, alembic_cfg):
        cfg, db_path = alembic_cfg
        command.upgrade(cfg, "head")
        command.downgrade(cfg, "base")
        command.upgrade(cfg, "head")
        assert _get_tables(db_path) == EXPECTED_TABLES
