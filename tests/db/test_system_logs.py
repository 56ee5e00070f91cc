"""Tests for the append-only system log."""

from __future__ import annotations

from eatlocal.db.crud.system_logs import log_event, query_system_log


async def test_log_event(session):
    entry = await log_event(
        session,
        "background_job",
        "process_notifications",
        details={"processed": 3},
    )
    assert entry.id is not None
    assert entry.success is True
    assert entry.details == {"processed": 3}


async def test_query_filters_and_order(session):
    await log_event(session, "background_job", "process_notifications")
    await log_event(session, "admin", "requeue_stale", success=False)
    await log_event(session, "background_job", "process_notifications", target="run-2")

    jobs = await query_system_log(session, log_type="background_job")
    assert [e.target for e in jobs] == ["run-2", None]

    admin = await query_system_log(session, action="requeue_stale")
    assert len(admin) == 1
    assert admin[0].success is False

    assert len(await query_system_log(session, limit=2)) == 2
