"""CRUD operations for NotificationJob entities (``notification_queue``).

Every function takes ``session: AsyncSession`` as its first parameter.
Status writes are conditional updates keyed on the job's current status
(and, once claimed, its ``claim_token``), and every one of them is checked
against the job state machine first.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from eatlocal.db.models import NotificationJob
from eatlocal.types import JobStatus, ensure_transition


async def create_job(
    session: AsyncSession, job: NotificationJob, *, commit: bool = True
) -> NotificationJob:
    """Insert a new job.  Its status must be ``pending``.

    When *commit* is ``False`` the row is flushed but the caller is
    responsible for committing the session.
    """
    if JobStatus(job.status) is not JobStatus.PENDING:
        raise ValueError(f"New jobs must be pending, got {job.status!r}")
    session.add(job)
    if commit:
        await session.commit()
        await session.refresh(job)
    else:
        await session.flush()
    return job


async def get_job(session: AsyncSession, job_id: str) -> NotificationJob | None:
    """Return the job with *job_id*, freshly loaded from the database."""
    stmt = (
        select(NotificationJob)
        .where(NotificationJob.id == job_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_due_jobs(
    session: AsyncSession, now: datetime, limit: int = 50
) -> list[NotificationJob]:
    """Pending jobs that may be dispatched at *now*.

    Due means ``scheduled_for <= now`` and any retry delay has elapsed.
    Ordered by priority (lower first) then schedule time.
    """
    stmt = (
        select(NotificationJob)
        .where(
            NotificationJob.status == JobStatus.PENDING.value,
            NotificationJob.scheduled_for <= now,
            or_(
                NotificationJob.next_retry_at.is_(None),  # type: ignore[union-attr]
                NotificationJob.next_retry_at <= now,  # type: ignore[operator]
            ),
            NotificationJob.attempts < NotificationJob.max_attempts,
        )
        .order_by(NotificationJob.priority.asc(), NotificationJob.scheduled_for.asc())  # type: ignore[attr-defined]
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def claim_job(
    session: AsyncSession, job_id: str, claim_token: str, now: datetime
) -> NotificationJob | None:
    """Atomically move a pending job to ``processing`` and count the attempt.

    Returns the claimed job, or ``None`` if it was no longer pending (another
    processor claimed it first) or its attempts are already exhausted.
    """
    ensure_transition(JobStatus.PENDING, JobStatus.PROCESSING)
    stmt = (
        update(NotificationJob)
        .where(
            NotificationJob.id == job_id,
            NotificationJob.status == JobStatus.PENDING.value,
            NotificationJob.attempts < NotificationJob.max_attempts,
        )
        .values(
            status=JobStatus.PROCESSING.value,
            attempts=NotificationJob.attempts + 1,
            last_attempt_at=now,
            claim_token=claim_token,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()
    if not result.rowcount:
        return None
    return await get_job(session, job_id)


async def _settle(
    session: AsyncSession,
    job_id: str,
    claim_token: str,
    target: JobStatus,
    values: dict[str, Any],
) -> bool:
    ensure_transition(JobStatus.PROCESSING, target)
    stmt = (
        update(NotificationJob)
        .where(
            NotificationJob.id == job_id,
            NotificationJob.status == JobStatus.PROCESSING.value,
            NotificationJob.claim_token == claim_token,
        )
        .values(status=target.value, claim_token=None, **values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()
    return bool(result.rowcount)


async def mark_sent(
    session: AsyncSession,
    job_id: str,
    claim_token: str,
    now: datetime,
    external_id: str | None = None,
) -> bool:
    """``processing -> sent``.  Returns ``False`` if the claim was lost."""
    return await _settle(
        session,
        job_id,
        claim_token,
        JobStatus.SENT,
        {"sent_at": now, "external_id": external_id, "error_message": None, "updated_at": now},
    )


async def mark_retry(
    session: AsyncSession,
    job_id: str,
    claim_token: str,
    now: datetime,
    next_retry_at: datetime,
    error: str,
) -> bool:
    """``processing -> pending`` with a retry time.  ``False`` if the claim was lost."""
    return await _settle(
        session,
        job_id,
        claim_token,
        JobStatus.PENDING,
        {"next_retry_at": next_retry_at, "error_message": error, "updated_at": now},
    )


async def mark_failed(
    session: AsyncSession,
    job_id: str,
    claim_token: str,
    now: datetime,
    error: str,
) -> bool:
    """``processing -> failed`` (terminal).  ``False`` if the claim was lost."""
    return await _settle(
        session,
        job_id,
        claim_token,
        JobStatus.FAILED,
        {"error_message": error, "updated_at": now},
    )


async def requeue_stale_claims(
    session: AsyncSession, cutoff: datetime, now: datetime
) -> tuple[int, int]:
    """Release ``processing`` jobs claimed before *cutoff*.

    Jobs with attempts left go back to ``pending`` (due immediately); jobs
    that used their last attempt become ``failed``.  Returns
    ``(requeued, failed)``.
    """
    ensure_transition(JobStatus.PROCESSING, JobStatus.PENDING)
    ensure_transition(JobStatus.PROCESSING, JobStatus.FAILED)
    stale = (
        NotificationJob.status == JobStatus.PROCESSING.value,
        NotificationJob.last_attempt_at < cutoff,  # type: ignore[operator]
    )
    message = "ClaimExpired: processing run did not settle the job"

    exhausted = await session.execute(
        update(NotificationJob)
        .where(*stale, NotificationJob.attempts >= NotificationJob.max_attempts)
        .values(
            status=JobStatus.FAILED.value,
            claim_token=None,
            error_message=message,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    requeued = await session.execute(
        update(NotificationJob)
        .where(*stale, NotificationJob.attempts < NotificationJob.max_attempts)
        .values(
            status=JobStatus.PENDING.value,
            claim_token=None,
            next_retry_at=now,
            error_message=message,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return requeued.rowcount or 0, exhausted.rowcount or 0


async def count_by_status(session: AsyncSession) -> dict[str, int]:
    """Return ``{status: count}`` for every status, zero-filled."""
    stmt = select(NotificationJob.status, func.count()).group_by(NotificationJob.status)
    result = await session.execute(stmt)
    counts = {status.value: 0 for status in JobStatus}
    for status, count in result.all():
        counts[status] = count
    return counts
