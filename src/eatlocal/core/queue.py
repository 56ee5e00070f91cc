"""Notification queue: enqueue, batch processing and retry scheduling.

Jobs move ``pending -> processing -> {sent, pending, failed}``.  A run
claims each due job with a conditional update and a per-run claim token,
so overlapping runs split a batch between them instead of sending twice.
Settlement writes are fenced on that token; a run that dies mid-job leaves
its claims to be recovered once ``claim_timeout`` has passed, which makes
delivery at-least-once.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from eatlocal.core.channels import DispatchResult, Dispatcher
from eatlocal.core.contacts import ContactResolver
from eatlocal.core.models import EnqueueRequest
from eatlocal.core.templates import render_template
from eatlocal.db.crud.jobs import (
    claim_job,
    create_job,
    get_due_jobs,
    mark_failed,
    mark_retry,
    mark_sent,
    requeue_stale_claims,
)
from eatlocal.db.crud.system_logs import log_event
from eatlocal.db.crud.templates import get_active_template
from eatlocal.db.models import NotificationJob, utcnow
from eatlocal.db.retry import db_retry
from eatlocal.db.session import SessionFactory
from eatlocal.errors import TemplateNotFoundError
from eatlocal.types import Channel, DispatchErrorCode

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE: int = 50
MAX_BATCH_SIZE: int = 100
BASE_RETRY_DELAY: float = 60.0
CLAIM_TIMEOUT: float = 600.0


# ---------------------------------------------------------------------------
# Enqueue
# ---------------------------------------------------------------------------


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


async def enqueue(
    session: AsyncSession, request: EnqueueRequest, *, now: datetime | None = None
) -> NotificationJob:
    """Store a validated notification as a ``pending`` job.

    A named template supplies the subject and body unless the request
    gives its own; SMS jobs take the template's SMS body.

    Raises
    ------
    TemplateNotFoundError
        If the template is unknown, inactive, or has no SMS body for an SMS
        job.
    """
    now = now or utcnow()
    subject, body, template_id = request.subject, request.body, None

    if request.template:
        template = await get_active_template(session, request.template)
        if template is None:
            raise TemplateNotFoundError(f"No active template named {request.template!r}")
        if request.channel is Channel.SMS:
            if not template.supports_sms or not template.sms_body:
                raise TemplateNotFoundError(
                    f"Template {request.template!r} has no SMS body"
                )
            template_body = template.sms_body
        else:
            template_body = template.body
        template_id = template.id
        subject = subject or template.subject
        body = body or template_body

    job = NotificationJob(
        user_id=request.user_id,
        email=request.email,
        phone=request.phone,
        template_id=template_id,
        channel=request.channel.value,
        subject=subject,
        body=body,
        data=dict(request.data),
        scheduled_for=_as_naive_utc(request.scheduled_for) if request.scheduled_for else now,
        priority=request.priority,
        max_attempts=request.max_attempts,
        created_at=now,
        updated_at=now,
    )
    job = await create_job(session, job)
    logger.info(
        "Queued %s notification %s (priority=%d, scheduled_for=%s)",
        job.channel,
        job.id,
        job.priority,
        job.scheduled_for.isoformat(),
    )
    return job


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


@dataclass
class ProcessResult:
    """Tally of one :meth:`QueueProcessor.run`."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    # Stale claims put back to pending at the start of the run.
    requeued: int = 0

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "requeued": self.requeued,
            "errors": list(self.errors),
        }


@db_retry()
async def _fetch_due(factory: SessionFactory, now: datetime, limit: int) -> list[NotificationJob]:
    async with factory() as session:
        return await get_due_jobs(session, now, limit)


@db_retry()
async def _recover_stale(
    factory: SessionFactory, cutoff: datetime, now: datetime
) -> tuple[int, int]:
    async with factory() as session:
        return await requeue_stale_claims(session, cutoff, now)


class QueueProcessor:
    """Deliver due notification jobs in batches.

    Lifecycle::

        processor = QueueProcessor(session_factory, dispatchers, ContactResolver(session_factory))
        result = await processor.run()
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        dispatchers: Mapping[Channel, Dispatcher],
        contacts: ContactResolver | None = None,
        *,
        base_retry_delay: float = BASE_RETRY_DELAY,
        claim_timeout: float = CLAIM_TIMEOUT,
        default_batch_size: int = DEFAULT_BATCH_SIZE,
        max_batch_size: int = MAX_BATCH_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._dispatchers = dict(dispatchers)
        self._contacts = contacts or ContactResolver(session_factory)
        self.base_retry_delay = base_retry_delay
        self.claim_timeout = claim_timeout
        self.default_batch_size = default_batch_size
        self.max_batch_size = max_batch_size
        self.clock = clock

    def retry_delay(self, attempts: int) -> timedelta:
        """Backoff after the *attempts*-th failed attempt: 1x, 2x, 4x ... base."""
        return timedelta(seconds=(2 ** max(attempts - 1, 0)) * self.base_retry_delay)

    def clamp_batch_size(self, batch_size: int | None) -> int:
        if batch_size is None or batch_size < 1:
            return self.default_batch_size
        return min(batch_size, self.max_batch_size)

    async def requeue_stale(self) -> tuple[int, int]:
        """Release claims older than ``claim_timeout``.  Returns ``(requeued, failed)``."""
        now = self.clock()
        cutoff = now - timedelta(seconds=self.claim_timeout)
        requeued, failed = await _recover_stale(self._session_factory, cutoff, now)
        if requeued or failed:
            logger.warning(
                "Recovered stale claims: %d requeued, %d failed", requeued, failed
            )
        return requeued, failed

    async def run(self, batch_size: int | None = None) -> ProcessResult:
        """Process one batch of due jobs.

        Store failures while recovering or selecting the batch are reported
        in ``errors`` rather than raised.
        """
        limit = self.clamp_batch_size(batch_size)
        run_token = uuid.uuid4().hex
        result = ProcessResult()

        try:
            result.requeued, _ = await self.requeue_stale()
            jobs = await _fetch_due(self._session_factory, self.clock(), limit)
        except Exception as exc:
            logger.error("Could not fetch due notifications: %s", exc)
            result.errors.append(f"Fetch error: {exc}")
            await self._record_run(result, run_token)
            return result

        logger.debug("Run %s picked %d due job(s)", run_token, len(jobs))
        for job in jobs:
            try:
                await self._process_one(job, run_token, result)
            except Exception as exc:
                logger.exception("Job %s crashed during processing", job.id)
                result.errors.append(f"Job {job.id}: {type(exc).__name__}: {exc}")

        if result.processed:
            logger.info(
                "Queue run %s: %d processed, %d sent, %d failed",
                run_token,
                result.processed,
                result.succeeded,
                result.failed,
            )
        await self._record_run(result, run_token)
        return result

    async def _process_one(
        self, job: NotificationJob, run_token: str, result: ProcessResult
    ) -> None:
        async with self._session_factory() as session:
            claimed = await claim_job(session, job.id, run_token, self.clock())
        if claimed is None:
            logger.debug("Job %s already claimed elsewhere, skipping", job.id)
            return
        result.processed += 1

        outcome = await self._deliver(claimed)
        now = self.clock()

        if not outcome.success:
            result.failed += 1
            result.errors.append(f"Job {claimed.id}: {outcome.error}")

        async with self._session_factory() as session:
            if outcome.success:
                settled = await mark_sent(
                    session, claimed.id, run_token, now, outcome.external_id
                )
                if settled:
                    result.succeeded += 1
            elif claimed.attempts < claimed.max_attempts:
                next_retry_at = now + self.retry_delay(claimed.attempts)
                settled = await mark_retry(
                    session, claimed.id, run_token, now, next_retry_at, outcome.error or ""
                )
                logger.info(
                    "Job %s attempt %d/%d failed, retry at %s: %s",
                    claimed.id,
                    claimed.attempts,
                    claimed.max_attempts,
                    next_retry_at.isoformat(),
                    outcome.error,
                )
            else:
                settled = await mark_failed(
                    session, claimed.id, run_token, now, outcome.error or ""
                )
                logger.warning(
                    "Job %s failed permanently after %d attempts: %s",
                    claimed.id,
                    claimed.attempts,
                    outcome.error,
                )
        if not settled:
            logger.warning("Job %s claim was lost before it could be settled", claimed.id)

    async def _deliver(self, job: NotificationJob) -> DispatchResult:
        channel = Channel(job.channel)
        dispatcher = self._dispatchers.get(channel)
        if dispatcher is None:
            return DispatchResult.failure(
                DispatchErrorCode.CHANNEL_NOT_IMPLEMENTED,
                f"no dispatcher for {channel.value}",
            )

        try:
            destination = await self._contacts.resolve(job)
        except Exception as exc:
            logger.warning("Could not look up destination for job %s: %s", job.id, exc)
            return DispatchResult.failure(
                DispatchErrorCode.DESTINATION_UNRESOLVED,
                f"lookup failed: {type(exc).__name__}: {exc}",
            )
        if not destination:
            return DispatchResult.failure(
                DispatchErrorCode.DESTINATION_UNRESOLVED,
                f"no {channel.value} destination for job {job.id}",
            )

        data = job.data or {}
        subject = render_template(job.subject, data) if job.subject else None
        body = render_template(job.body, data, encode=dispatcher.encode)
        try:
            return await dispatcher.dispatch(destination, subject, body, data=data)
        except Exception as exc:
            logger.exception("Dispatcher for %s raised on job %s", channel.value, job.id)
            return DispatchResult.failure(
                DispatchErrorCode.PROVIDER_UNAVAILABLE, f"{type(exc).__name__}: {exc}"
            )

    async def _record_run(self, result: ProcessResult, run_token: str) -> None:
        try:
            async with self._session_factory() as session:
                await log_event(
                    session,
                    "background_job",
                    "process_notifications",
                    target=run_token,
                    details=result.to_dict(),
                    success=not result.errors,
                )
        except Exception as exc:
            logger.warning("Could not write queue run to system log: %s", exc)
