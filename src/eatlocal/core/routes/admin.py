"""Operator endpoints for the queue and the rate-limit store.

All of them require the service key or an admin/superadmin user.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from eatlocal.core.auth import CallerContext, require_roles
from eatlocal.core.models import QueueStatsResponse, RequeueResponse, SweepResponse
from eatlocal.db.crud.jobs import count_by_status
from eatlocal.db.crud.system_logs import log_event
from eatlocal.db.session import get_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


@router.get("/queue", response_model=QueueStatsResponse)
async def queue_stats(
    session: AsyncSession = Depends(get_session),
    _: CallerContext = Depends(require_roles()),
) -> QueueStatsResponse:
    """Count notification jobs per status."""
    return QueueStatsResponse(counts=await count_by_status(session))


@router.post("/queue/requeue-stale", response_model=RequeueResponse)
async def requeue_stale(
    request: Request,
    session: AsyncSession = Depends(get_session),
    caller: CallerContext = Depends(require_roles()),
) -> RequeueResponse:
    """Release jobs stuck in ``processing`` past the claim timeout."""
    requeued, failed = await request.app.state.processor.requeue_stale()
    await log_event(
        session,
        "admin",
        "requeue_stale",
        target=caller.rate_limit_identifier,
        details={"requeued": requeued, "failed": failed},
    )
    return RequeueResponse(requeued=requeued, failed=failed)


@router.post("/rate-limits/sweep", response_model=SweepResponse)
async def sweep_rate_limits(
    request: Request,
    _: CallerContext = Depends(require_roles()),
) -> SweepResponse:
    """Delete expired rate-limit counters."""
    deleted = await request.app.state.limiter.sweep()
    logger.info("Swept %d expired rate-limit counters", deleted)
    return SweepResponse(deleted=deleted)
