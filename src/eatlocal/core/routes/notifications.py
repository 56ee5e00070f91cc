"""Notification enqueue, status and processing endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from eatlocal.core.auth import CallerContext, require_roles
from eatlocal.core.models import (
    EnqueueRequest,
    EnqueueResponse,
    JobStatusResponse,
    ProcessRequest,
    ProcessResponse,
)
from eatlocal.core.queue import enqueue
from eatlocal.core.routes.rate_limit import enforce_policy
from eatlocal.db.crud.jobs import get_job
from eatlocal.db.session import get_session
from eatlocal.types import Channel

router = APIRouter()

# Outbound channels that cost money get their own, tighter policies.
_CHANNEL_POLICIES: dict[Channel, str] = {
    Channel.EMAIL: "send_email",
    Channel.SMS: "send_sms",
}


@router.post("/notifications", response_model=EnqueueResponse, status_code=201)
async def create_notification(
    body: EnqueueRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
    caller: CallerContext = Depends(require_roles("restaurant", "delivery_partner")),
) -> EnqueueResponse:
    """Queue a notification for delivery.

    Delivery happens later, in a processing run; this only records the job.
    """
    policy = _CHANNEL_POLICIES.get(body.channel, "notification_enqueue")
    await enforce_policy(request, response, caller.rate_limit_identifier, policy)

    job = await enqueue(session, body)
    return EnqueueResponse(
        id=job.id,
        status=job.status,
        channel=job.channel,
        scheduled_for=job.scheduled_for,
    )


@router.get("/notifications/{job_id}", response_model=JobStatusResponse)
async def get_notification(
    job_id: str,
    session: AsyncSession = Depends(get_session),
    _: CallerContext = Depends(require_roles()),
) -> JobStatusResponse:
    """Return a job's delivery status (service and admins only)."""
    job = await get_job(session, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return JobStatusResponse.model_validate(job, from_attributes=True)


@router.post("/notifications/process", response_model=ProcessResponse)
async def process_notifications(
    request: Request,
    response: Response,
    body: ProcessRequest | None = None,
    caller: CallerContext = Depends(require_roles()),
) -> ProcessResponse:
    """Run one processing batch now.  ``batch_size`` is capped server-side."""
    await enforce_policy(request, response, caller.rate_limit_identifier, "notification_process")
    result = await request.app.state.processor.run(body.batch_size if body else None)
    return ProcessResponse(**result.to_dict())
