"""Resolve a job's delivery destination for its channel."""

from __future__ import annotations

import logging

from eatlocal.db.crud.profiles import get_profile
from eatlocal.db.models import NotificationJob
from eatlocal.db.session import SessionFactory
from eatlocal.types import Channel

logger = logging.getLogger(__name__)


class ContactResolver:
    """Pick the address a job should be delivered to.

    Contact details stored on the job win; otherwise they are looked up on
    the recipient's profile.  In-app and push deliveries address the user id
    directly.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def resolve(self, job: NotificationJob) -> str | None:
        """Return the destination for *job*, or ``None`` if it has none."""
        channel = Channel(job.channel)

        if channel in (Channel.IN_APP, Channel.PUSH):
            return job.user_id

        if channel is Channel.EMAIL:
            if job.email:
                return job.email
            field = "email"
        else:  # SMS, WhatsApp
            if job.phone:
                return job.phone
            field = "phone"

        if not job.user_id:
            return None
        async with self._session_factory() as session:
            profile = await get_profile(session, job.user_id)
        if profile is None:
            logger.debug("No profile for user %s (job %s)", job.user_id, job.id)
            return None
        return getattr(profile, field) or None
