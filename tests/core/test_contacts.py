"""Tests for ContactResolver destination lookup."""

from __future__ import annotations

from eatlocal.core.contacts import ContactResolver
from eatlocal.db.crud.profiles import create_profile
from eatlocal.db.models import NotificationJob


def _job(channel: str, **fields) -> NotificationJob:
    return NotificationJob(channel=channel, body="hi", **fields)


async def test_job_email_wins(session_factory, session):
    await create_profile(session, "u1", email="profile@example.com")
    resolver = ContactResolver(session_factory)
    job = _job("email", user_id="u1", email="job@example.com")
    assert await resolver.resolve(job) == "job@example.com"


async def test_falls_back_to_profile(session_factory, session):
    await create_profile(session, "u1", email="profile@example.com", phone="+27820000000")
    resolver = ContactResolver(session_factory)
    assert await resolver.resolve(_job("email", user_id="u1")) == "profile@example.com"
    assert await resolver.resolve(_job("sms", user_id="u1")) == "+27820000000"
    assert await resolver.resolve(_job("whatsapp", user_id="u1")) == "+27820000000"


async def test_in_app_and_push_use_user_id(session_factory):
    resolver = ContactResolver(session_factory)
    assert await resolver.resolve(_job("in_app", user_id="u9")) == "u9"
    assert await resolver.resolve(_job("push", user_id="u9")) == "u9"


async def test_unresolvable(session_factory, session):
    await create_profile(session, "u1")  # no email or phone
    resolver = ContactResolver(session_factory)
    assert await resolver.resolve(_job("email", user_id="u1")) is None
    assert await resolver.resolve(_job("sms", user_id="missing")) is None
    assert await resolver.resolve(_job("email")) is None
    assert await resolver.resolve(_job("in_app")) is None
