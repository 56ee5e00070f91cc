"""Tests for Profile and UserRole CRUD operations."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from eatlocal.db.crud.profiles import (
    create_profile,
    get_profile,
    get_profile_by_token,
    get_roles,
    grant_role,
)


async def test_create_and_get_profile(session):
    await create_profile(session, "u1", email="thabo@example.com", phone="+27821234567")
    profile = await get_profile(session, "u1")
    assert profile is not None
    assert profile.email == "thabo@example.com"
    assert profile.phone == "+27821234567"


async def test_get_missing_profile(session):
    assert await get_profile(session, "ghost") is None


async def test_lookup_by_token(session):
    await create_profile(session, "u1", token="tok-abc")
    profile = await get_profile_by_token(session, "tok-abc")
    assert profile is not None
    assert profile.id == "u1"
    assert await get_profile_by_token(session, "tok-zzz") is None


async def test_tokens_are_unique(session):
    await create_profile(session, "u1", token="same")
    with pytest.raises(IntegrityError):
        await create_profile(session, "u2", token="same")


async def test_grant_role_is_idempotent(session):
    await create_profile(session, "u1")
    assert await grant_role(session, "u1", "restaurant") is True
    assert await grant_role(session, "u1", "restaurant") is False
    assert await grant_role(session, "u1", "admin") is True
    assert await get_roles(session, "u1") == ["admin", "restaurant"]


async def test_no_roles(session):
    assert await get_roles(session, "nobody") == []
