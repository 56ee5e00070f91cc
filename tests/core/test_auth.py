"""Tests for caller resolution and role checks."""

from __future__ import annotations

import pytest

from eatlocal.core.auth import (
    Anonymous,
    AuthenticatedUser,
    ServiceCaller,
    resolve_caller,
)
from eatlocal.db.crud.profiles import create_profile, grant_role
from eatlocal.errors import InvalidCredentialsError

SERVICE_KEY = "svc-secret"


@pytest.fixture
async def owner(session):
    profile = await create_profile(session, "owner-1", token="owner-token")
    await grant_role(session, profile.id, "restaurant")
    return profile


class TestResolveCaller:
    async def test_no_token_is_anonymous(self, session):
        caller = await resolve_caller(None, session, SERVICE_KEY, "10.0.0.7")
        assert caller == Anonymous("10.0.0.7")
        assert caller.rate_limit_identifier == "ip:10.0.0.7"

    async def test_anonymous_without_host(self, session):
        caller = await resolve_caller("", session, SERVICE_KEY)
        assert caller.rate_limit_identifier == "ip:unknown"

    async def test_service_key(self, session):
        caller = await resolve_caller(SERVICE_KEY, session, SERVICE_KEY)
        assert isinstance(caller, ServiceCaller)
        assert caller.rate_limit_identifier == "service"

    async def test_profile_token(self, session, owner):
        caller = await resolve_caller("owner-token", session, SERVICE_KEY)
        assert caller == AuthenticatedUser("owner-1", frozenset({"restaurant"}))
        assert caller.rate_limit_identifier == "owner-1"

    async def test_unknown_token_rejected(self, session, owner):
        with pytest.raises(InvalidCredentialsError):
            await resolve_caller("guess", session, SERVICE_KEY)

    async def test_service_key_unset(self, session):
        # With no service key configured, nothing is a service caller.
        with pytest.raises(InvalidCredentialsError):
            await resolve_caller(SERVICE_KEY, session, None)


class TestAuthenticatedUser:
    def test_role_match(self):
        user = AuthenticatedUser("u1", frozenset({"delivery_partner"}))
        assert user.has_any_role("restaurant", "delivery_partner")
        assert not user.has_any_role("restaurant")
        assert not user.is_admin

    @pytest.mark.parametrize("role", ["admin", "superadmin"])
    def test_admins_pass_every_check(self, role):
        user = AuthenticatedUser("u1", frozenset({role}))
        assert user.is_admin
        assert user.has_any_role("restaurant")
        assert user.has_any_role()

    def test_no_roles(self):
        assert not AuthenticatedUser("u1").has_any_role()
