"""Caller identity for HTTP endpoints.

Every request is resolved once into a :data:`CallerContext`:

* :class:`ServiceCaller` -- bearer token equals the configured service key
  (internal jobs and other backend services);
* :class:`AuthenticatedUser` -- bearer token belongs to a profile;
* :class:`Anonymous` -- no bearer token at all.

An unrecognised bearer token is an error, never a silent downgrade to
anonymous.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import Callable, Union

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from eatlocal.db.crud.profiles import get_profile_by_token, get_roles
from eatlocal.db.session import get_session
from eatlocal.errors import InvalidCredentialsError

bearer_scheme = HTTPBearer(auto_error=False)

# Roles that pass every role check.
ADMIN_ROLES: frozenset[str] = frozenset({"admin", "superadmin"})


@dataclass(frozen=True)
class ServiceCaller:
    @property
    def rate_limit_identifier(self) -> str:
        return "service"


@dataclass(frozen=True)
class AuthenticatedUser:
    identifier: str
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return bool(self.roles & ADMIN_ROLES)

    def has_any_role(self, *roles: str) -> bool:
        return self.is_admin or bool(self.roles.intersection(roles))

    @property
    def rate_limit_identifier(self) -> str:
        return self.identifier


@dataclass(frozen=True)
class Anonymous:
    client_host: str | None = None

    @property
    def rate_limit_identifier(self) -> str:
        return f"ip:{self.client_host or 'unknown'}"


CallerContext = Union[ServiceCaller, AuthenticatedUser, Anonymous]


async def resolve_caller(
    authorization: str | None,
    session: AsyncSession,
    service_key: str | None,
    client_host: str | None = None,
) -> CallerContext:
    """Decide who is calling from a raw bearer token.

    Raises
    ------
    InvalidCredentialsError
        If *authorization* is given but matches neither the service key nor
        any profile token.
    """
    if not authorization:
        return Anonymous(client_host)
    if service_key and hmac.compare_digest(authorization, service_key):
        return ServiceCaller()
    profile = await get_profile_by_token(session, authorization)
    if profile is None:
        raise InvalidCredentialsError("Invalid token")
    roles = await get_roles(session, profile.id)
    return AuthenticatedUser(profile.id, frozenset(roles))


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


async def get_caller(
    request: Request,
    session: AsyncSession = Depends(get_session),
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> CallerContext:
    """FastAPI dependency: resolve the request's :data:`CallerContext`.

    Raises ``HTTPException(401)`` on an unknown bearer token.
    """
    token = credentials.credentials if credentials is not None else None
    client_host = request.client.host if request.client else None
    try:
        return await resolve_caller(
            token, session, request.app.state.settings.service_key, client_host
        )
    except InvalidCredentialsError as exc:
        raise HTTPException(
            status_code=401,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def require_roles(*roles: str, allow_service: bool = True) -> Callable:
    """Build a dependency admitting the service caller and users with *roles*.

    ``admin`` and ``superadmin`` always pass.  Anonymous callers get 401,
    users without a matching role get 403.
    """

    async def dependency(caller: CallerContext = Depends(get_caller)) -> CallerContext:
        if isinstance(caller, ServiceCaller):
            if allow_service:
                return caller
            raise HTTPException(status_code=403, detail="Service callers not allowed")
        if isinstance(caller, Anonymous):
            raise HTTPException(
                status_code=401,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not caller.has_any_role(*roles):
            raise HTTPException(status_code=403, detail="Insufficient role")
        return caller

    return dependency


async def require_service(caller: CallerContext = Depends(get_caller)) -> ServiceCaller:
    """FastAPI dependency admitting only the internal service caller."""
    if isinstance(caller, Anonymous):
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not isinstance(caller, ServiceCaller):
        raise HTTPException(status_code=403, detail="Service key required")
    return caller
