"""CRUD operations for Profile and UserRole entities.

Profiles carry the contact info the notification queue resolves
destinations from, and the bearer token identity resolution checks.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from eatlocal.db.models import Profile, UserRole


async def create_profile(
    session: AsyncSession,
    user_id: str,
    *,
    email: str | None = None,
    phone: str | None = None,
    full_name: str | None = None,
    token: str | None = None,
) -> Profile:
    """Create a profile row and return it."""
    profile = Profile(
        id=user_id, email=email, phone=phone, full_name=full_name, token=token
    )
    session.add(profile)
    await session.commit()
    await session.refresh(profile)
    return profile


async def get_profile(session: AsyncSession, user_id: str) -> Profile | None:
    """Get the profile for *user_id*."""
    stmt = select(Profile).where(Profile.id == user_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_profile_by_token(session: AsyncSession, token: str) -> Profile | None:
    """Get the profile whose API bearer token is *token*."""
    stmt = select(Profile).where(Profile.token == token)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def grant_role(session: AsyncSession, user_id: str, role: str) -> bool:
    """Grant *role* to *user_id*.

    Returns ``True`` if newly granted, ``False`` if the user already had it
    (``IntegrityError`` on the unique constraint).
    """
    session.add(UserRole(user_id=user_id, role=role))
    try:
        await session.commit()
        return True
    except IntegrityError:
        await session.rollback()
        return False


async def get_roles(session: AsyncSession, user_id: str) -> list[str]:
    """Return the roles granted to *user_id*, sorted."""
    stmt = select(UserRole.role).where(UserRole.user_id == user_id).order_by(UserRole.role)
    result = await session.execute(stmt)
    return list(result.scalars().all())
