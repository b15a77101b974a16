from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.access import Viewer
from .domain.capacity import CapacityPolicy, get_capacity_policy
from .infrastructure.repositories import SqlAlchemyProfileRepository
from .utils.auth import decode_access_token

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_policy() -> CapacityPolicy:
    return get_capacity_policy()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers=_BEARER_CHALLENGE)


async def _viewer_from_header(authorization: str, session: AsyncSession) -> Viewer:
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Bearer token required")

    settings = get_settings()
    try:
        claims = decode_access_token(token.strip(), secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise _unauthorized("invalid token") from exc

    try:
        profile = await SqlAlchemyProfileRepository(session).get_profile(claims.user_id)
    except SQLAlchemyError as exc:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user lookup failed") from exc
    if profile is None:
        raise _unauthorized("user not found")

    # The stored profile role is authoritative over the token claim.
    viewer = Viewer(
        authenticated=True,
        user_id=claims.user_id,
        email=profile.email or claims.email,
        role=profile.role or claims.role,
    )
    # End the read so route handlers can open their own transaction.
    await session.commit()
    return viewer


async def get_optional_viewer(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> Viewer:
    if authorization is None:
        return Viewer.anonymous()
    return await _viewer_from_header(authorization, session)


async def get_current_viewer(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> Viewer:
    if authorization is None:
        raise _unauthorized("Authorization header required")
    return await _viewer_from_header(authorization, session)


async def require_admin(viewer: Viewer = Depends(get_current_viewer)) -> Viewer:
    if not viewer.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions. Admin or moderator role required.",
        )
    return viewer
