"""
FastAPI dependencies. Injected into route handlers.
"""

from typing import Optional

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import AuthenticatedUser, get_current_user, get_optional_user
from .database import get_db as _get_db
from .errors import ConsentRequired, DeckhandError, SessionBusy


async def get_db() -> AsyncSession:
    """Yields an async DB session per request."""
    async for session in _get_db():
        yield session


async def get_user(
    authorization: str = Header(default=""),
) -> AuthenticatedUser:
    """
    Resolve authenticated user from Authorization header.
    Returns dev user if FF_USE_AUTH0=false.
    """
    try:
        return await get_current_user(authorization)
    except PermissionError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_maybe_user(
    authorization: str = Header(default=""),
) -> Optional[AuthenticatedUser]:
    """Anonymous callers get None; a present but invalid token is still a 401."""
    try:
        return await get_optional_user(authorization)
    except PermissionError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def http_error(e: DeckhandError) -> HTTPException:
    """Map domain errors raised inside a route to HTTP responses."""
    if isinstance(e, ConsentRequired):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "consent_required", "message": e.message},
        )
    if isinstance(e, SessionBusy):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "session_busy", "message": "Another message is still being processed."},
        )
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": e.kind.value, "message": e.message},
    )


def get_provider_dep():
    """Returns the configured AI provider. Overridden in tests."""
    from ..services.provider import get_provider
    return get_provider()
