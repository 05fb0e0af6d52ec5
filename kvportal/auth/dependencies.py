"""
Auth Dependencies

FastAPI dependencies for authentication and role checks.
"""

import uuid

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.auth.models import User, UserRole
from kvportal.auth.security import decode_token
from kvportal.core.config import settings
from kvportal.core.database import get_db
from kvportal.core.errors import AppError

security = HTTPBearer(auto_error=False)


def _extract_token(
    request: Request, credentials: HTTPAuthorizationCredentials | None
) -> str | None:
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(settings.session_cookie_name)


async def _load_user(db: AsyncSession, token: str | None) -> User | None:
    if not token:
        return None
    payload = decode_token(token)
    if not payload or "sub" not in payload:
        return None
    try:
        user_id = uuid.UUID(str(payload["sub"]))
    except ValueError:
        return None
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """
    Get current user if authenticated, None otherwise.

    Useful for endpoints that work for both authenticated and anonymous users.
    """
    return await _load_user(db, _extract_token(request, credentials))


async def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    """Get current authenticated user."""
    if user is None:
        raise AppError.authentication()
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN:
        raise AppError.authorization()
    return user


async def require_portal_user(user: User = Depends(get_current_user)) -> User:
    """Admins and members may use the member portal."""
    if user.role not in (UserRole.ADMIN, UserRole.MITGLIED):
        raise AppError.authorization()
    return user
