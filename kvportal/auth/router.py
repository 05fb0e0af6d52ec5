"""
Auth API Router

Login, logout and the current user.
"""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.auth.dependencies import get_current_user
from kvportal.auth.models import User
from kvportal.auth.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    TokenResponse,
    UserResponse,
)
from kvportal.auth.security import create_access_token
from kvportal.auth.services import UserService
from kvportal.core.config import settings
from kvportal.core.database import get_db
from kvportal.core.errors import AppError
from kvportal.core.schemas import SuccessResponse

router = APIRouter(tags=["auth"])


@router.post("/auth/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Authenticate user, return a token and set the session cookie."""
    user = await UserService(db).authenticate(request.username, request.password)
    if user is None:
        raise AppError.authentication("Ungültige Anmeldedaten")

    token = create_access_token({"sub": str(user.id), "role": str(user.role)})
    expires_in = settings.access_token_expire_minutes * 60
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=expires_in,
        httponly=True,
        samesite="lax",
        secure=settings.environment == "production",
    )
    return TokenResponse(access_token=token, expires_in=expires_in)


@router.post("/auth/logout", response_model=SuccessResponse)
async def logout(response: Response) -> SuccessResponse:
    """Logout current user."""
    response.delete_cookie(settings.session_cookie_name)
    return SuccessResponse(message="Erfolgreich abgemeldet")


@router.get("/auth/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)) -> User:
    """Get current user information."""
    return current_user


@router.post("/admin/change-password", response_model=SuccessResponse)
async def change_password(
    request: ChangePasswordRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> SuccessResponse:
    await UserService(db).change_password(
        current_user, request.current_password, request.new_password
    )
    return SuccessResponse(message="Passwort erfolgreich geändert")
