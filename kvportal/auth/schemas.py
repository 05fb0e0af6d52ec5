"""
Auth Pydantic Schemas
"""

import uuid

from pydantic import EmailStr, Field, field_validator

from kvportal.auth.models import UserRole
from kvportal.core.config import settings
from kvportal.core.schemas import CamelModel


class LoginRequest(CamelModel):
    """Login with username or email."""

    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class TokenResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserResponse(CamelModel):
    id: uuid.UUID
    username: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    role: UserRole
    is_active: bool


class UserCreate(CamelModel):
    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    password: str
    first_name: str | None = Field(None, max_length=50)
    last_name: str | None = Field(None, max_length=50)
    role: UserRole = UserRole.MITGLIED

    @field_validator("password")
    @classmethod
    def password_length(cls, value: str) -> str:
        if len(value) < settings.min_password_length:
            raise ValueError(
                f"Das Passwort muss mindestens {settings.min_password_length} Zeichen lang sein"
            )
        return value


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_length(cls, value: str) -> str:
        if len(value) < settings.min_password_length:
            raise ValueError(
                f"Das Passwort muss mindestens {settings.min_password_length} Zeichen lang sein"
            )
        return value
