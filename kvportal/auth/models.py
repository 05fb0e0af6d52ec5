"""
Auth Database Models

Portal users and their roles.
"""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from kvportal.core.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class UserRole(StrEnum):
    """Roles a portal user can have."""

    ADMIN = "admin"  # Kreisvorstand / Geschäftsstelle
    MITGLIED = "mitglied"  # Mitglied mit Portalzugang


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user of the admin area or the member portal."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    first_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role"), default=UserRole.ADMIN
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    password_reset_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password_reset_expires: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def display_name(self) -> str:
        full = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full or self.username

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
