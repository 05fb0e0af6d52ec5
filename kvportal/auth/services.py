"""
Auth Services

User lookup, login and password changes.
"""

import logging

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.auth.models import User
from kvportal.auth.schemas import UserCreate
from kvportal.auth.security import hash_password, verify_password
from kvportal.core.errors import AppError

logger = logging.getLogger(__name__)


class UserService:
    """Manages portal users."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def authenticate(self, username: str, password: str) -> User | None:
        """Return the active user for the credentials, None otherwise."""
        login = username.strip().lower()
        result = await self.db.execute(
            select(User).where(
                or_(func.lower(User.username) == login, func.lower(User.email) == login)
            )
        )
        user = result.scalar_one_or_none()
        if user is None or not user.is_active:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    async def create_user(self, data: UserCreate) -> User:
        existing = await self.db.execute(
            select(User.id).where(
                or_(
                    func.lower(User.username) == data.username.lower(),
                    func.lower(User.email) == data.email.lower(),
                )
            )
        )
        if existing.first() is not None:
            raise AppError.conflict("Benutzername oder E-Mail-Adresse bereits vergeben")

        user = User(
            username=data.username,
            email=data.email.lower(),
            password_hash=hash_password(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            role=data.role,
        )
        self.db.add(user)
        await self.db.flush()
        logger.info("Created user %s with role %s", user.username, user.role)
        return user

    async def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            raise AppError.business_rule("Aktuelles Passwort ist nicht korrekt.")
        user.password_hash = hash_password(new_password)
        await self.db.flush()
        logger.info("Password changed for user %s", user.username)
