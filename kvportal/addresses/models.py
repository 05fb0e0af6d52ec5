"""
Address Database Models
"""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kvportal.core.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Address(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Reusable meeting location."""

    __tablename__ = "addresses"

    name: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    street: Mapped[str] = mapped_column(String(200))
    city: Mapped[str] = mapped_column(String(100))
    postal_code: Mapped[str] = mapped_column(String(10))
    location_details: Mapped[str | None] = mapped_column(Text, nullable=True)
