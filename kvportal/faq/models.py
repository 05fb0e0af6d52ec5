"""
FAQ Database Models
"""

import uuid
from enum import StrEnum

from sqlalchemy import Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kvportal.core.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class FaqStatus(StrEnum):
    ACTIVE = "ACTIVE"  # Im Portal sichtbar
    ARCHIVED = "ARCHIVED"  # Ausgeblendet, löschbar


class FaqEntry(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A question/answer pair shown in the member portal."""

    __tablename__ = "faq_entries"

    title: Mapped[str] = mapped_column(String(200), index=True)
    content: Mapped[str] = mapped_column(Text)
    status: Mapped[FaqStatus] = mapped_column(
        Enum(FaqStatus, name="faq_status"), default=FaqStatus.ACTIVE, index=True
    )

    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    updated_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
