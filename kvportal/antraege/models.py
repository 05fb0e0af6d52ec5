"""
Antrag Database Models
"""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kvportal.core.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class AntragStatus(StrEnum):
    NEU = "NEU"
    AKZEPTIERT = "AKZEPTIERT"
    ABGELEHNT = "ABGELEHNT"


class Antrag(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Application to the Kreisvorstand (funding, support, room booking)."""

    __tablename__ = "antraege"

    first_name: Mapped[str] = mapped_column(String(50))
    last_name: Mapped[str] = mapped_column(String(50))
    email: Mapped[str] = mapped_column(String(254))
    title: Mapped[str] = mapped_column(String(200))
    summary: Mapped[str] = mapped_column(Text)
    purposes: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    file_urls: Mapped[list[str]] = mapped_column(JSON, default=list)
    status: Mapped[AntragStatus] = mapped_column(
        Enum(AntragStatus, name="antrag_status"), default=AntragStatus.NEU, index=True
    )

    # Entscheidung
    decision_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(150), nullable=True)
    decided_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AntragConfiguration(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Single row holding the notification recipients for new Anträge."""

    __tablename__ = "antrag_configurations"

    recipient_emails: Mapped[str] = mapped_column(Text)

    @property
    def recipients(self) -> list[str]:
        return [email.strip() for email in self.recipient_emails.split(",") if email.strip()]
