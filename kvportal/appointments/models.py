"""
Appointment Database Models
"""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kvportal.core.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class AppointmentStatus(StrEnum):
    PENDING = "pending"  # Eingereicht
    ACCEPTED = "accepted"  # Veröffentlicht
    REJECTED = "rejected"


class Appointment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Event submitted for the public calendar (Termin)."""

    __tablename__ = "appointments"

    title: Mapped[str] = mapped_column(String(200))
    main_text: Mapped[str] = mapped_column(Text)
    start_date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    end_date_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    recurring_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Ort, optional aus einer gespeicherten Adresse übernommen
    street: Mapped[str | None] = mapped_column(String(200), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    location_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    address_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("addresses.id", ondelete="SET NULL"), nullable=True
    )

    first_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(50), nullable=True)

    file_urls: Mapped[list[str]] = mapped_column(JSON, default=list)
    featured: Mapped[bool] = mapped_column(Boolean, default=False)
    cover_image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cropped_cover_image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.PENDING,
        index=True,
    )
    processed: Mapped[bool] = mapped_column(Boolean, default=False)
    processing_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status_change_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def cover_urls(self) -> list[str]:
        return [url for url in (self.cover_image_url, self.cropped_cover_image_url) if url]

    @property
    def display_cover_url(self) -> str | None:
        return self.cropped_cover_image_url or self.cover_image_url
