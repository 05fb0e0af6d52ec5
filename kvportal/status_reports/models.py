"""
Status Report Database Models
"""

import uuid
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kvportal.core.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from kvportal.groups.models import Group


class StatusReportStatus(StrEnum):
    NEW = "NEW"  # Eingereicht
    ACTIVE = "ACTIVE"  # Veröffentlicht
    ARCHIVED = "ARCHIVED"
    REJECTED = "REJECTED"  # Abgelehnt


class StatusReport(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Activity report submitted for a group."""

    __tablename__ = "status_reports"

    title: Mapped[str] = mapped_column(String(100))
    content: Mapped[str] = mapped_column(Text)
    reporter_first_name: Mapped[str] = mapped_column(String(50))
    reporter_last_name: Mapped[str] = mapped_column(String(50))
    file_urls: Mapped[list[str]] = mapped_column(JSON, default=list)
    status: Mapped[StatusReportStatus] = mapped_column(
        Enum(StatusReportStatus, name="status_report_status"),
        default=StatusReportStatus.NEW,
        index=True,
    )
    group_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"), index=True
    )

    group: Mapped["Group"] = relationship(back_populates="status_reports")
