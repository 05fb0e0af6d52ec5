"""
Groups Database Models

Groups (Arbeitskreise, Basisgruppen), their contact persons and members.
"""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kvportal.core.database import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from kvportal.auth.models import User
    from kvportal.status_reports.models import StatusReport


# =============================================================================
# Enums
# =============================================================================


class GroupStatus(StrEnum):
    """Lifecycle of a group."""

    NEW = "NEW"  # Eingereicht, wartet auf Freischaltung
    ACTIVE = "ACTIVE"  # Öffentlich sichtbar
    ARCHIVED = "ARCHIVED"  # Aufgelöst / ausgeblendet


# =============================================================================
# Association Tables
# =============================================================================

group_responsible_users = Table(
    "group_responsible_users",
    Base.metadata,
    Column("group_id", ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


# =============================================================================
# Models
# =============================================================================


class Group(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A chapter sub-organization with optional recurring meetings."""

    __tablename__ = "groups"

    name: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    description: Mapped[str] = mapped_column(Text)
    logo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    # {"originalUrl": ..., "croppedUrl": ...}
    logo_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )
    status: Mapped[GroupStatus] = mapped_column(
        Enum(GroupStatus, name="group_status"), default=GroupStatus.NEW, index=True
    )

    # Regular meetings
    recurring_patterns: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    meeting_time: Mapped[str | None] = mapped_column(String(5), nullable=True)  # HH:MM
    meeting_street: Mapped[str | None] = mapped_column(String(200), nullable=True)
    meeting_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    meeting_postal_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    meeting_location_details: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    responsible_persons: Mapped[list["ResponsiblePerson"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ResponsiblePerson.last_name",
    )
    status_reports: Mapped[list["StatusReport"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    members: Mapped[list["GroupMember"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    responsible_users: Mapped[list["User"]] = relationship(
        secondary=group_responsible_users, passive_deletes=True
    )

    @property
    def original_logo_url(self) -> str | None:
        return (self.logo_metadata or {}).get("originalUrl")


class ResponsiblePerson(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Contact person named when the group was submitted."""

    __tablename__ = "responsible_persons"

    first_name: Mapped[str] = mapped_column(String(50))
    last_name: Mapped[str] = mapped_column(String(50))
    email: Mapped[str] = mapped_column(String(255))
    group_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"), index=True
    )

    group: Mapped["Group"] = relationship(back_populates="responsible_persons")


class GroupMember(UUIDPrimaryKeyMixin, Base):
    """Portal user who joined a group."""

    __tablename__ = "group_members"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    group_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"), index=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "group_id", name="uq_group_member"),)

    user: Mapped["User"] = relationship()
    group: Mapped["Group"] = relationship(back_populates="members")
