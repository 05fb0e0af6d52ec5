"""
Newsletter Database Models

Newsletters with their sending state, the settings row, hashed recipients
and the open/click analytics.
"""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kvportal.core.database import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class NewsletterStatus(StrEnum):
    DRAFT = "draft"
    SENDING = "sending"
    SENT = "sent"
    RETRYING = "retrying"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


class NewsletterItem(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A newsletter issue."""

    __tablename__ = "newsletter_items"

    subject: Mapped[str] = mapped_column(String(200))
    introduction_text: Mapped[str] = mapped_column(Text, default="")
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[NewsletterStatus] = mapped_column(
        Enum(NewsletterStatus, name="newsletter_status"),
        default=NewsletterStatus.DRAFT,
        index=True,
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    recipient_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Serialized SendingState; always reassigned, never mutated in place
    sending_state: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    analytics: Mapped["NewsletterAnalytics | None"] = relationship(
        back_populates="newsletter", cascade="all, delete-orphan", passive_deletes=True
    )

    __mapper_args__ = {"version_id_col": version}


class NewsletterSettings(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Single settings row for newsletter composition and sending."""

    __tablename__ = "newsletter_settings"

    # Absender
    from_email: Mapped[str] = mapped_column(String(254), default="newsletter@linke-frankfurt.de")
    from_name: Mapped[str] = mapped_column(String(100), default="Die Linke Frankfurt")
    reply_to_email: Mapped[str | None] = mapped_column(
        String(254), nullable=True, default="buero@linke-frankfurt.de"
    )
    subject_template: Mapped[str] = mapped_column(
        String(200), default="Die Linke Frankfurt - Newsletter {date}"
    )
    email_salt: Mapped[str | None] = mapped_column(String(64), nullable=True)
    test_email_recipients: Mapped[str | None] = mapped_column(
        Text, nullable=True, default="buero@linke-frankfurt.de"
    )

    # Darstellung
    header_logo: Mapped[str | None] = mapped_column(String(500), nullable=True, default="/images/logo.png")
    header_banner: Mapped[str | None] = mapped_column(
        String(500), nullable=True, default="/images/header-bg.jpg"
    )
    footer_text: Mapped[str | None] = mapped_column(Text, nullable=True, default="Die Linke Frankfurt am Main")
    unsubscribe_link: Mapped[str | None] = mapped_column(String(500), nullable=True, default="#")

    # Versand
    chunk_size: Mapped[int] = mapped_column(Integer, default=50)
    chunk_delay_ms: Mapped[int] = mapped_column(Integer, default=500)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    max_backoff_delay_ms: Mapped[int] = mapped_column(Integer, default=10000)
    retry_chunk_sizes: Mapped[str] = mapped_column(String(100), default="10,5,1")
    email_timeout_ms: Mapped[int] = mapped_column(Integer, default=30000)
    connection_timeout_ms: Mapped[int] = mapped_column(Integer, default=20000)

    # Inhalt
    max_status_reports_per_group: Mapped[int] = mapped_column(Integer, default=3)
    max_groups_with_reports: Mapped[int] = mapped_column(Integer, default=10)

    # KI
    ai_system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ai_topic_extraction_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_refinement_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def retry_chunk_size_list(self) -> list[int]:
        sizes = [int(s) for s in self.retry_chunk_sizes.split(",") if s.strip().isdigit()]
        return [s for s in sizes if s > 0] or [1]

    @property
    def test_recipient_list(self) -> list[str]:
        raw = self.test_email_recipients or ""
        return [e.strip() for e in raw.replace("\n", ",").split(",") if e.strip()]


class HashedRecipient(UUIDPrimaryKeyMixin, Base):
    """Salted hash of a newsletter recipient; plain addresses are never stored."""

    __tablename__ = "hashed_recipients"

    hashed_email: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_sent: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class NewsletterAnalytics(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "newsletter_analytics"

    newsletter_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("newsletter_items.id", ondelete="CASCADE"), unique=True
    )
    total_recipients: Mapped[int] = mapped_column(Integer, default=0)
    total_opens: Mapped[int] = mapped_column(Integer, default=0)
    unique_opens: Mapped[int] = mapped_column(Integer, default=0)
    pixel_token: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    newsletter: Mapped[NewsletterItem] = relationship(back_populates="analytics")
    link_clicks: Mapped[list["NewsletterLinkClick"]] = relationship(
        back_populates="analytics", cascade="all, delete-orphan", passive_deletes=True
    )


class NewsletterLinkClick(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "newsletter_link_clicks"
    __table_args__ = (UniqueConstraint("analytics_id", "url", name="uq_link_click_url"),)

    analytics_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("newsletter_analytics.id", ondelete="CASCADE"), index=True
    )
    url: Mapped[str] = mapped_column(Text)
    link_type: Mapped[str] = mapped_column(String(20), default="other")
    link_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    click_count: Mapped[int] = mapped_column(Integer, default=0)
    unique_clicks: Mapped[int] = mapped_column(Integer, default=0)
    first_click: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_click: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    analytics: Mapped[NewsletterAnalytics] = relationship(back_populates="link_clicks")


class NewsletterFingerprint(UUIDPrimaryKeyMixin, Base):
    """One row per anonymous opener (hash of ip, user agent and token)."""

    __tablename__ = "newsletter_fingerprints"
    __table_args__ = (
        UniqueConstraint("analytics_id", "fingerprint", name="uq_newsletter_fingerprint"),
    )

    analytics_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("newsletter_analytics.id", ondelete="CASCADE"), index=True
    )
    fingerprint: Mapped[str] = mapped_column(String(64))
    open_count: Mapped[int] = mapped_column(Integer, default=1)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class NewsletterLinkClickFingerprint(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "newsletter_link_click_fingerprints"
    __table_args__ = (
        UniqueConstraint("link_click_id", "fingerprint", name="uq_link_click_fingerprint"),
    )

    link_click_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("newsletter_link_clicks.id", ondelete="CASCADE"), index=True
    )
    fingerprint: Mapped[str] = mapped_column(String(64))
    click_count: Mapped[int] = mapped_column(Integer, default=1)
    first_click: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_click: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
