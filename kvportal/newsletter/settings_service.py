"""
Newsletter settings: one row, created with defaults on first access.

Readers get an immutable snapshot that is cached per process and dropped
whenever the settings are updated.
"""

import logging
import secrets

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.newsletter.models import NewsletterSettings
from kvportal.newsletter.schemas import NewsletterSettingsUpdate

logger = logging.getLogger(__name__)


class NewsletterConfig(BaseModel):
    """Read-only copy of the settings row."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    from_email: str
    from_name: str
    reply_to_email: str | None = None
    subject_template: str
    email_salt: str
    test_recipient_list: list[str]
    header_logo: str | None = None
    header_banner: str | None = None
    footer_text: str | None = None
    unsubscribe_link: str | None = None
    chunk_size: int
    chunk_delay_ms: int
    max_retries: int
    max_backoff_delay_ms: int
    retry_chunk_size_list: list[int]
    email_timeout_ms: int
    connection_timeout_ms: int
    max_status_reports_per_group: int
    max_groups_with_reports: int
    ai_system_prompt: str | None = None
    ai_model: str | None = None
    ai_topic_extraction_prompt: str | None = None
    ai_refinement_prompt: str | None = None


_cache: NewsletterConfig | None = None


def clear_settings_cache() -> None:
    global _cache
    _cache = None
    logger.debug("Newsletter settings cache cleared")


async def get_settings_row(db: AsyncSession) -> NewsletterSettings:
    """Load the settings row, creating it (and the hashing salt) when missing."""
    row = await db.scalar(
        select(NewsletterSettings).order_by(NewsletterSettings.created_at).limit(1)
    )
    if row is None:
        row = NewsletterSettings()
        db.add(row)
        logger.info("Default newsletter settings created")
    if not row.email_salt:
        row.email_salt = secrets.token_hex(16)
    await db.flush()
    return row


async def get_newsletter_config(db: AsyncSession) -> NewsletterConfig:
    global _cache
    if _cache is None:
        _cache = NewsletterConfig.model_validate(await get_settings_row(db))
    return _cache


async def update_settings(db: AsyncSession, data: NewsletterSettingsUpdate) -> NewsletterSettings:
    row = await get_settings_row(db)
    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(row, field, str(value) if field in ("from_email", "reply_to_email") and value else value)
    await db.flush()
    clear_settings_cache()
    logger.info("Newsletter settings updated (%s)", ", ".join(changes) or "no changes")
    return row
