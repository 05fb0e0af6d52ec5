"""
Newsletter Services

Drafts, content generation and the public archive.
"""

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.core.errors import AppError
from kvportal.core.schemas import PageParams
from kvportal.newsletter.content import (
    GroupReports,
    collect_content,
    format_subject,
    recent_status_reports,
    render_newsletter,
)
from kvportal.newsletter.models import NewsletterItem, NewsletterStatus
from kvportal.newsletter.schemas import NewsletterCreate, NewsletterUpdate
from kvportal.newsletter.settings_service import get_newsletter_config

logger = logging.getLogger(__name__)

NEWSLETTER_NOT_FOUND = "Newsletter nicht gefunden"

EDITABLE = (NewsletterStatus.DRAFT, NewsletterStatus.FAILED)
ARCHIVED = (NewsletterStatus.SENT, NewsletterStatus.PARTIALLY_FAILED)


class NewsletterService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, newsletter_id: uuid.UUID) -> NewsletterItem:
        newsletter = await self.db.get(NewsletterItem, newsletter_id)
        if newsletter is None:
            raise AppError.not_found(NEWSLETTER_NOT_FOUND)
        return newsletter

    async def list_page(
        self, page: PageParams, status: NewsletterStatus | None = None
    ) -> tuple[list[NewsletterItem], int]:
        query = select(NewsletterItem)
        if status is not None:
            query = query.where(NewsletterItem.status == status)
        total = await self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        result = await self.db.execute(
            query.order_by(NewsletterItem.created_at.desc())
            .offset(page.offset)
            .limit(page.page_size)
        )
        return list(result.scalars().all()), total

    async def create(self, data: NewsletterCreate) -> NewsletterItem:
        newsletter = NewsletterItem(
            subject=data.subject,
            introduction_text=data.introduction,
            status=NewsletterStatus.DRAFT,
        )
        self.db.add(newsletter)
        await self.db.flush()
        logger.info("Newsletter draft %s created", newsletter.id)
        return newsletter

    async def _editable(self, newsletter_id: uuid.UUID, message: str) -> NewsletterItem:
        newsletter = await self.get(newsletter_id)
        if newsletter.status not in EDITABLE:
            raise AppError.business_rule(message)
        return newsletter

    async def update(self, newsletter_id: uuid.UUID, data: NewsletterUpdate) -> NewsletterItem:
        newsletter = await self._editable(
            newsletter_id, "Versendete Newsletter können nicht bearbeitet werden"
        )
        if data.subject is not None:
            newsletter.subject = data.subject.strip()
        if data.introduction is not None:
            newsletter.introduction_text = data.introduction
        if data.content is not None:
            newsletter.content = data.content
        await self.db.flush()
        logger.info("Newsletter %s updated", newsletter_id)
        return newsletter

    async def delete(self, newsletter_id: uuid.UUID) -> None:
        newsletter = await self._editable(
            newsletter_id, "Versendete Newsletter können nicht gelöscht werden"
        )
        await self.db.delete(newsletter)
        await self.db.flush()
        logger.info("Newsletter %s deleted", newsletter_id)

    async def preview_reports(self) -> list[GroupReports]:
        config = await get_newsletter_config(self.db)
        return await recent_status_reports(self.db, config)

    async def generate(self, newsletter_id: uuid.UUID) -> NewsletterItem:
        """Render introduction, appointments and recent status reports into ``content``."""
        newsletter = await self._editable(
            newsletter_id, "Versendete Newsletter können nicht bearbeitet werden"
        )
        config = await get_newsletter_config(self.db)
        content = await collect_content(self.db, config)
        newsletter.content = render_newsletter(
            format_subject(newsletter.subject),
            newsletter.introduction_text,
            content,
            config,
        )
        await self.db.flush()
        logger.info(
            "Newsletter %s generated with %d featured, %d upcoming appointments, %d groups",
            newsletter_id,
            len(content.featured_appointments),
            len(content.upcoming_appointments),
            len(content.groups),
        )
        return newsletter

    async def regenerate(
        self, newsletter_id: uuid.UUID, subject: str, introduction: str
    ) -> NewsletterItem:
        """Replace subject and introduction of a draft and render it again."""
        newsletter = await self._editable(
            newsletter_id, "Versendete Newsletter können nicht bearbeitet werden"
        )
        newsletter.subject = subject
        newsletter.introduction_text = introduction
        return await self.generate(newsletter_id)

    async def get_public(self, newsletter_id: uuid.UUID) -> NewsletterItem:
        newsletter = await self.db.get(NewsletterItem, newsletter_id)
        if newsletter is None or newsletter.status not in ARCHIVED:
            raise AppError.not_found(NEWSLETTER_NOT_FOUND)
        return newsletter
