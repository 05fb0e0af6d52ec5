"""
FAQ Services
"""

import logging
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.auth.models import User
from kvportal.core.errors import AppError
from kvportal.core.schemas import PageParams, clean_search, like_pattern
from kvportal.faq.models import FaqEntry, FaqStatus
from kvportal.faq.schemas import FaqCreate, FaqUpdate

logger = logging.getLogger(__name__)

FAQ_NOT_FOUND = "FAQ nicht gefunden"


class FaqService:
    """Admin and portal access to FAQ entries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_page(
        self,
        page: PageParams,
        status: FaqStatus | None = None,
        search: str | None = None,
    ) -> tuple[list[FaqEntry], int]:
        query = select(FaqEntry)
        if status is not None:
            query = query.where(FaqEntry.status == status)
        term = clean_search(search)
        if term:
            pattern = like_pattern(term)
            query = query.where(
                or_(
                    FaqEntry.title.ilike(pattern, escape="\\"),
                    FaqEntry.content.ilike(pattern, escape="\\"),
                )
            )

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(FaqEntry.title.asc()).offset(page.offset).limit(page.page_size)
        )
        return list(result.scalars().all()), total or 0

    async def list_active(self, search: str | None = None) -> list[FaqEntry]:
        entries, _ = await self.list_page(PageParams(page=1, page_size=1000), FaqStatus.ACTIVE, search)
        return entries

    async def get(self, faq_id: uuid.UUID) -> FaqEntry:
        faq = await self.db.get(FaqEntry, faq_id)
        if faq is None:
            raise AppError.not_found(FAQ_NOT_FOUND)
        return faq

    async def create(self, data: FaqCreate, user: User) -> FaqEntry:
        faq = FaqEntry(
            title=data.title,
            content=data.content,
            status=data.status,
            created_by_id=user.id,
            updated_by_id=user.id,
        )
        self.db.add(faq)
        await self.db.flush()
        logger.info("FAQ %s created by %s", faq.id, user.username)
        return faq

    async def update(self, faq_id: uuid.UUID, data: FaqUpdate, user: User) -> FaqEntry:
        faq = await self.get(faq_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        for field, value in changes.items():
            setattr(faq, field, value.strip() if isinstance(value, str) else value)
        faq.updated_by_id = user.id
        await self.db.flush()
        logger.info("FAQ %s updated (%s)", faq.id, ", ".join(changes) or "no changes")
        return faq

    async def delete(self, faq_id: uuid.UUID) -> None:
        faq = await self.get(faq_id)
        if faq.status != FaqStatus.ARCHIVED:
            raise AppError.business_rule(
                "Aktive FAQs können nicht gelöscht werden. Bitte zuerst archivieren."
            )
        await self.db.delete(faq)
        await self.db.flush()
        logger.info("FAQ %s deleted", faq_id)
