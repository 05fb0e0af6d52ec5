"""
Status Report Services
"""

import logging
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from kvportal.core.config import settings
from kvportal.core.errors import AppError
from kvportal.core.schemas import PageParams, clean_search, like_pattern
from kvportal.email import notifications
from kvportal.groups.models import Group, GroupStatus
from kvportal.status_reports.models import StatusReport, StatusReportStatus
from kvportal.status_reports.schemas import StatusReportSubmit, StatusReportUpdate
from kvportal.storage import (
    DOCUMENT_TYPES,
    FileData,
    UploadConfig,
    delete_files,
    upload_files,
    validate_files,
)

logger = logging.getLogger(__name__)

REPORT_NOT_FOUND = "Statusbericht nicht gefunden"

REPORT_UPLOAD = UploadConfig(
    category="status-reports",
    allowed_types=DOCUMENT_TYPES,
    max_size_per_file=settings.max_file_size,
)


class StatusReportService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, report_id: uuid.UUID) -> StatusReport:
        report = await self.db.scalar(
            select(StatusReport)
            .where(StatusReport.id == report_id)
            .options(selectinload(StatusReport.group).selectinload(Group.responsible_persons))
        )
        if report is None:
            raise AppError.not_found(REPORT_NOT_FOUND)
        return report

    async def list_page(
        self,
        page: PageParams,
        status: StatusReportStatus | None = None,
        group_id: uuid.UUID | None = None,
        search: str | None = None,
        order_by: str = "createdAt",
        order_direction: str = "desc",
    ) -> tuple[list[StatusReport], int]:
        query = select(StatusReport)
        if status is not None:
            query = query.where(StatusReport.status == status)
        if group_id is not None:
            query = query.where(StatusReport.group_id == group_id)
        term = clean_search(search)
        if term:
            pattern = like_pattern(term)
            query = query.where(
                or_(
                    StatusReport.title.ilike(pattern, escape="\\"),
                    StatusReport.content.ilike(pattern, escape="\\"),
                    StatusReport.reporter_first_name.ilike(pattern, escape="\\"),
                    StatusReport.reporter_last_name.ilike(pattern, escape="\\"),
                )
            )

        total = await self.db.scalar(select(func.count()).select_from(query.subquery())) or 0

        column = StatusReport.title if order_by == "title" else StatusReport.created_at
        ordering = column.asc() if order_direction == "asc" else column.desc()
        result = await self.db.execute(
            query.options(selectinload(StatusReport.group))
            .order_by(ordering)
            .offset(page.offset)
            .limit(page.page_size)
        )
        return list(result.scalars().all()), total

    async def submit(self, data: StatusReportSubmit, files: list[FileData]) -> StatusReport:
        """Create a NEW report for an active group; files are uploaded first."""
        group = await self.db.scalar(
            select(Group).where(Group.id == data.group_id, Group.status == GroupStatus.ACTIVE)
        )
        if group is None:
            raise AppError.not_found("Gruppe nicht gefunden oder nicht aktiv")

        validate_files(
            files,
            REPORT_UPLOAD,
            max_files=settings.max_files_per_submission,
            max_total_size=settings.max_total_upload_size,
        )
        uploaded = await upload_files(files, REPORT_UPLOAD)
        file_urls = [result.url for result in uploaded]

        report = StatusReport(
            **data.model_dump(),
            file_urls=file_urls,
            status=StatusReportStatus.NEW,
        )
        self.db.add(report)
        try:
            await self.db.flush()
        except Exception:
            await delete_files(file_urls)
            raise
        logger.info("Status report %s submitted for group %s", report.id, group.id)
        return report

    async def update(self, report_id: uuid.UUID, data: StatusReportUpdate) -> StatusReport:
        report = await self.get(report_id)
        previous_status = report.status
        removed_files: list[str] = []

        if data.status == StatusReportStatus.ACTIVE and report.group.status not in (
            GroupStatus.ACTIVE,
            GroupStatus.ARCHIVED,
        ):
            raise AppError.business_rule("Gruppe ist nicht aktiv")

        changes = data.model_dump(exclude_unset=True)
        if "file_urls" in changes:
            new_urls = changes.pop("file_urls") or []
            removed_files = [url for url in report.file_urls or [] if url not in new_urls]
            report.file_urls = list(new_urls)
        for field, value in changes.items():
            if value is not None:
                setattr(report, field, value)

        await self.db.flush()
        logger.info("Status report %s updated", report.id)

        if removed_files:
            result = await delete_files(removed_files)
            if not result.success:
                logger.warning("Removed report files not deleted: %s", result.failed)

        if data.status is not None and data.status != previous_status:
            await notifications.send_status_report_email(report, report.group)
        return report

    async def delete(self, report_id: uuid.UUID) -> None:
        report = await self.get(report_id)
        file_urls = list(report.file_urls or [])
        await self.db.delete(report)
        await self.db.flush()
        logger.info("Status report %s deleted", report_id)

        result = await delete_files(file_urls)
        if not result.success:
            logger.warning("Files of report %s not deleted: %s", report_id, result.failed)
