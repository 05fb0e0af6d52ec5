"""
Antrag Services

Submission, admin editing, decisions and the recipient configuration.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Literal

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.antraege.models import Antrag, AntragConfiguration, AntragStatus
from kvportal.antraege.schemas import AntragSubmit, AntragUpdate
from kvportal.auth.models import User
from kvportal.core.config import settings
from kvportal.core.database import utcnow
from kvportal.core.errors import AppError, ErrorType
from kvportal.core.schemas import PageParams, clean_search, like_pattern
from kvportal.email import notifications
from kvportal.storage import (
    DOCUMENT_TYPES,
    FileData,
    UploadConfig,
    delete_files,
    upload_files,
    validate_files,
)

logger = logging.getLogger(__name__)

ANTRAG_NOT_FOUND = "Antrag nicht gefunden"
DEFAULT_RECIPIENTS = "admin@die-linke-frankfurt.de,kreisvorstand@die-linke-frankfurt.de"

AntragView = Literal["all", "pending", "approved", "rejected"]

VIEW_STATUS: dict[str, AntragStatus] = {
    "pending": AntragStatus.NEU,
    "approved": AntragStatus.AKZEPTIERT,
    "rejected": AntragStatus.ABGELEHNT,
}

ANTRAG_UPLOAD = UploadConfig(
    category="antraege",
    allowed_types=DOCUMENT_TYPES,
    max_size_per_file=settings.max_file_size,
)


@dataclass
class Decision:
    antrag: Antrag
    email_sent: bool


def _validate_uploads(files: list[FileData], existing: int = 0) -> None:
    validate_files(
        files,
        ANTRAG_UPLOAD,
        max_files=settings.max_files_per_submission - existing,
        max_total_size=settings.max_total_upload_size,
    )


class AntragService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, antrag_id: uuid.UUID) -> Antrag:
        antrag = await self.db.get(Antrag, antrag_id)
        if antrag is None:
            raise AppError.not_found(ANTRAG_NOT_FOUND)
        return antrag

    async def list_page(
        self,
        page: PageParams,
        view: AntragView = "all",
        status: AntragStatus | None = None,
        search: str | None = None,
    ) -> tuple[list[Antrag], int]:
        query = select(Antrag)
        status_filter = VIEW_STATUS.get(view, status)
        if status_filter is not None:
            query = query.where(Antrag.status == status_filter)

        term = clean_search(search)
        if term:
            pattern = like_pattern(term)
            query = query.where(
                or_(
                    Antrag.title.ilike(pattern, escape="\\"),
                    Antrag.summary.ilike(pattern, escape="\\"),
                    Antrag.first_name.ilike(pattern, escape="\\"),
                    Antrag.last_name.ilike(pattern, escape="\\"),
                    Antrag.email.ilike(pattern, escape="\\"),
                )
            )

        total = await self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        result = await self.db.execute(
            query.order_by(Antrag.created_at.desc()).offset(page.offset).limit(page.page_size)
        )
        return list(result.scalars().all()), total

    # =========================================================================
    # Mutations
    # =========================================================================

    async def submit(self, data: AntragSubmit, files: list[FileData]) -> Antrag:
        """Upload the attachments, then store the Antrag; uploads are removed if storing fails."""
        _validate_uploads(files)
        uploaded = await upload_files(files, ANTRAG_UPLOAD)
        file_urls = [result.url for result in uploaded]

        antrag = Antrag(
            first_name=data.first_name,
            last_name=data.last_name,
            email=str(data.email),
            title=data.title,
            summary=data.summary,
            purposes=data.purposes.model_dump(by_alias=True, exclude_none=True),
            file_urls=file_urls,
            status=AntragStatus.NEU,
        )
        self.db.add(antrag)
        try:
            await self.db.flush()
        except Exception:
            result = await delete_files(file_urls)
            logger.error(
                "Antrag could not be stored, removed %d uploaded files", len(result.deleted)
            )
            raise

        logger.info("Antrag %s submitted", antrag.id)
        configuration = await ConfigurationService(self.db).get()
        await notifications.send_antrag_submission_email(
            antrag, configuration.recipients, data.purposes.enabled_labels()
        )
        return antrag

    async def update(
        self,
        antrag_id: uuid.UUID,
        data: AntragUpdate,
        new_files: list[FileData] | None = None,
        files_to_delete: list[str] | None = None,
    ) -> Antrag:
        antrag = await self.get(antrag_id)
        if antrag.status != AntragStatus.NEU:
            raise AppError.authorization("Nur Anträge mit Status NEU können bearbeitet werden")

        file_urls = list(antrag.file_urls or [])
        if files_to_delete:
            result = await delete_files(files_to_delete)
            if not result.success:
                logger.warning("Files of Antrag %s not deleted: %s", antrag_id, result.failed)
            file_urls = [url for url in file_urls if url not in result.deleted]

        if new_files:
            _validate_uploads(new_files, existing=len(file_urls))
            uploaded = await upload_files(new_files, ANTRAG_UPLOAD)
            file_urls.extend(result.url for result in uploaded)

        if data.file_urls is not None:
            file_urls = list(data.file_urls)

        changes = data.model_dump(exclude_unset=True, exclude={"purposes", "file_urls"})
        for field, value in changes.items():
            if value is not None:
                setattr(antrag, field, str(value) if field == "email" else value)
        if data.purposes is not None:
            antrag.purposes = data.purposes.model_dump(by_alias=True, exclude_none=True)
        antrag.file_urls = file_urls

        await self.db.flush()
        logger.info("Antrag %s updated", antrag_id)
        return antrag

    async def delete(self, antrag_id: uuid.UUID) -> int:
        """Delete attachments first; any failed deletion aborts the operation."""
        antrag = await self.get(antrag_id)
        file_urls = list(antrag.file_urls or [])
        if file_urls:
            result = await delete_files(file_urls)
            if not result.success:
                raise AppError(
                    "Dateien konnten nicht gelöscht werden. Löschen des Antrags abgebrochen.",
                    ErrorType.FILE_UPLOAD,
                    status_code=500,
                    details=[f"Datei konnte nicht gelöscht werden: {url}" for url in result.failed],
                )

        await self.db.delete(antrag)
        await self.db.flush()
        logger.info("Antrag %s deleted with %d files", antrag_id, len(file_urls))
        return len(file_urls)

    async def decide(
        self, antrag_id: uuid.UUID, accepted: bool, user: User, comment: str | None = None
    ) -> Decision:
        antrag = await self.get(antrag_id)
        if antrag.status != AntragStatus.NEU:
            verb = "akzeptiert" if antrag.status == AntragStatus.AKZEPTIERT else "abgelehnt"
            raise AppError.business_rule(f"Antrag wurde bereits {verb}")

        antrag.status = AntragStatus.AKZEPTIERT if accepted else AntragStatus.ABGELEHNT
        antrag.decision_comment = comment.strip() if comment and comment.strip() else None
        antrag.decided_by = user.display_name
        antrag.decided_by_id = user.id
        antrag.decided_at = utcnow()
        await self.db.flush()
        logger.info("Antrag %s %s by %s", antrag_id, antrag.status, user.id)

        result = await notifications.send_antrag_decision_email(antrag, accepted)
        return Decision(antrag=antrag, email_sent=result.success)


class ConfigurationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self) -> AntragConfiguration:
        """Return the configuration row, creating the default on first access."""
        configuration = await self.db.scalar(
            select(AntragConfiguration).order_by(AntragConfiguration.created_at).limit(1)
        )
        if configuration is None:
            configuration = AntragConfiguration(recipient_emails=DEFAULT_RECIPIENTS)
            self.db.add(configuration)
            await self.db.flush()
            logger.info("Default Antrag configuration created")
        return configuration

    async def update(self, recipient_emails: str) -> AntragConfiguration:
        configuration = await self.get()
        configuration.recipient_emails = recipient_emails
        await self.db.flush()
        logger.info("Antrag configuration updated (%d recipients)", len(configuration.recipients))
        return configuration
