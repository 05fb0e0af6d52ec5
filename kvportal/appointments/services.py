"""
Appointment Services

Public submission, the public calendar, admin review with cover images and
the newsletter selection.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, time
from typing import Literal

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.addresses.services import AddressService
from kvportal.appointments.models import Appointment, AppointmentStatus
from kvportal.appointments.schemas import (
    END_BEFORE_START,
    AppointmentSubmit,
    AppointmentUpdate,
    as_utc,
)
from kvportal.core.config import settings
from kvportal.core.database import utcnow
from kvportal.core.errors import AppError
from kvportal.core.schemas import PageParams, clean_search, like_pattern
from kvportal.storage import (
    IMAGE_TYPES,
    FileData,
    UploadConfig,
    delete_files,
    upload_files,
    validate_files,
)

logger = logging.getLogger(__name__)

APPOINTMENT_NOT_FOUND = "Termin nicht gefunden"
COVER_REQUIRED = "Cover-Bild ist für Featured Termine erforderlich"

LOCATION_FIELDS = ("street", "city", "postal_code", "location_details")
REQUIRED_FIELDS = ("title", "main_text", "start_date_time")

AppointmentView = Literal["all", "pending", "upcoming", "archive"]

APPOINTMENT_UPLOAD = UploadConfig(
    category="appointments",
    allowed_types=IMAGE_TYPES | frozenset({"application/pdf"}),
    max_size_per_file=settings.max_file_size,
)

COVER_UPLOAD = UploadConfig(
    category="appointments",
    allowed_types=IMAGE_TYPES,
    max_size_per_file=settings.max_file_size,
    prefix="cover",
)


@dataclass
class CoverFiles:
    original: FileData
    cropped: FileData | None = None

    @property
    def files(self) -> list[FileData]:
        return [self.original] + ([self.cropped] if self.cropped else [])


def start_of_day(now: datetime) -> datetime:
    return datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)


class AppointmentService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, appointment_id: uuid.UUID) -> Appointment:
        appointment = await self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise AppError.not_found(APPOINTMENT_NOT_FOUND)
        return appointment

    async def get_public(self, appointment_id: uuid.UUID) -> Appointment:
        appointment = await self.db.get(Appointment, appointment_id)
        if appointment is None or appointment.status != AppointmentStatus.ACCEPTED:
            raise AppError.not_found(APPOINTMENT_NOT_FOUND)
        return appointment

    async def _paginate(self, query, page: PageParams, *ordering) -> tuple[list[Appointment], int]:
        total = await self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        result = await self.db.execute(
            query.order_by(*ordering).offset(page.offset).limit(page.page_size)
        )
        return list(result.scalars().all()), total

    async def list_page(
        self,
        page: PageParams,
        view: AppointmentView = "all",
        status: AppointmentStatus | None = None,
        search: str | None = None,
    ) -> tuple[list[Appointment], int]:
        """
        Admin list.

        ``pending`` shows new submissions, ``upcoming`` accepted future
        events (soonest first) and ``archive`` past accepted plus rejected
        ones. An explicit ``status`` replaces the view's status filter.
        """
        now = utcnow()
        query = select(Appointment)
        if status is not None:
            query = query.where(Appointment.status == status)
            if view == "upcoming":
                query = query.where(Appointment.start_date_time >= now)
        elif view == "pending":
            query = query.where(Appointment.status == AppointmentStatus.PENDING)
        elif view == "upcoming":
            query = query.where(
                Appointment.status == AppointmentStatus.ACCEPTED,
                Appointment.start_date_time >= now,
            )
        elif view == "archive":
            query = query.where(
                or_(
                    and_(
                        Appointment.status == AppointmentStatus.ACCEPTED,
                        Appointment.start_date_time < now,
                    ),
                    Appointment.status == AppointmentStatus.REJECTED,
                )
            )

        term = clean_search(search)
        if term:
            pattern = like_pattern(term)
            query = query.where(
                or_(
                    Appointment.title.ilike(pattern, escape="\\"),
                    Appointment.main_text.ilike(pattern, escape="\\"),
                    Appointment.city.ilike(pattern, escape="\\"),
                    Appointment.first_name.ilike(pattern, escape="\\"),
                    Appointment.last_name.ilike(pattern, escape="\\"),
                )
            )

        ordering = [Appointment.created_at.desc()]
        if view == "upcoming":
            ordering.insert(0, Appointment.start_date_time.asc())
        return await self._paginate(query, page, *ordering)

    async def list_public(self, page: PageParams) -> tuple[list[Appointment], int]:
        """Accepted appointments that have not started yet, soonest first."""
        query = select(Appointment).where(
            Appointment.status == AppointmentStatus.ACCEPTED,
            Appointment.start_date_time >= utcnow(),
        )
        return await self._paginate(query, page, Appointment.start_date_time.asc())

    async def newsletter_appointments(
        self, now: datetime | None = None
    ) -> tuple[list[Appointment], list[Appointment]]:
        """Accepted appointments from today on, split into featured and other."""
        result = await self.db.scalars(
            select(Appointment)
            .where(
                Appointment.status == AppointmentStatus.ACCEPTED,
                Appointment.start_date_time >= start_of_day(now or utcnow()),
            )
            .order_by(Appointment.featured.desc(), Appointment.start_date_time.asc())
        )
        appointments = list(result.all())
        featured = [a for a in appointments if a.featured]
        upcoming = [a for a in appointments if not a.featured]
        return featured, upcoming

    # =========================================================================
    # Mutations
    # =========================================================================

    async def _apply_address(
        self, appointment: Appointment, address_id: uuid.UUID, given: dict[str, object]
    ) -> None:
        """Take location fields from a saved address unless they were given explicitly."""
        address = await AddressService(self.db).get(address_id)
        appointment.address_id = address.id
        for field in LOCATION_FIELDS:
            setattr(appointment, field, given.get(field) or getattr(address, field))

    @staticmethod
    async def _upload_cover(cover: CoverFiles) -> tuple[str, str]:
        results = await upload_files(cover.files, COVER_UPLOAD)
        original = results[0].url
        cropped = results[1].url if len(results) > 1 else original
        return original, cropped

    async def submit(
        self,
        data: AppointmentSubmit,
        files: list[FileData],
        cover: CoverFiles | None = None,
    ) -> Appointment:
        """Store a pending appointment; uploads are removed again if storing fails."""
        if data.featured and cover is None:
            raise AppError.validation(COVER_REQUIRED, {"coverImage": COVER_REQUIRED})
        if data.featured and cover is not None:
            validate_files(cover.files, COVER_UPLOAD)
        validate_files(
            files,
            APPOINTMENT_UPLOAD,
            max_files=settings.max_files_per_submission,
            max_total_size=settings.max_total_upload_size,
        )

        appointment = Appointment(
            **data.model_dump(exclude={"address_id"}),
            status=AppointmentStatus.PENDING,
        )
        if data.address_id is not None:
            await self._apply_address(appointment, data.address_id, data.model_dump())

        uploaded = await upload_files(files, APPOINTMENT_UPLOAD)
        appointment.file_urls = [result.url for result in uploaded]
        if data.featured and cover is not None:
            appointment.cover_image_url, appointment.cropped_cover_image_url = (
                await self._upload_cover(cover)
            )

        self.db.add(appointment)
        try:
            await self.db.flush()
        except Exception:
            result = await delete_files([*appointment.file_urls, *appointment.cover_urls])
            logger.error(
                "Appointment could not be stored, removed %d uploaded files", len(result.deleted)
            )
            raise
        logger.info("Appointment %s submitted", appointment.id)
        return appointment

    async def update(
        self,
        appointment_id: uuid.UUID,
        data: AppointmentUpdate,
        new_files: list[FileData] | None = None,
        deleted_file_urls: list[str] | None = None,
        cover: CoverFiles | None = None,
    ) -> Appointment:
        appointment = await self.get(appointment_id)
        stale: list[str] = []

        changes = data.model_dump(
            exclude_unset=True, exclude={"address_id", "file_urls", "featured", "status"}
        )
        for field, value in changes.items():
            if value is None and field in REQUIRED_FIELDS:
                continue
            setattr(appointment, field, value)
        if "address_id" in data.model_fields_set:
            if data.address_id is None:
                appointment.address_id = None
            else:
                await self._apply_address(appointment, data.address_id, changes)

        end = as_utc(appointment.end_date_time)
        if end is not None and end < as_utc(appointment.start_date_time):
            raise AppError.validation(END_BEFORE_START, {"endDateTime": END_BEFORE_START})
        if data.featured and cover is None and not appointment.cover_urls:
            raise AppError.validation(COVER_REQUIRED, {"coverImage": COVER_REQUIRED})
        if cover is not None and data.featured is not False:
            validate_files(cover.files, COVER_UPLOAD)

        # Dateien
        file_urls = list(appointment.file_urls or [])
        if data.file_urls is not None:
            stale.extend(url for url in file_urls if url not in data.file_urls)
            file_urls = [url for url in file_urls if url in data.file_urls]
        if deleted_file_urls:
            stale.extend(url for url in deleted_file_urls if url in file_urls)
            file_urls = [url for url in file_urls if url not in deleted_file_urls]
        if new_files:
            validate_files(
                new_files,
                APPOINTMENT_UPLOAD,
                max_files=settings.max_files_per_submission - len(file_urls),
                max_total_size=settings.max_total_upload_size,
            )
            uploaded = await upload_files(new_files, APPOINTMENT_UPLOAD)
            file_urls.extend(result.url for result in uploaded)
        appointment.file_urls = file_urls

        # Cover
        if data.featured is False:
            stale.extend(appointment.cover_urls)
            appointment.cover_image_url = appointment.cropped_cover_image_url = None
        elif cover is not None:
            stale.extend(appointment.cover_urls)
            appointment.cover_image_url, appointment.cropped_cover_image_url = (
                await self._upload_cover(cover)
            )
        if data.featured is not None:
            appointment.featured = data.featured

        if data.status is not None and data.status != appointment.status:
            appointment.status = data.status
            appointment.status_change_date = utcnow()
            if data.status != AppointmentStatus.PENDING:
                appointment.processed = True
                appointment.processing_date = appointment.status_change_date

        await self.db.flush()
        logger.info("Appointment %s updated", appointment_id)

        # Identical re-uploads resolve to URLs that are still in use
        current = {*appointment.file_urls, *appointment.cover_urls}
        stale = [url for url in stale if url not in current]
        if stale:
            result = await delete_files(stale)
            if not result.success:
                logger.warning(
                    "Files of appointment %s not deleted: %s", appointment_id, result.failed
                )
        return appointment

    async def set_featured(self, appointment_id: uuid.UUID, featured: bool) -> Appointment:
        appointment = await self.get(appointment_id)
        appointment.featured = featured
        await self.db.flush()
        logger.info("Appointment %s featured=%s", appointment_id, featured)
        return appointment

    async def delete(self, appointment_id: uuid.UUID) -> None:
        """Delete the appointment, then its files best-effort."""
        appointment = await self.get(appointment_id)
        urls = [*(appointment.file_urls or []), *appointment.cover_urls]
        await self.db.delete(appointment)
        await self.db.flush()
        logger.info("Appointment %s deleted", appointment_id)

        if urls:
            result = await delete_files(urls)
            if not result.success:
                logger.warning(
                    "Files of appointment %s not deleted: %s", appointment_id, result.failed
                )
