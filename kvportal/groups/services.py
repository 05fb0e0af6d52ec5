"""
Groups Services

Business logic for group requests, admin management, logos and the
responsible-user assignments.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any

from slugify import slugify
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from kvportal.auth.models import User
from kvportal.core.config import settings
from kvportal.core.errors import AppError
from kvportal.core.schemas import PageParams, clean_search, like_pattern
from kvportal.email import notifications
from kvportal.groups.models import Group, GroupMember, GroupStatus, ResponsiblePerson
from kvportal.groups.schemas import GroupSubmit, GroupUpdate, ResponsiblePersonIn
from kvportal.status_reports.models import StatusReport, StatusReportStatus
from kvportal.storage import (
    IMAGE_TYPES,
    FileData,
    UploadConfig,
    delete_files,
    upload_files,
)

logger = logging.getLogger(__name__)

GROUP_NOT_FOUND = "Gruppe nicht gefunden"

LOGO_UPLOAD = UploadConfig(
    category="groups",
    allowed_types=IMAGE_TYPES,
    max_size_per_file=settings.max_logo_size,
    prefix="logo",
)


def generate_slug(name: str) -> str:
    """slugify(name) plus the last four digits of the current millisecond timestamp."""
    suffix = str(int(time.time() * 1000))[-4:]
    base = slugify(name, max_length=100) or "gruppe"
    return f"{base}-{suffix}"


@dataclass
class LogoFiles:
    original: FileData
    cropped: FileData | None = None


@dataclass
class GroupPage:
    groups: list[Group]
    report_counts: dict[uuid.UUID, int]
    total: int


class GroupService:
    """Group management."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, group_id: uuid.UUID, with_reports: bool = False) -> Group:
        options = [selectinload(Group.responsible_persons)]
        if with_reports:
            options.append(selectinload(Group.status_reports))
        group = await self.db.scalar(
            select(Group).where(Group.id == group_id).options(*options)
        )
        if group is None:
            raise AppError.not_found(GROUP_NOT_FOUND)
        return group

    async def get_by_slug(self, slug: str) -> Group:
        """Public lookup; only ACTIVE groups are visible."""
        group = await self.db.scalar(
            select(Group)
            .where(Group.slug == slug, Group.status == GroupStatus.ACTIVE)
            .options(selectinload(Group.responsible_persons))
        )
        if group is None:
            raise AppError.not_found(GROUP_NOT_FOUND)
        return group

    async def active_reports(self, group_id: uuid.UUID) -> list[StatusReport]:
        result = await self.db.execute(
            select(StatusReport)
            .where(
                StatusReport.group_id == group_id,
                StatusReport.status == StatusReportStatus.ACTIVE,
            )
            .order_by(StatusReport.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_public(self) -> list[Group]:
        result = await self.db.execute(
            select(Group).where(Group.status == GroupStatus.ACTIVE).order_by(Group.name.asc())
        )
        return list(result.scalars().all())

    async def list_admin(
        self,
        page: PageParams,
        status: GroupStatus | None = None,
        search: str | None = None,
        order_by: str = "name",
        order_direction: str = "asc",
    ) -> GroupPage:
        query = select(Group)
        if status is not None:
            query = query.where(Group.status == status)
        term = clean_search(search)
        if term:
            pattern = like_pattern(term)
            query = query.where(
                or_(
                    Group.name.ilike(pattern, escape="\\"),
                    Group.description.ilike(pattern, escape="\\"),
                )
            )

        total = await self.db.scalar(select(func.count()).select_from(query.subquery())) or 0

        column = Group.created_at if order_by == "createdAt" else Group.name
        ordering = column.desc() if order_direction == "desc" else column.asc()
        result = await self.db.execute(
            query.options(selectinload(Group.responsible_persons))
            .order_by(ordering)
            .offset(page.offset)
            .limit(page.page_size)
        )
        groups = list(result.scalars().all())

        counts: dict[uuid.UUID, int] = {}
        if groups:
            rows = await self.db.execute(
                select(StatusReport.group_id, func.count(StatusReport.id))
                .where(StatusReport.group_id.in_([g.id for g in groups]))
                .group_by(StatusReport.group_id)
            )
            counts = {group_id: count for group_id, count in rows.all()}
        return GroupPage(groups=groups, report_counts=counts, total=total)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def submit(self, data: GroupSubmit, logo: LogoFiles | None = None) -> Group:
        """Create a NEW group with its responsible persons from a public request."""
        logo_url, logo_metadata = await self._upload_logo(logo) if logo else (None, None)

        group = Group(
            name=data.name,
            slug=generate_slug(data.name),
            description=data.description,
            logo_url=logo_url,
            logo_metadata=logo_metadata,
            status=GroupStatus.NEW,
            responsible_persons=[self._person(p) for p in data.responsible_persons],
            **self._meeting_fields(data.model_dump(exclude_unset=True)),
        )
        self.db.add(group)
        try:
            await self.db.flush()
        except Exception:
            if logo_metadata:
                await delete_files(logo_metadata.values())
            raise

        logger.info("Group %s submitted (%s)", group.id, group.slug)
        await notifications.notify_group_submitted(group)
        return group

    async def update(
        self, group_id: uuid.UUID, data: GroupUpdate, logo: LogoFiles | None = None
    ) -> Group:
        group = await self.get(group_id)
        previous_status = group.status
        old_logo_urls: list[str | None] = []

        changes = data.model_dump(exclude_unset=True)
        if data.name is not None and data.name != group.name:
            group.name = data.name
            group.slug = generate_slug(data.name)
        if data.description is not None:
            group.description = data.description
        if data.status is not None:
            group.status = data.status
        for field, value in self._meeting_fields(changes).items():
            setattr(group, field, value)

        if data.responsible_persons is not None:
            group.responsible_persons = [self._person(p) for p in data.responsible_persons]

        if logo is not None:
            old_logo_urls = [group.logo_url, group.original_logo_url]
            group.logo_url, group.logo_metadata = await self._upload_logo(logo)
        elif data.remove_logo:
            old_logo_urls = [group.logo_url, group.original_logo_url]
            group.logo_url, group.logo_metadata = None, None

        await self.db.flush()
        logger.info("Group %s updated (%s)", group.id, ", ".join(changes) or "logo")

        # Identical re-uploads resolve to the cached URL that is still in use
        current = {group.logo_url, group.original_logo_url}
        old_logo_urls = [url for url in old_logo_urls if url and url not in current]
        if old_logo_urls:
            result = await delete_files(old_logo_urls)
            if not result.success:
                logger.warning("Old logo files of group %s not deleted: %s", group.id, result.failed)

        if data.status is not None and data.status != previous_status:
            await notifications.send_group_status_email(group, data.status)
        return group

    async def delete(self, group_id: uuid.UUID) -> list[str]:
        """Delete the group (reports cascade) and then its files, best-effort."""
        group = await self.get(group_id)
        report_files = await self.db.scalars(
            select(StatusReport.file_urls).where(StatusReport.group_id == group_id)
        )
        urls = [group.logo_url, group.original_logo_url]
        for file_urls in report_files:
            urls.extend(file_urls or [])

        await self.db.execute(delete(StatusReport).where(StatusReport.group_id == group_id))
        await self.db.delete(group)
        await self.db.flush()
        logger.info("Group %s deleted", group_id)

        result = await delete_files(urls)
        if not result.success:
            logger.warning("Files of deleted group %s not removed: %s", group_id, result.failed)
        return result.deleted

    # =========================================================================
    # Responsible users
    # =========================================================================

    async def _get_with_users(self, group_id: uuid.UUID) -> Group:
        group = await self.db.scalar(
            select(Group).where(Group.id == group_id).options(selectinload(Group.responsible_users))
        )
        if group is None:
            raise AppError.not_found(GROUP_NOT_FOUND)
        return group

    async def assign_responsible_user(self, group_id: uuid.UUID, user_id: uuid.UUID) -> Group:
        group = await self._get_with_users(group_id)
        user = await self.db.get(User, user_id)
        if user is None:
            raise AppError.not_found("Benutzer nicht gefunden")
        if any(u.id == user_id for u in group.responsible_users):
            raise AppError.business_rule("Benutzer ist bereits verantwortlich für diese Gruppe")

        group.responsible_users.append(user)
        membership = await self.db.scalar(
            select(GroupMember).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        )
        if membership is None:
            self.db.add(GroupMember(group_id=group_id, user_id=user_id))
        await self.db.flush()
        logger.info("User %s is now responsible for group %s", user_id, group_id)
        return group

    async def remove_responsible_user(self, group_id: uuid.UUID, user_id: uuid.UUID) -> Group:
        group = await self._get_with_users(group_id)
        remaining = [u for u in group.responsible_users if u.id != user_id]
        if len(remaining) == len(group.responsible_users):
            raise AppError.not_found("Benutzer ist nicht verantwortlich für diese Gruppe")
        group.responsible_users = remaining
        await self.db.flush()
        logger.info("User %s no longer responsible for group %s", user_id, group_id)
        return group

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _person(data: ResponsiblePersonIn) -> ResponsiblePerson:
        return ResponsiblePerson(
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            email=str(data.email).strip().lower(),
        )

    @staticmethod
    def _meeting_fields(values: dict[str, Any]) -> dict[str, Any]:
        keys = (
            "recurring_patterns",
            "meeting_time",
            "meeting_street",
            "meeting_city",
            "meeting_postal_code",
            "meeting_location_details",
        )
        return {key: values[key] for key in keys if key in values}

    @staticmethod
    async def _upload_logo(logo: LogoFiles) -> tuple[str, dict[str, str]]:
        """Upload original and cropped logo; the cropped one is displayed."""
        files = [logo.original] + ([logo.cropped] if logo.cropped else [])
        results = await upload_files(files, LOGO_UPLOAD)
        original = results[0].url
        cropped = results[1].url if len(results) > 1 else original
        return cropped, {"originalUrl": original, "croppedUrl": cropped}
