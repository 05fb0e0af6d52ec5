"""
Portal Services

Group membership for logged-in members: join, leave, member lists.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from kvportal.auth.models import User, UserRole
from kvportal.core.errors import AppError
from kvportal.core.schemas import PageParams
from kvportal.email import notifications
from kvportal.groups.models import (
    Group,
    GroupMember,
    GroupStatus,
    group_responsible_users,
)
from kvportal.groups.services import GROUP_NOT_FOUND
from kvportal.portal.schemas import PortalGroupUpdate

logger = logging.getLogger(__name__)


@dataclass
class MemberRow:
    member: GroupMember
    is_responsible_person: bool


@dataclass
class PortalGroup:
    group: Group
    is_member: bool
    is_responsible: bool
    member_count: int


class MembershipService:
    """Membership operations scoped to the current user."""

    def __init__(self, db: AsyncSession, user: User):
        self.db = db
        self.user = user

    async def _group(self, group_id: uuid.UUID) -> Group:
        group = await self.db.scalar(
            select(Group).where(Group.id == group_id).options(selectinload(Group.responsible_users))
        )
        if group is None:
            raise AppError.not_found(GROUP_NOT_FOUND)
        return group

    async def _membership(self, group_id: uuid.UUID, user_id: uuid.UUID) -> GroupMember | None:
        return await self.db.scalar(
            select(GroupMember).where(
                GroupMember.group_id == group_id, GroupMember.user_id == user_id
            )
        )

    @staticmethod
    def is_responsible(group: Group, user_id: uuid.UUID) -> bool:
        return any(u.id == user_id for u in group.responsible_users)

    async def list_groups(self, only_mine: bool = False) -> list[PortalGroup]:
        groups = list(
            (
                await self.db.execute(
                    select(Group)
                    .where(Group.status == GroupStatus.ACTIVE)
                    .options(selectinload(Group.responsible_users))
                    .order_by(Group.name.asc())
                )
            )
            .scalars()
            .all()
        )
        member_of = set(
            (
                await self.db.execute(
                    select(GroupMember.group_id).where(GroupMember.user_id == self.user.id)
                )
            )
            .scalars()
            .all()
        )
        counts = dict(
            (
                await self.db.execute(
                    select(GroupMember.group_id, func.count(GroupMember.id)).group_by(
                        GroupMember.group_id
                    )
                )
            ).all()
        )

        result = []
        for group in groups:
            responsible = self.is_responsible(group, self.user.id)
            is_member = group.id in member_of
            if only_mine and not (is_member or responsible):
                continue
            result.append(PortalGroup(group, is_member, responsible, counts.get(group.id, 0)))
        return result

    async def join(self, group_id: uuid.UUID) -> GroupMember:
        if self.user.role not in (UserRole.ADMIN, UserRole.MITGLIED):
            raise AppError.authorization()

        group = await self.db.scalar(
            select(Group).where(Group.id == group_id).options(selectinload(Group.responsible_users))
        )
        if group is None:
            raise AppError.not_found(GROUP_NOT_FOUND)
        if group.status != GroupStatus.ACTIVE:
            raise AppError.authorization(
                "Diese Gruppe ist nicht aktiv und kann nicht beigetreten werden"
            )
        if await self._membership(group_id, self.user.id) is not None:
            raise AppError.business_rule("Sie sind bereits Mitglied dieser Gruppe")

        member = GroupMember(group_id=group_id, user_id=self.user.id)
        self.db.add(member)
        await self.db.flush()
        logger.info("User %s joined group %s", self.user.id, group_id)

        recipients = sorted({u.email for u in group.responsible_users if u.id != self.user.id})
        await notifications.notify_member_joined(group, self.user, recipients, member.joined_at)
        return member

    async def leave(self, group_id: uuid.UUID) -> None:
        group = await self._group(group_id)
        if self.is_responsible(group, self.user.id):
            raise AppError.business_rule(
                "Verantwortliche Personen können die Gruppe nicht verlassen"
            )
        membership = await self._membership(group_id, self.user.id)
        if membership is None:
            raise AppError.business_rule("Sie sind kein Mitglied dieser Gruppe")
        await self.db.delete(membership)
        await self.db.flush()
        logger.info("User %s left group %s", self.user.id, group_id)

    async def list_members(
        self,
        group_id: uuid.UUID,
        page: PageParams,
        sort_by: str = "joinedAt",
        sort_order: str = "desc",
    ) -> tuple[list[MemberRow], int]:
        group = await self._group(group_id)
        if self.user.role != UserRole.ADMIN and not self.is_responsible(group, self.user.id):
            if await self._membership(group_id, self.user.id) is None:
                raise AppError.authorization()

        total = await self.db.scalar(
            select(func.count(GroupMember.id)).where(GroupMember.group_id == group_id)
        ) or 0

        query = (
            select(GroupMember)
            .join(User, GroupMember.user_id == User.id)
            .where(GroupMember.group_id == group_id)
            .options(selectinload(GroupMember.user))
        )
        if sort_by == "name":
            columns = [User.last_name, User.first_name]
        else:
            columns = [GroupMember.joined_at]
        ordering = [c.desc() if sort_order == "desc" else c.asc() for c in columns]
        result = await self.db.execute(
            query.order_by(*ordering).offset(page.offset).limit(page.page_size)
        )

        responsible_ids = set(
            (
                await self.db.execute(
                    select(group_responsible_users.c.user_id).where(
                        group_responsible_users.c.group_id == group_id
                    )
                )
            )
            .scalars()
            .all()
        )
        rows = [MemberRow(m, m.user_id in responsible_ids) for m in result.scalars().all()]
        return rows, total

    async def remove_member(self, group_id: uuid.UUID, user_id: uuid.UUID) -> None:
        group = await self._group(group_id)
        if self.user.role != UserRole.ADMIN and not self.is_responsible(group, self.user.id):
            raise AppError.authorization(
                "Nur verantwortliche Personen können Mitglieder entfernen"
            )
        if self.is_responsible(group, user_id):
            raise AppError.business_rule(
                "Verantwortliche Personen können nicht entfernt werden"
            )
        membership = await self._membership(group_id, user_id)
        if membership is None:
            raise AppError.not_found("Mitglied nicht gefunden")
        await self.db.delete(membership)
        await self.db.flush()
        logger.info("User %s removed %s from group %s", self.user.id, user_id, group_id)

    async def update_group(self, group_id: uuid.UUID, data: PortalGroupUpdate) -> Group:
        group = await self._group(group_id)
        if self.user.role != UserRole.ADMIN and not self.is_responsible(group, self.user.id):
            raise AppError.authorization()
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(group, field, value)
        await self.db.flush()
        logger.info("Group %s updated via portal by %s", group_id, self.user.id)
        return group
