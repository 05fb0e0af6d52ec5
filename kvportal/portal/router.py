"""
Portal API Router

Member portal endpoints for groups and memberships.
"""

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.auth.dependencies import get_optional_user, require_portal_user
from kvportal.auth.models import User
from kvportal.core.database import get_db
from kvportal.core.errors import AppError, database_errors
from kvportal.core.schemas import PageParams, SuccessResponse
from kvportal.portal.schemas import (
    JoinGroupRequest,
    MemberListResponse,
    MemberResponse,
    PortalGroupResponse,
    PortalGroupUpdate,
)
from kvportal.portal.services import MembershipService

router = APIRouter(prefix="/portal", tags=["portal"])


@router.get("/groups", response_model=list[PortalGroupResponse])
async def list_groups(
    view: Literal["all", "mine"] = "all",
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_portal_user),
) -> list[PortalGroupResponse]:
    with database_errors("Gruppen konnten nicht geladen werden"):
        rows = await MembershipService(db, current_user).list_groups(only_mine=view == "mine")
    return [
        PortalGroupResponse.model_validate(row.group).model_copy(
            update={
                "is_member": row.is_member,
                "is_responsible": row.is_responsible,
                "member_count": row.member_count,
            }
        )
        for row in rows
    ]


@router.post("/groups/join", response_model=SuccessResponse)
async def join_group(
    data: JoinGroupRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_portal_user),
) -> SuccessResponse:
    with database_errors("Beitritt zur Gruppe fehlgeschlagen"):
        await MembershipService(db, current_user).join(data.group_id)
    return SuccessResponse(message="Erfolgreich der Gruppe beigetreten")


@router.post("/groups/{group_id}/leave", response_model=SuccessResponse)
async def leave_group(
    group_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_portal_user),
) -> SuccessResponse:
    with database_errors("Austritt aus der Gruppe fehlgeschlagen"):
        await MembershipService(db, current_user).leave(group_id)
    return SuccessResponse(message="Gruppe erfolgreich verlassen")


@router.get("/groups/{group_id}/members", response_model=MemberListResponse)
async def list_members(
    group_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100, alias="pageSize"),
    sort_by: Literal["joinedAt", "name"] = Query("joinedAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    db: AsyncSession = Depends(get_db),
    current_user: User | None = Depends(get_optional_user),
) -> MemberListResponse:
    if current_user is None:
        raise AppError.authentication("Nicht angemeldet")
    params = PageParams.build(page, page_size, default_size=50)
    with database_errors("Mitglieder konnten nicht geladen werden"):
        rows, total = await MembershipService(db, current_user).list_members(
            group_id, params, sort_by, sort_order
        )
    return MemberListResponse(
        members=[
            MemberResponse.model_validate(row.member).model_copy(
                update={"is_responsible_person": row.is_responsible_person}
            )
            for row in rows
        ],
        total_items=total,
        total_pages=params.total_pages(total),
        current_page=params.page,
        page_size=params.page_size,
    )


@router.delete("/groups/{group_id}/members", response_model=SuccessResponse)
async def remove_member(
    group_id: UUID,
    user_id: UUID = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_portal_user),
) -> SuccessResponse:
    with database_errors("Mitglied konnte nicht entfernt werden"):
        await MembershipService(db, current_user).remove_member(group_id, user_id)
    return SuccessResponse(message="Mitglied erfolgreich entfernt")


@router.patch("/groups/{group_id}", response_model=PortalGroupResponse)
async def update_group(
    group_id: UUID,
    data: PortalGroupUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_portal_user),
) -> PortalGroupResponse:
    with database_errors("Gruppe konnte nicht aktualisiert werden"):
        group = await MembershipService(db, current_user).update_group(group_id, data)
    return PortalGroupResponse.model_validate(group).model_copy(update={"is_responsible": True})
