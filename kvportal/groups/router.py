"""
Groups API Router

Public group pages and requests, admin management.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile as StarletteUploadFile

from kvportal.auth.dependencies import require_admin
from kvportal.auth.models import User
from kvportal.core.database import get_db
from kvportal.core.errors import AppError, database_errors
from kvportal.core.schemas import (
    PageParams,
    SuccessResponse,
    parse_json_field,
    parse_payload,
)
from kvportal.groups.models import Group, GroupStatus
from kvportal.groups.schemas import (
    GroupDetailResponse,
    GroupListItem,
    GroupListResponse,
    GroupOrderBy,
    GroupResponse,
    GroupSubmit,
    GroupUpdate,
    PublicGroupDetailResponse,
    PublicGroupResponse,
    ResponsibleUserRequest,
    StatusReportSummary,
)
from kvportal.groups.services import GroupService, LogoFiles
from kvportal.status_reports.models import StatusReport
from kvportal.storage import read_uploads

router = APIRouter(tags=["groups"])

JSON_FORM_FIELDS = ("responsiblePersons", "recurringPatterns")


async def read_logo(logo: UploadFile | None, cropped: UploadFile | None) -> LogoFiles | None:
    files = await read_uploads([logo] if logo else [])
    if not files:
        return None
    cropped_files = await read_uploads([cropped] if cropped else [])
    return LogoFiles(original=files[0], cropped=cropped_files[0] if cropped_files else None)


def detail_response(group: Group, reports: list[StatusReport]) -> GroupDetailResponse:
    base = GroupResponse.model_validate(group).model_dump()
    return GroupDetailResponse(
        **base, status_reports=[StatusReportSummary.model_validate(r) for r in reports]
    )


# =============================================================================
# Public
# =============================================================================


@router.post("/groups/submit", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def submit_group(
    name: str = Form(...),
    description: str = Form(...),
    responsible_persons: str = Form(..., alias="responsiblePersons"),
    recurring_patterns: str | None = Form(None, alias="recurringPatterns"),
    meeting_time: str | None = Form(None, alias="meetingTime"),
    meeting_street: str | None = Form(None, alias="meetingStreet"),
    meeting_city: str | None = Form(None, alias="meetingCity"),
    meeting_postal_code: str | None = Form(None, alias="meetingPostalCode"),
    meeting_location_details: str | None = Form(None, alias="meetingLocationDetails"),
    logo: UploadFile | None = File(None),
    cropped_logo: UploadFile | None = File(None, alias="croppedLogo"),
    db: AsyncSession = Depends(get_db),
) -> GroupResponse:
    """Submit a new group for approval (multipart form)."""
    data = parse_payload(
        GroupSubmit,
        {
            "name": name,
            "description": description,
            "responsiblePersons": parse_json_field(responsible_persons, "responsiblePersons", []),
            "recurringPatterns": parse_json_field(recurring_patterns, "recurringPatterns"),
            "meetingTime": meeting_time,
            "meetingStreet": meeting_street,
            "meetingCity": meeting_city,
            "meetingPostalCode": meeting_postal_code,
            "meetingLocationDetails": meeting_location_details,
        },
    )
    logo_files = await read_logo(logo, cropped_logo)
    with database_errors("Gruppe konnte nicht erstellt werden"):
        group = await GroupService(db).submit(data, logo_files)
    return GroupResponse.model_validate(group)


@router.get("/groups", response_model=list[PublicGroupResponse])
async def public_groups(db: AsyncSession = Depends(get_db)) -> list[PublicGroupResponse]:
    with database_errors("Gruppen konnten nicht geladen werden"):
        groups = await GroupService(db).list_public()
    return [PublicGroupResponse.model_validate(g) for g in groups]


@router.get("/groups/{slug}", response_model=PublicGroupDetailResponse)
async def public_group(slug: str, db: AsyncSession = Depends(get_db)) -> PublicGroupDetailResponse:
    service = GroupService(db)
    with database_errors("Gruppe konnte nicht geladen werden"):
        group = await service.get_by_slug(slug)
        reports = await service.active_reports(group.id)
    base = PublicGroupResponse.model_validate(group).model_dump()
    return PublicGroupDetailResponse(
        **base, status_reports=[StatusReportSummary.model_validate(r) for r in reports]
    )


# =============================================================================
# Admin
# =============================================================================


@router.get("/admin/groups", response_model=GroupListResponse)
async def list_groups(
    group_status: str | None = Query(None, alias="status"),
    search: str | None = None,
    order_by: GroupOrderBy = Query("name", alias="orderBy"),
    order_direction: str = Query("asc", alias="orderDirection", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> GroupListResponse:
    status_filter: GroupStatus | None = None
    if group_status and group_status != "ALL":
        try:
            status_filter = GroupStatus(group_status)
        except ValueError as e:
            raise AppError.validation(details={"status": "Ungültiger Status"}) from e

    params = PageParams.build(page, page_size)
    with database_errors("Gruppen konnten nicht geladen werden"):
        result = await GroupService(db).list_admin(
            params, status_filter, search, order_by, order_direction
        )
    items = [
        GroupListItem.model_validate(g).model_copy(
            update={"status_report_count": result.report_counts.get(g.id, 0)}
        )
        for g in result.groups
    ]
    return GroupListResponse(
        items=items,
        total_items=result.total,
        page=params.page,
        page_size=params.page_size,
        total_pages=params.total_pages(result.total),
    )


@router.get("/admin/groups/{group_id}", response_model=GroupDetailResponse)
async def get_group(
    group_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> GroupDetailResponse:
    service = GroupService(db)
    with database_errors("Gruppe konnte nicht geladen werden"):
        group = await service.get(group_id)
        reports = await service.active_reports(group_id)
    return detail_response(group, reports)


async def _read_update(request: Request) -> tuple[GroupUpdate, LogoFiles | None]:
    """Accept JSON or multipart (with logo files) for group updates."""
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        try:
            payload = await request.json()
        except ValueError as e:
            raise AppError.validation(details={"body": "Ungültiges JSON"}) from e
        return parse_payload(GroupUpdate, payload), None

    form = await request.form()
    payload: dict[str, Any] = {}
    uploads: dict[str, StarletteUploadFile] = {}
    for key, value in form.items():
        if isinstance(value, StarletteUploadFile):
            uploads[key] = value
        elif key in JSON_FORM_FIELDS:
            payload[key] = parse_json_field(value, key)
        elif key == "removeLogo":
            payload[key] = value.lower() == "true"
        else:
            payload[key] = value
    logo = await read_logo(uploads.get("logo"), uploads.get("croppedLogo"))
    return parse_payload(GroupUpdate, payload), logo


@router.patch("/admin/groups/{group_id}", response_model=GroupDetailResponse)
async def update_group(
    group_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> GroupDetailResponse:
    data, logo = await _read_update(request)
    service = GroupService(db)
    with database_errors("Gruppe konnte nicht aktualisiert werden"):
        group = await service.update(group_id, data, logo)
        reports = await service.active_reports(group_id)
    return detail_response(group, reports)


@router.delete("/admin/groups/{group_id}", response_model=SuccessResponse)
async def delete_group(
    group_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> SuccessResponse:
    with database_errors("Gruppe konnte nicht gelöscht werden"):
        await GroupService(db).delete(group_id)
    return SuccessResponse(message="Gruppe erfolgreich gelöscht")


@router.post("/admin/groups/{group_id}/responsible", response_model=SuccessResponse)
async def assign_responsible(
    group_id: UUID,
    data: ResponsibleUserRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> SuccessResponse:
    with database_errors("Verantwortliche Person konnte nicht zugewiesen werden"):
        await GroupService(db).assign_responsible_user(group_id, data.user_id)
    return SuccessResponse(message="Verantwortliche Person zugewiesen")


@router.delete("/admin/groups/{group_id}/responsible", response_model=SuccessResponse)
async def remove_responsible(
    group_id: UUID,
    user_id: UUID = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> SuccessResponse:
    with database_errors("Verantwortliche Person konnte nicht entfernt werden"):
        await GroupService(db).remove_responsible_user(group_id, user_id)
    return SuccessResponse(message="Verantwortliche Person entfernt")
