"""
Appointments API Router

Public submission and calendar plus admin review.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from kvportal.appointments.models import AppointmentStatus
from kvportal.appointments.schemas import (
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentSubmit,
    AppointmentUpdate,
    PublicAppointmentListResponse,
    PublicAppointmentResponse,
)
from kvportal.appointments.services import AppointmentService, AppointmentView, CoverFiles
from kvportal.auth.dependencies import require_admin
from kvportal.auth.models import User
from kvportal.core.database import get_db
from kvportal.core.errors import AppError, database_errors
from kvportal.core.schemas import PageParams, SuccessResponse, parse_json_field, parse_payload
from kvportal.storage import FileData, read_uploads

router = APIRouter(tags=["appointments"])

JSON_FIELDS = ("existingFileUrls", "deletedFileUrls", "fileUrls")


def _is_file_key(key: str) -> bool:
    return key == "files" or key.startswith("file-")


async def read_appointment_request(
    request: Request,
) -> tuple[dict[str, Any], list[FileData], CoverFiles | None]:
    """Read a JSON body or a multipart form with attachments and cover images."""
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        try:
            payload = await request.json()
        except ValueError as e:
            raise AppError.validation(details={"body": "Ungültiges JSON"}) from e
        if not isinstance(payload, dict):
            raise AppError.validation(details={"body": "Ungültiges JSON"})
        return payload, [], None

    form = await request.form()
    payload: dict[str, Any] = {}
    uploads: list[UploadFile] = []
    covers: dict[str, UploadFile] = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            if _is_file_key(key):
                uploads.append(value)
            elif key in ("coverImage", "croppedCoverImage"):
                covers[key] = value
        elif key in JSON_FIELDS:
            payload[key] = parse_json_field(value, key)
        elif key != "fileCount" and value != "":
            payload[key] = value

    original = await read_uploads([covers.get("coverImage")])
    cropped = await read_uploads([covers.get("croppedCoverImage")])
    cover = CoverFiles(original[0], cropped[0] if cropped else None) if original else None
    return payload, await read_uploads(uploads), cover


# =============================================================================
# Public
# =============================================================================


@router.post(
    "/appointments/submit",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_appointment(
    request: Request, db: AsyncSession = Depends(get_db)
) -> AppointmentResponse:
    payload, files, cover = await read_appointment_request(request)
    data = parse_payload(AppointmentSubmit, payload)
    with database_errors("Termin konnte nicht gespeichert werden"):
        appointment = await AppointmentService(db).submit(data, files, cover)
    return AppointmentResponse.model_validate(appointment)


@router.get("/appointments", response_model=PublicAppointmentListResponse)
async def list_public_appointments(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
) -> PublicAppointmentListResponse:
    params = PageParams.build(page, page_size)
    with database_errors("Termine konnten nicht geladen werden"):
        appointments, total = await AppointmentService(db).list_public(params)
    return PublicAppointmentListResponse(
        items=[PublicAppointmentResponse.model_validate(a) for a in appointments],
        total_items=total,
        page=params.page,
        page_size=params.page_size,
        total_pages=params.total_pages(total),
    )


@router.get("/appointments/{appointment_id}", response_model=PublicAppointmentResponse)
async def get_public_appointment(
    appointment_id: UUID, db: AsyncSession = Depends(get_db)
) -> PublicAppointmentResponse:
    with database_errors("Termin konnte nicht geladen werden"):
        appointment = await AppointmentService(db).get_public(appointment_id)
    return PublicAppointmentResponse.model_validate(appointment)


# =============================================================================
# Admin
# =============================================================================


@router.get("/admin/appointments", response_model=AppointmentListResponse)
async def list_appointments(
    view: AppointmentView = "all",
    appointment_status: AppointmentStatus | None = Query(None, alias="status"),
    search: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AppointmentListResponse:
    params = PageParams.build(page, page_size)
    with database_errors("Termine konnten nicht geladen werden"):
        appointments, total = await AppointmentService(db).list_page(
            params, view, appointment_status, search
        )
    return AppointmentListResponse(
        items=[AppointmentResponse.model_validate(a) for a in appointments],
        total_items=total,
        page=params.page,
        page_size=params.page_size,
        total_pages=params.total_pages(total),
    )


@router.get("/admin/appointments/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AppointmentResponse:
    with database_errors("Termin konnte nicht geladen werden"):
        appointment = await AppointmentService(db).get(appointment_id)
    return AppointmentResponse.model_validate(appointment)


@router.patch("/admin/appointments/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AppointmentResponse:
    payload, files, cover = await read_appointment_request(request)
    deleted = payload.pop("deletedFileUrls", None) or []
    if "existingFileUrls" in payload:
        payload["fileUrls"] = payload.pop("existingFileUrls")
    data = parse_payload(AppointmentUpdate, payload)
    with database_errors("Termin konnte nicht aktualisiert werden"):
        appointment = await AppointmentService(db).update(
            appointment_id, data, files, deleted, cover
        )
    return AppointmentResponse.model_validate(appointment)


@router.delete("/admin/appointments/{appointment_id}", response_model=SuccessResponse)
async def delete_appointment(
    appointment_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> SuccessResponse:
    with database_errors("Termin konnte nicht gelöscht werden"):
        await AppointmentService(db).delete(appointment_id)
    return SuccessResponse(message="Termin erfolgreich gelöscht")
