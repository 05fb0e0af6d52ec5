"""
Anträge API Router

Public submission plus admin management, decisions and configuration.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from kvportal.antraege.models import AntragStatus
from kvportal.antraege.schemas import (
    AntragListResponse,
    AntragResponse,
    AntragSubmit,
    AntragUpdate,
    ConfigurationResponse,
    ConfigurationUpdate,
    DecisionRequest,
    DecisionResponse,
    DeleteAntragResponse,
)
from kvportal.antraege.services import AntragService, AntragView, ConfigurationService
from kvportal.auth.dependencies import require_admin
from kvportal.auth.models import User
from kvportal.core.database import get_db
from kvportal.core.errors import AppError, database_errors
from kvportal.core.schemas import PageParams, parse_json_field, parse_payload
from kvportal.storage import FileData, read_uploads

router = APIRouter(tags=["antraege"])


def _is_file_key(key: str) -> bool:
    return key == "files" or key.startswith("file-")


async def read_antrag_request(request: Request) -> tuple[dict[str, Any], list[FileData]]:
    """Read a JSON body or a multipart form with ``file-N`` attachments."""
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        try:
            payload = await request.json()
        except ValueError as e:
            raise AppError.validation(details={"body": "Ungültiges JSON"}) from e
        if not isinstance(payload, dict):
            raise AppError.validation(details={"body": "Ungültiges JSON"})
        return payload, []

    form = await request.form()
    payload: dict[str, Any] = {}
    uploads: list[UploadFile] = []
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            if _is_file_key(key):
                uploads.append(value)
        elif key in ("purposes", "filesToDelete", "existingFileUrls"):
            payload[key] = parse_json_field(value, key)
        elif key != "fileCount":
            payload[key] = value
    return payload, await read_uploads(uploads)


# =============================================================================
# Public
# =============================================================================


@router.post(
    "/antraege/submit", response_model=AntragResponse, status_code=status.HTTP_201_CREATED
)
async def submit_antrag(request: Request, db: AsyncSession = Depends(get_db)) -> AntragResponse:
    payload, files = await read_antrag_request(request)
    data = parse_payload(AntragSubmit, payload)
    with database_errors("Antrag konnte nicht gespeichert werden"):
        antrag = await AntragService(db).submit(data, files)
    return AntragResponse.model_validate(antrag)


# =============================================================================
# Configuration
# =============================================================================


@router.get("/admin/antraege/configuration", response_model=ConfigurationResponse)
async def get_configuration(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> ConfigurationResponse:
    with database_errors("Konfiguration konnte nicht geladen werden"):
        configuration = await ConfigurationService(db).get()
    return ConfigurationResponse.model_validate(configuration)


@router.put("/admin/antraege/configuration", response_model=ConfigurationResponse)
async def update_configuration(
    data: ConfigurationUpdate,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> ConfigurationResponse:
    with database_errors("Konfiguration konnte nicht gespeichert werden"):
        configuration = await ConfigurationService(db).update(data.recipient_emails)
    return ConfigurationResponse.model_validate(configuration)


# =============================================================================
# Admin
# =============================================================================


@router.get("/admin/antraege", response_model=AntragListResponse)
async def list_antraege(
    view: AntragView = "all",
    antrag_status: AntragStatus | None = Query(None, alias="status"),
    search: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AntragListResponse:
    params = PageParams.build(page, page_size)
    with database_errors("Serverfehler beim Abrufen der Anträge"):
        antraege, total = await AntragService(db).list_page(params, view, antrag_status, search)
    return AntragListResponse(
        items=[AntragResponse.model_validate(a) for a in antraege],
        total_items=total,
        page=params.page,
        page_size=params.page_size,
        total_pages=params.total_pages(total),
    )


@router.get("/admin/antraege/{antrag_id}", response_model=AntragResponse)
async def get_antrag(
    antrag_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AntragResponse:
    with database_errors("Antrag konnte nicht geladen werden"):
        antrag = await AntragService(db).get(antrag_id)
    return AntragResponse.model_validate(antrag)


@router.put("/admin/antraege/{antrag_id}", response_model=AntragResponse)
async def update_antrag(
    antrag_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AntragResponse:
    payload, files = await read_antrag_request(request)
    files_to_delete = payload.pop("filesToDelete", None) or []
    if "existingFileUrls" in payload:
        payload["fileUrls"] = payload.pop("existingFileUrls")
    data = parse_payload(AntragUpdate, payload)
    with database_errors("Antrag konnte nicht aktualisiert werden"):
        antrag = await AntragService(db).update(antrag_id, data, files, files_to_delete)
    return AntragResponse.model_validate(antrag)


@router.delete("/admin/antraege/{antrag_id}", response_model=DeleteAntragResponse)
async def delete_antrag(
    antrag_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> DeleteAntragResponse:
    with database_errors("Antrag konnte nicht gelöscht werden"):
        deleted = await AntragService(db).delete(antrag_id)
    return DeleteAntragResponse(
        message="Antrag und zugehörige Dateien erfolgreich gelöscht", deleted_files=deleted
    )


async def _decision_comment(request: Request) -> str | None:
    """Empty or malformed bodies count as no comment."""
    try:
        payload = await request.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    return parse_payload(DecisionRequest, payload).decision_comment


async def _decide(
    antrag_id: UUID, accepted: bool, request: Request, db: AsyncSession, user: User
) -> DecisionResponse:
    comment = await _decision_comment(request)
    with database_errors("Entscheidung konnte nicht gespeichert werden"):
        decision = await AntragService(db).decide(antrag_id, accepted, user, comment)
    action = "angenommen" if accepted else "abgelehnt"
    message = f"Antrag erfolgreich {action}"
    if not decision.email_sent:
        message += ", E-Mail konnte jedoch nicht gesendet werden"
    return DecisionResponse(
        antrag=AntragResponse.model_validate(decision.antrag),
        email_sent=decision.email_sent,
        message=message,
    )


@router.post("/admin/antraege/{antrag_id}/accept", response_model=DecisionResponse)
async def accept_antrag(
    antrag_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> DecisionResponse:
    return await _decide(antrag_id, True, request, db, current_user)


@router.post("/admin/antraege/{antrag_id}/reject", response_model=DecisionResponse)
async def reject_antrag(
    antrag_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> DecisionResponse:
    return await _decide(antrag_id, False, request, db, current_user)
