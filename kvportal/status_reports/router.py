"""
Status Reports API Router
"""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.auth.dependencies import require_admin
from kvportal.auth.models import User
from kvportal.core.database import get_db
from kvportal.core.errors import database_errors
from kvportal.core.schemas import PageParams, SuccessResponse, parse_payload
from kvportal.status_reports.models import StatusReportStatus
from kvportal.status_reports.schemas import (
    ReportOrderBy,
    StatusReportDetail,
    StatusReportListResponse,
    StatusReportResponse,
    StatusReportSubmit,
    StatusReportUpdate,
)
from kvportal.status_reports.services import StatusReportService
from kvportal.storage import read_uploads

router = APIRouter(tags=["status-reports"])


@router.post(
    "/status-reports/submit",
    response_model=StatusReportResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_report(
    group_id: str = Form(..., alias="groupId"),
    title: str = Form(...),
    content: str = Form(...),
    reporter_first_name: str = Form(..., alias="reporterFirstName"),
    reporter_last_name: str = Form(..., alias="reporterLastName"),
    files: list[UploadFile] | None = File(None),
    db: AsyncSession = Depends(get_db),
) -> StatusReportResponse:
    data = parse_payload(
        StatusReportSubmit,
        {
            "groupId": group_id,
            "title": title,
            "content": content,
            "reporterFirstName": reporter_first_name,
            "reporterLastName": reporter_last_name,
        },
    )
    file_data = await read_uploads(files)
    with database_errors("Statusbericht konnte nicht gespeichert werden"):
        report = await StatusReportService(db).submit(data, file_data)
    return StatusReportResponse.model_validate(report)


@router.get("/admin/status-reports", response_model=StatusReportListResponse)
async def list_reports(
    report_status: StatusReportStatus | None = Query(None, alias="status"),
    group_id: UUID | None = Query(None, alias="groupId"),
    search: str | None = None,
    order_by: ReportOrderBy = Query("createdAt", alias="orderBy"),
    order_direction: str = Query("desc", alias="orderDirection", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> StatusReportListResponse:
    params = PageParams.build(page, page_size)
    with database_errors("Statusberichte konnten nicht geladen werden"):
        reports, total = await StatusReportService(db).list_page(
            params, report_status, group_id, search, order_by, order_direction
        )
    return StatusReportListResponse(
        reports=[StatusReportDetail.model_validate(r) for r in reports],
        total_items=total,
        total_pages=params.total_pages(total),
        current_page=params.page,
        page_size=params.page_size,
    )


@router.get("/admin/status-reports/{report_id}", response_model=StatusReportDetail)
async def get_report(
    report_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> StatusReportDetail:
    with database_errors("Statusbericht konnte nicht geladen werden"):
        report = await StatusReportService(db).get(report_id)
    return StatusReportDetail.model_validate(report)


@router.patch("/admin/status-reports/{report_id}", response_model=StatusReportDetail)
async def update_report(
    report_id: UUID,
    data: StatusReportUpdate,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> StatusReportDetail:
    with database_errors("Statusbericht konnte nicht aktualisiert werden"):
        report = await StatusReportService(db).update(report_id, data)
    return StatusReportDetail.model_validate(report)


@router.delete("/admin/status-reports/{report_id}", response_model=SuccessResponse)
async def delete_report(
    report_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> SuccessResponse:
    with database_errors("Statusbericht konnte nicht gelöscht werden"):
        await StatusReportService(db).delete(report_id)
    return SuccessResponse(message="Statusbericht erfolgreich gelöscht")
