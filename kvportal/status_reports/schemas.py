"""
Status Report Pydantic Schemas
"""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import Field, field_validator

from kvportal.core.schemas import CamelModel
from kvportal.status_reports.models import StatusReportStatus


class StatusReportSubmit(CamelModel):
    group_id: uuid.UUID
    title: str = Field(..., min_length=3, max_length=100)
    content: str = Field(..., min_length=1, max_length=5000)
    reporter_first_name: str = Field(..., min_length=2, max_length=50)
    reporter_last_name: str = Field(..., min_length=2, max_length=50)

    @field_validator(
        "title", "content", "reporter_first_name", "reporter_last_name", mode="before"
    )
    @classmethod
    def strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class StatusReportUpdate(CamelModel):
    title: str | None = Field(None, min_length=3, max_length=100)
    content: str | None = Field(None, min_length=1, max_length=5000)
    reporter_first_name: str | None = Field(None, min_length=2, max_length=50)
    reporter_last_name: str | None = Field(None, min_length=2, max_length=50)
    status: StatusReportStatus | None = None
    file_urls: list[str] | None = None


class ReportGroup(CamelModel):
    id: uuid.UUID
    name: str
    slug: str
    status: str


class StatusReportResponse(CamelModel):
    id: uuid.UUID
    title: str
    content: str
    reporter_first_name: str
    reporter_last_name: str
    file_urls: list[str] = []
    status: StatusReportStatus
    group_id: uuid.UUID
    created_at: datetime
    updated_at: datetime


class StatusReportDetail(StatusReportResponse):
    group: ReportGroup


class StatusReportListResponse(CamelModel):
    reports: list[StatusReportDetail]
    total_items: int
    total_pages: int
    current_page: int
    page_size: int


ReportOrderBy = Literal["title", "createdAt"]
