"""
Groups Pydantic Schemas
"""

import re
import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import EmailStr, Field, field_validator

from kvportal.core.schemas import CamelModel
from kvportal.groups.models import GroupStatus
from kvportal.status_reports.models import StatusReportStatus

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# =============================================================================
# Responsible persons
# =============================================================================


class ResponsiblePersonIn(CamelModel):
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class ResponsiblePersonResponse(CamelModel):
    id: uuid.UUID
    first_name: str
    last_name: str
    email: str


# =============================================================================
# Meeting fields
# =============================================================================


class MeetingFields(CamelModel):
    recurring_patterns: list[str] | None = None
    meeting_time: str | None = None
    meeting_street: str | None = Field(None, max_length=200)
    meeting_city: str | None = Field(None, max_length=100)
    meeting_postal_code: str | None = Field(None, max_length=10)
    meeting_location_details: str | None = Field(None, max_length=1000)

    @field_validator("meeting_time")
    @classmethod
    def valid_time(cls, value: str | None) -> str | None:
        if value and not TIME_PATTERN.match(value):
            raise ValueError("Uhrzeit im Format HH:MM angeben")
        return value or None

    @field_validator("meeting_postal_code")
    @classmethod
    def valid_postal_code(cls, value: str | None) -> str | None:
        if value and not re.fullmatch(r"\d{5}", value):
            raise ValueError("Postleitzahl muss aus 5 Ziffern bestehen")
        return value or None


# =============================================================================
# Requests
# =============================================================================


class GroupSubmit(MeetingFields):
    """Public group request."""

    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=50, max_length=5000)
    responsible_persons: list[ResponsiblePersonIn] = Field(..., min_length=1)

    @field_validator("name", "description", mode="before")
    @classmethod
    def strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class GroupUpdate(MeetingFields):
    name: str | None = Field(None, min_length=3, max_length=100)
    description: str | None = Field(None, min_length=1, max_length=5000)
    status: GroupStatus | None = None
    responsible_persons: list[ResponsiblePersonIn] | None = Field(None, min_length=1)
    remove_logo: bool = False


class ResponsibleUserRequest(CamelModel):
    user_id: uuid.UUID


# =============================================================================
# Responses
# =============================================================================


class StatusReportSummary(CamelModel):
    id: uuid.UUID
    title: str
    content: str
    reporter_first_name: str
    reporter_last_name: str
    file_urls: list[str] = []
    status: StatusReportStatus
    created_at: datetime


class GroupResponse(MeetingFields):
    id: uuid.UUID
    name: str
    slug: str
    description: str
    logo_url: str | None = None
    logo_metadata: dict[str, Any] | None = None
    status: GroupStatus
    created_at: datetime
    updated_at: datetime
    responsible_persons: list[ResponsiblePersonResponse] = []


class GroupListItem(GroupResponse):
    status_report_count: int = 0


class GroupDetailResponse(GroupResponse):
    status_reports: list[StatusReportSummary] = []


class GroupListResponse(CamelModel):
    items: list[GroupListItem]
    total_items: int
    page: int
    page_size: int
    total_pages: int


class PublicGroupResponse(CamelModel):
    id: uuid.UUID
    name: str
    slug: str
    description: str
    logo_url: str | None = None
    recurring_patterns: list[str] | None = None
    meeting_time: str | None = None
    meeting_street: str | None = None
    meeting_city: str | None = None
    meeting_postal_code: str | None = None
    meeting_location_details: str | None = None


class PublicGroupDetailResponse(PublicGroupResponse):
    status_reports: list[StatusReportSummary] = []


GroupOrderBy = Literal["name", "createdAt"]
