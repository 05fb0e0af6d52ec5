"""
Appointment Pydantic Schemas
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import Field, field_validator, model_validator

from kvportal.appointments.models import AppointmentStatus
from kvportal.core.schemas import CamelModel

END_BEFORE_START = "Enddatum darf nicht vor dem Startdatum liegen"

TEXT_FIELDS = (
    "title",
    "main_text",
    "street",
    "city",
    "state",
    "postal_code",
    "location_details",
    "first_name",
    "last_name",
    "recurring_text",
    "rejection_reason",
)


def as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes from forms are taken as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class AppointmentBase(CamelModel):
    @field_validator(*TEXT_FIELDS, mode="before", check_fields=False)
    @classmethod
    def strip(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("start_date_time", "end_date_time", check_fields=False)
    @classmethod
    def utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @model_validator(mode="after")
    def end_after_start(self) -> "AppointmentBase":
        start = getattr(self, "start_date_time", None)
        end = getattr(self, "end_date_time", None)
        if start and end and end < start:
            raise ValueError(END_BEFORE_START)
        return self


# =============================================================================
# Requests
# =============================================================================


class AppointmentSubmit(AppointmentBase):
    title: str = Field(..., min_length=3, max_length=200)
    main_text: str = Field(..., min_length=10, max_length=5000)
    start_date_time: datetime
    end_date_time: datetime | None = None
    street: str | None = Field(None, max_length=200)
    city: str | None = Field(None, max_length=100)
    state: str | None = Field(None, max_length=100)
    postal_code: str | None = Field(None, max_length=10)
    location_details: str | None = Field(None, max_length=1000)
    address_id: uuid.UUID | None = None
    first_name: str | None = Field(None, max_length=50)
    last_name: str | None = Field(None, max_length=50)
    recurring_text: str | None = Field(None, max_length=500)
    featured: bool = False


class AppointmentUpdate(AppointmentBase):
    title: str | None = Field(None, min_length=3, max_length=200)
    main_text: str | None = Field(None, min_length=10, max_length=5000)
    start_date_time: datetime | None = None
    end_date_time: datetime | None = None
    street: str | None = Field(None, max_length=200)
    city: str | None = Field(None, max_length=100)
    state: str | None = Field(None, max_length=100)
    postal_code: str | None = Field(None, max_length=10)
    location_details: str | None = Field(None, max_length=1000)
    address_id: uuid.UUID | None = None
    first_name: str | None = Field(None, max_length=50)
    last_name: str | None = Field(None, max_length=50)
    recurring_text: str | None = Field(None, max_length=500)
    featured: bool | None = None
    status: AppointmentStatus | None = None
    rejection_reason: str | None = Field(None, max_length=5000)
    file_urls: list[str] | None = None


class FeaturedUpdate(CamelModel):
    id: uuid.UUID | None = None
    featured: bool | None = None


# =============================================================================
# Responses
# =============================================================================


class PublicAppointmentResponse(CamelModel):
    id: uuid.UUID
    title: str
    main_text: str
    start_date_time: datetime
    end_date_time: datetime | None = None
    recurring_text: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    location_details: str | None = None
    file_urls: list[str] = []
    featured: bool
    cover_image_url: str | None = None
    cropped_cover_image_url: str | None = None


class AppointmentResponse(PublicAppointmentResponse):
    address_id: uuid.UUID | None = None
    first_name: str | None = None
    last_name: str | None = None
    status: AppointmentStatus
    processed: bool
    processing_date: datetime | None = None
    status_change_date: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class AppointmentListResponse(CamelModel):
    items: list[AppointmentResponse]
    total_items: int
    page: int
    page_size: int
    total_pages: int


class PublicAppointmentListResponse(CamelModel):
    items: list[PublicAppointmentResponse]
    total_items: int
    page: int
    page_size: int
    total_pages: int


class NewsletterAppointment(CamelModel):
    id: uuid.UUID
    title: str
    start_date_time: datetime
    featured: bool


class NewsletterAppointmentList(CamelModel):
    items: list[NewsletterAppointment]
    total_items: int
    page: int
    page_size: int
    total_pages: int
