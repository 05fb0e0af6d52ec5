"""
FAQ Pydantic Schemas
"""

import uuid
from datetime import datetime

from pydantic import Field, field_validator

from kvportal.core.schemas import CamelModel
from kvportal.faq.models import FaqStatus


class FaqBase(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, max_length=10000)

    @field_validator("title", "content")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Darf nicht leer sein")
        return value


class FaqCreate(FaqBase):
    status: FaqStatus = FaqStatus.ACTIVE


class FaqUpdate(CamelModel):
    title: str | None = Field(None, min_length=1, max_length=200)
    content: str | None = Field(None, min_length=1, max_length=10000)
    status: FaqStatus | None = None


class FaqResponse(FaqBase):
    id: uuid.UUID
    status: FaqStatus
    created_at: datetime
    updated_at: datetime


class FaqListResponse(CamelModel):
    faqs: list[FaqResponse]
    total_items: int
    total_pages: int
    current_page: int
    page_size: int
