"""
Address Pydantic Schemas
"""

import re
import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import Field, field_validator

from kvportal.core.schemas import CamelModel


class AddressCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    street: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    postal_code: str
    location_details: str | None = Field(None, max_length=1000)

    @field_validator("name", "street", "city", "postal_code", "location_details", mode="before")
    @classmethod
    def strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("postal_code")
    @classmethod
    def valid_postal_code(cls, value: str) -> str:
        if not re.fullmatch(r"\d{5}", value):
            raise ValueError("Postleitzahl muss aus 5 Ziffern bestehen")
        return value

    @field_validator("location_details")
    @classmethod
    def empty_to_none(cls, value: str | None) -> str | None:
        return value or None


class AddressUpdate(AddressCreate):
    id: uuid.UUID


class AddressResponse(CamelModel):
    id: uuid.UUID
    name: str
    street: str
    city: str
    postal_code: str
    location_details: str | None = None
    created_at: datetime
    updated_at: datetime


class AddressListResponse(CamelModel):
    addresses: list[AddressResponse]
    total_items: int
    total_pages: int
    current_page: int


AddressOrderBy = Literal["name", "createdAt"]
