"""
Shared Schemas

Base model with camelCase wire names and pagination helpers.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from kvportal.core.errors import AppError, field_errors

MAX_SEARCH_LENGTH = 100


class CamelModel(BaseModel):
    """Serializes as camelCase, accepts both camelCase and snake_case input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class SuccessResponse(CamelModel):
    success: bool = True
    message: str | None = None


@dataclass
class PageParams:
    """Normalized page/page size pair."""

    page: int = 1
    page_size: int = 10

    @classmethod
    def build(cls, page: int | None, page_size: int | None, default_size: int = 10, max_size: int = 100) -> "PageParams":
        page = max(1, page or 1)
        size = page_size or default_size
        size = min(max_size, max(1, size))
        return cls(page=page, page_size=size)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def total_pages(self, total: int) -> int:
        return math.ceil(total / self.page_size) if total else 0


def clean_search(search: str | None) -> str | None:
    """Trim and truncate a free-text search term; empty terms are dropped."""
    if not search:
        return None
    search = search.strip()[:MAX_SEARCH_LENGTH]
    return search or None


def like_pattern(search: str) -> str:
    escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


M = TypeVar("M", bound=BaseModel)


def parse_payload(model: type[M], data: Any) -> M:
    """Validate form or JSON data outside of FastAPI's body parsing."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise AppError.validation(details=field_errors(exc.errors())) from exc


def parse_json_field(value: str | None, field: str, default: Any = None) -> Any:
    """Decode a JSON encoded multipart form field."""
    if value is None or value == "":
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise AppError.validation(details={field: "Ungültiges JSON"}) from exc
