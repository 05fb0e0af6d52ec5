"""
Addresses API Router

Admin management of reusable meeting locations.
"""

import uuid
from typing import Any, TypeVar

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.addresses.schemas import (
    AddressCreate,
    AddressListResponse,
    AddressOrderBy,
    AddressResponse,
    AddressUpdate,
)
from kvportal.addresses.services import AddressService
from kvportal.auth.dependencies import require_admin
from kvportal.auth.models import User
from kvportal.core.database import get_db
from kvportal.core.errors import AppError, database_errors
from kvportal.core.schemas import PageParams, SuccessResponse

router = APIRouter(prefix="/admin/addresses", tags=["addresses"])

M = TypeVar("M", bound=BaseModel)


def validate_address(model: type[M], payload: Any) -> M:
    """Validate with a list of ``{field, message}`` details on failure."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        details = [
            {
                "field": ".".join(str(part) for part in error["loc"]),
                "message": error["msg"].removeprefix("Value error, "),
            }
            for error in exc.errors()
        ]
        raise AppError.validation("Validierungsfehler", details) from exc


@router.get("", response_model=AddressListResponse)
async def list_addresses(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    search: str | None = None,
    order_by: AddressOrderBy = Query("name", alias="orderBy"),
    order_direction: str = Query("asc", alias="orderDirection", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AddressListResponse:
    params = PageParams.build(page, page_size)
    with database_errors("Fehler beim Laden der Adressen"):
        addresses, total = await AddressService(db).list_page(params, search, order_by, order_direction)
    return AddressListResponse(
        addresses=[AddressResponse.model_validate(a) for a in addresses],
        total_items=total,
        total_pages=params.total_pages(total),
        current_page=params.page,
    )


@router.post("", response_model=AddressResponse, status_code=status.HTTP_201_CREATED)
async def create_address(
    payload: Any = Body(...),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AddressResponse:
    data = validate_address(AddressCreate, payload)
    with database_errors("Fehler beim Erstellen der Adresse"):
        address = await AddressService(db).create(data)
    return AddressResponse.model_validate(address)


@router.patch("", response_model=AddressResponse)
async def update_address(
    payload: Any = Body(...),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AddressResponse:
    data = validate_address(AddressUpdate, payload)
    with database_errors("Fehler beim Aktualisieren der Adresse"):
        address = await AddressService(db).update(data)
    return AddressResponse.model_validate(address)


@router.delete("", response_model=SuccessResponse)
async def delete_address(
    address_id: str | None = Query(None, alias="id"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> SuccessResponse:
    if not address_id:
        raise AppError.validation("Adress-ID erforderlich")
    try:
        parsed_id = uuid.UUID(address_id)
    except ValueError as e:
        raise AppError.not_found("Adresse nicht gefunden") from e
    with database_errors("Fehler beim Löschen der Adresse"):
        await AddressService(db).delete(parsed_id)
    return SuccessResponse(message="Adresse erfolgreich gelöscht")
