"""
Address Services
"""

import logging
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.addresses.models import Address
from kvportal.addresses.schemas import AddressCreate, AddressUpdate
from kvportal.core.errors import AppError
from kvportal.core.schemas import PageParams, clean_search, like_pattern

logger = logging.getLogger(__name__)

ADDRESS_NOT_FOUND = "Adresse nicht gefunden"
DUPLICATE_NAME = "Adresse mit diesem Namen existiert bereits"


class AddressService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_page(
        self,
        page: PageParams,
        search: str | None = None,
        order_by: str = "name",
        order_direction: str = "asc",
    ) -> tuple[list[Address], int]:
        query = select(Address)
        term = clean_search(search)
        if term:
            pattern = like_pattern(term)
            query = query.where(
                or_(
                    Address.name.ilike(pattern, escape="\\"),
                    Address.street.ilike(pattern, escape="\\"),
                    Address.city.ilike(pattern, escape="\\"),
                    Address.postal_code.ilike(pattern, escape="\\"),
                )
            )
        total = await self.db.scalar(select(func.count()).select_from(query.subquery())) or 0

        column = Address.created_at if order_by == "createdAt" else Address.name
        ordering = column.desc() if order_direction == "desc" else column.asc()
        result = await self.db.execute(
            query.order_by(ordering).offset(page.offset).limit(page.page_size)
        )
        return list(result.scalars().all()), total

    async def get(self, address_id: uuid.UUID) -> Address:
        address = await self.db.get(Address, address_id)
        if address is None:
            raise AppError.not_found(ADDRESS_NOT_FOUND)
        return address

    async def name_taken(self, name: str, exclude_id: uuid.UUID | None = None) -> bool:
        """Case-insensitive duplicate check."""
        query = select(Address.id).where(func.lower(Address.name) == name.lower())
        if exclude_id is not None:
            query = query.where(Address.id != exclude_id)
        return await self.db.scalar(query.limit(1)) is not None

    async def create(self, data: AddressCreate) -> Address:
        if await self.name_taken(data.name):
            raise AppError.conflict(DUPLICATE_NAME)
        address = Address(**data.model_dump())
        self.db.add(address)
        await self.db.flush()
        logger.info("Address %s created", address.id)
        return address

    async def update(self, data: AddressUpdate) -> Address:
        address = await self.get(data.id)
        if await self.name_taken(data.name, exclude_id=data.id):
            raise AppError.conflict(DUPLICATE_NAME)
        for field, value in data.model_dump(exclude={"id"}).items():
            setattr(address, field, value)
        await self.db.flush()
        logger.info("Address %s updated", address.id)
        return address

    async def delete(self, address_id: uuid.UUID) -> None:
        address = await self.get(address_id)
        await self.db.delete(address)
        await self.db.flush()
        logger.info("Address %s deleted", address_id)
