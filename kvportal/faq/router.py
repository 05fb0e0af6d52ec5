"""
FAQ API Router

Admin CRUD below /admin/faq and the read-only portal view below /portal/faq.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.auth.dependencies import require_admin, require_portal_user
from kvportal.auth.models import User, UserRole
from kvportal.core.database import get_db
from kvportal.core.errors import AppError, database_errors
from kvportal.core.schemas import PageParams, SuccessResponse
from kvportal.faq.models import FaqStatus
from kvportal.faq.schemas import FaqCreate, FaqListResponse, FaqResponse, FaqUpdate
from kvportal.faq.services import FAQ_NOT_FOUND, FaqService

router = APIRouter(tags=["faq"])


# =============================================================================
# Admin
# =============================================================================


@router.get("/admin/faq", response_model=FaqListResponse)
async def list_faqs(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    faq_status: FaqStatus | None = Query(None, alias="status"),
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> FaqListResponse:
    params = PageParams.build(page, page_size)
    with database_errors("FAQ konnten nicht geladen werden"):
        faqs, total = await FaqService(db).list_page(params, faq_status, search)
    return FaqListResponse(
        faqs=[FaqResponse.model_validate(faq) for faq in faqs],
        total_items=total,
        total_pages=params.total_pages(total),
        current_page=params.page,
        page_size=params.page_size,
    )


@router.post("/admin/faq", response_model=FaqResponse, status_code=status.HTTP_201_CREATED)
async def create_faq(
    data: FaqCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> FaqResponse:
    with database_errors("FAQ konnte nicht erstellt werden"):
        faq = await FaqService(db).create(data, current_user)
    return FaqResponse.model_validate(faq)


@router.get("/admin/faq/{faq_id}", response_model=FaqResponse)
async def get_faq(
    faq_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> FaqResponse:
    with database_errors("FAQ konnte nicht geladen werden"):
        faq = await FaqService(db).get(faq_id)
    return FaqResponse.model_validate(faq)


@router.patch("/admin/faq/{faq_id}", response_model=FaqResponse)
async def update_faq(
    faq_id: UUID,
    data: FaqUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> FaqResponse:
    with database_errors("FAQ konnte nicht aktualisiert werden"):
        faq = await FaqService(db).update(faq_id, data, current_user)
    return FaqResponse.model_validate(faq)


@router.delete("/admin/faq/{faq_id}", response_model=SuccessResponse)
async def delete_faq(
    faq_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> SuccessResponse:
    with database_errors("FAQ konnte nicht gelöscht werden"):
        await FaqService(db).delete(faq_id)
    return SuccessResponse()


# =============================================================================
# Portal
# =============================================================================


@router.get("/portal/faq", response_model=list[FaqResponse])
async def portal_faqs(
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_portal_user),
) -> list[FaqResponse]:
    with database_errors("FAQ konnten nicht geladen werden"):
        faqs = await FaqService(db).list_active(search)
    return [FaqResponse.model_validate(faq) for faq in faqs]


@router.get("/portal/faq/{faq_id}", response_model=FaqResponse)
async def portal_faq(
    faq_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_portal_user),
) -> FaqResponse:
    with database_errors("FAQ konnte nicht geladen werden"):
        faq = await FaqService(db).get(faq_id)
    if faq.status != FaqStatus.ACTIVE and current_user.role != UserRole.ADMIN:
        raise AppError.not_found(FAQ_NOT_FOUND)
    return FaqResponse.model_validate(faq)
