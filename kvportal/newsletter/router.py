"""
Newsletter API Router

Admin endpoints for drafting, sending and analysing newsletters, plus the
public archive and tracking endpoints.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.appointments.schemas import (
    FeaturedUpdate,
    NewsletterAppointment,
    NewsletterAppointmentList,
)
from kvportal.appointments.services import AppointmentService
from kvportal.auth.dependencies import require_admin
from kvportal.auth.models import User
from kvportal.core.database import get_db
from kvportal.core.errors import AppError, database_errors
from kvportal.core.schemas import PageParams, SuccessResponse
from kvportal.newsletter import tracking
from kvportal.newsletter.ai import ai_service
from kvportal.newsletter.models import NewsletterStatus
from kvportal.newsletter.recipients import process_recipient_list
from kvportal.newsletter.schemas import (
    AIGenerateRequest,
    AIGenerateResponse,
    AIRefineRequest,
    AIRefineResponse,
    AnalyticsResponse,
    ChunkRequest,
    ChunkResponse,
    GenerateRequest,
    GroupReportsPreview,
    LinkPerformance,
    NewsletterCreate,
    NewsletterListResponse,
    NewsletterResponse,
    NewsletterSettingsResponse,
    NewsletterSettingsUpdate,
    NewsletterUpdate,
    PublicNewsletterResponse,
    RecipientsRequest,
    RecipientValidation,
    RecoverRequest,
    RegenerateRequest,
    ReportPreview,
    RetryRequest,
    RetryResponse,
    SendRequest,
    SendResponse,
    SendStatusResponse,
    SendTestRequest,
    SendTestResponse,
)
from kvportal.newsletter.sending import NewsletterSender
from kvportal.newsletter.services import NewsletterService
from kvportal.newsletter.settings_service import (
    get_newsletter_config,
    get_settings_row,
    update_settings,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/newsletter", tags=["newsletter"])
public_router = APIRouter(prefix="/newsletter", tags=["newsletter"])

NO_CACHE = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


# =============================================================================
# Settings
# =============================================================================


@router.get("/settings", response_model=NewsletterSettingsResponse)
async def get_settings(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NewsletterSettingsResponse:
    with database_errors("Einstellungen konnten nicht geladen werden"):
        row = await get_settings_row(db)
    return NewsletterSettingsResponse.model_validate(row)


@router.put("/settings", response_model=NewsletterSettingsResponse)
async def put_settings(
    data: NewsletterSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NewsletterSettingsResponse:
    with database_errors("Einstellungen konnten nicht gespeichert werden"):
        row = await update_settings(db, data)
    return NewsletterSettingsResponse.model_validate(row)


# =============================================================================
# Drafts and content
# =============================================================================


@router.get("", response_model=NewsletterListResponse)
async def list_newsletters(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    newsletter_status: NewsletterStatus | None = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NewsletterListResponse:
    params = PageParams.build(page, limit, max_size=50)
    with database_errors("Newsletter konnten nicht geladen werden"):
        items, total = await NewsletterService(db).list_page(params, newsletter_status)
    return NewsletterListResponse(
        items=[NewsletterResponse.model_validate(n) for n in items],
        total=total,
        page=params.page,
        limit=params.page_size,
        total_pages=params.total_pages(total),
    )


@router.post("", response_model=NewsletterResponse, status_code=status.HTTP_201_CREATED)
async def create_newsletter(
    data: NewsletterCreate,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NewsletterResponse:
    with database_errors("Newsletter konnte nicht erstellt werden"):
        newsletter = await NewsletterService(db).create(data)
    return NewsletterResponse.model_validate(newsletter)


@router.get("/status-reports", response_model=list[GroupReportsPreview])
async def preview_status_reports(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> list[GroupReportsPreview]:
    with database_errors("Statusberichte konnten nicht geladen werden"):
        groups = await NewsletterService(db).preview_reports()
    return [
        GroupReportsPreview(
            group_id=entry.group.id,
            group_name=entry.group.name,
            group_slug=entry.group.slug,
            logo_url=entry.group.logo_url,
            reports=[ReportPreview.model_validate(r) for r in entry.reports],
        )
        for entry in groups
    ]


@router.post("/generate", response_model=NewsletterResponse)
async def generate_newsletter(
    data: GenerateRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NewsletterResponse:
    with database_errors("Newsletter konnte nicht generiert werden"):
        newsletter = await NewsletterService(db).generate(data.newsletter_id)
    return NewsletterResponse.model_validate(newsletter)


@router.put("/regenerate/{newsletter_id}", response_model=NewsletterResponse)
async def regenerate_newsletter(
    newsletter_id: UUID,
    data: RegenerateRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NewsletterResponse:
    with database_errors("Newsletter konnte nicht generiert werden"):
        newsletter = await NewsletterService(db).regenerate(
            newsletter_id, data.subject, data.introduction_text
        )
    return NewsletterResponse.model_validate(newsletter)


# =============================================================================
# Appointments
# =============================================================================


@router.get("/appointments", response_model=NewsletterAppointmentList)
async def newsletter_appointments(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NewsletterAppointmentList:
    params = PageParams.build(page, page_size)
    with database_errors("Termine konnten nicht geladen werden"):
        appointments, total = await AppointmentService(db).list_public(params)
    return NewsletterAppointmentList(
        items=[NewsletterAppointment.model_validate(a) for a in appointments],
        total_items=total,
        page=params.page,
        page_size=params.page_size,
        total_pages=params.total_pages(total),
    )


@router.patch("/appointments", response_model=NewsletterAppointment)
async def feature_appointment(
    data: FeaturedUpdate,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NewsletterAppointment:
    if data.id is None:
        raise AppError.validation("Termin-ID erforderlich", {"id": "Termin-ID erforderlich"})
    if data.featured is None:
        raise AppError.validation(
            "Featured-Status erforderlich", {"featured": "Featured-Status erforderlich"}
        )
    with database_errors("Termin konnte nicht aktualisiert werden"):
        appointment = await AppointmentService(db).set_featured(data.id, data.featured)
    return NewsletterAppointment.model_validate(appointment)


# =============================================================================
# Recipients and sending
# =============================================================================


@router.post("/validate-recipients", response_model=RecipientValidation)
async def validate_recipients(
    data: RecipientsRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> RecipientValidation:
    with database_errors("Empfänger konnten nicht geprüft werden"):
        config = await get_newsletter_config(db)
        result = await process_recipient_list(db, data.email_text, config.email_salt)
    return RecipientValidation(
        valid=result.valid,
        invalid=result.invalid,
        new=result.new,
        existing=result.existing,
        invalid_emails=result.invalid_emails,
    )


@router.post("/send", response_model=SendResponse)
async def send_newsletter(
    data: SendRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> SendResponse:
    with database_errors("Newsletter-Versand konnte nicht gestartet werden"):
        started = await NewsletterSender(db).start(data.newsletter_id, data.email_text)
    return SendResponse(
        newsletter_id=started.newsletter.id,
        valid_recipients=started.valid_recipients,
        email_chunks=started.chunks,
        total_chunks=len(started.chunks),
        chunk_size=started.chunk_size,
        subject=started.subject,
    )


@router.post("/send-chunk", response_model=ChunkResponse)
async def send_chunk(
    data: ChunkRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> ChunkResponse:
    with database_errors("Chunk konnte nicht versendet werden"):
        outcome = await NewsletterSender(db).send_chunk(
            data.newsletter_id, data.chunk_index, data.emails
        )
    return ChunkResponse(
        success=outcome.failed_count == 0,
        chunk_index=outcome.chunk_index,
        sent_count=outcome.sent_count,
        failed_count=outcome.failed_count,
        completed_chunks=outcome.state.completed_chunks,
        total_chunks=outcome.state.total_chunks,
        is_complete=outcome.state.completed_chunks >= outcome.state.total_chunks,
        status=outcome.status,
    )


@router.post("/retry-chunk", response_model=RetryResponse)
async def retry_chunk(
    data: RetryRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> RetryResponse:
    with database_errors("Wiederholung fehlgeschlagen"):
        outcome = await NewsletterSender(db).retry(data.newsletter_id)
    return RetryResponse(
        processed=outcome.processed,
        succeeded=outcome.succeeded,
        remaining=outcome.remaining,
        permanent_failures=outcome.permanent_failures,
        status=outcome.status,
        completed=outcome.completed,
    )


@router.get("/send-status/{newsletter_id}", response_model=SendStatusResponse)
async def send_status(
    newsletter_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> SendStatusResponse:
    with database_errors("Versandstatus konnte nicht geladen werden"):
        newsletter, state, retryable = await NewsletterSender(db).status(newsletter_id)
    return SendStatusResponse(
        id=newsletter.id,
        status=newsletter.status,
        recipient_count=newsletter.recipient_count,
        total_chunks=state.total_chunks,
        completed_chunks=state.completed_chunks,
        total_sent=state.total_sent,
        total_failed=state.total_failed,
        retryable=retryable,
        permanent_failures=len(state.permanent_failures),
        is_complete=newsletter.status
        in (NewsletterStatus.SENT, NewsletterStatus.PARTIALLY_FAILED, NewsletterStatus.FAILED),
        sent_at=newsletter.sent_at,
        started_at=state.started_at,
        completed_at=state.completed_at,
    )


@router.post("/send-test", response_model=SendTestResponse)
async def send_test(
    data: SendTestRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> SendTestResponse:
    with database_errors("Test-E-Mail konnte nicht gesendet werden"):
        delivery = await NewsletterSender(db).send_test(data.newsletter_id, data.html, data.subject)
    if delivery.failed and not delivery.sent:
        return SendTestResponse(
            success=False,
            recipients=0,
            message="Test-E-Mail konnte nicht gesendet werden",
        )
    return SendTestResponse(
        success=True,
        recipients=len(delivery.sent),
        message=f"Test-E-Mail an {len(delivery.sent)} Empfänger gesendet",
    )


@router.post("/recover", response_model=NewsletterResponse)
async def recover(
    data: RecoverRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NewsletterResponse:
    with database_errors("Wiederherstellung fehlgeschlagen"):
        newsletter = await NewsletterSender(db).recover(data.newsletter_id, data.action)
    return NewsletterResponse.model_validate(newsletter)


# =============================================================================
# Analytics
# =============================================================================


@router.get("/analytics/{newsletter_id}", response_model=AnalyticsResponse)
async def get_analytics(
    newsletter_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AnalyticsResponse:
    with database_errors("Analysedaten konnten nicht geladen werden"):
        summary = await tracking.get_analytics(db, newsletter_id)
    return AnalyticsResponse(
        newsletter_id=summary.newsletter.id,
        subject=summary.newsletter.subject,
        sent_at=summary.newsletter.sent_at,
        total_recipients=summary.analytics.total_recipients,
        total_opens=summary.analytics.total_opens,
        unique_opens=summary.analytics.unique_opens,
        open_rate=summary.open_rate,
        total_clicks=summary.total_clicks,
        unique_clicks=summary.unique_clicks,
        click_rate=summary.click_rate,
        links=[LinkPerformance.model_validate(link) for link in summary.links],
    )


# =============================================================================
# AI
# =============================================================================


@router.post("/ai/generate", response_model=AIGenerateResponse)
async def ai_generate(
    data: AIGenerateRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AIGenerateResponse:
    config = await get_newsletter_config(db)
    text, topics = await ai_service.generate(
        data.top_themes, data.previous_intro, data.board_protocol, config
    )
    return AIGenerateResponse(generated_text=text, extracted_topics=topics)


@router.post("/ai/refine", response_model=AIRefineResponse)
async def ai_refine(
    data: AIRefineRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AIRefineResponse:
    config = await get_newsletter_config(db)
    text = await ai_service.refine(
        data.generated_text, data.refinement_request, data.conversation_history, config
    )
    return AIRefineResponse(refined_text=text)


# =============================================================================
# Single newsletter
# =============================================================================


@router.get("/{newsletter_id}", response_model=NewsletterResponse)
async def get_newsletter(
    newsletter_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NewsletterResponse:
    with database_errors("Newsletter konnte nicht geladen werden"):
        newsletter = await NewsletterService(db).get(newsletter_id)
    return NewsletterResponse.model_validate(newsletter)


@router.patch("/{newsletter_id}", response_model=NewsletterResponse)
async def update_newsletter(
    newsletter_id: UUID,
    data: NewsletterUpdate,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NewsletterResponse:
    with database_errors("Newsletter konnte nicht gespeichert werden"):
        newsletter = await NewsletterService(db).update(newsletter_id, data)
    return NewsletterResponse.model_validate(newsletter)


@router.delete("/{newsletter_id}", response_model=SuccessResponse)
async def delete_newsletter(
    newsletter_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> SuccessResponse:
    with database_errors("Newsletter konnte nicht gelöscht werden"):
        await NewsletterService(db).delete(newsletter_id)
    return SuccessResponse(message="Newsletter erfolgreich gelöscht")


# =============================================================================
# Public archive and tracking
# =============================================================================


def _visitor(request: Request, token: str) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() or (request.client.host if request.client else None)
    return tracking.fingerprint(ip, request.headers.get("user-agent"), token)


@public_router.get("/track/open/{token}.gif")
async def track_open(
    token: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Response:
    try:
        await tracking.record_open(db, token, _visitor(request, token))
    except SQLAlchemyError:
        logger.exception("Failed to record newsletter open")
        await db.rollback()
    return Response(content=tracking.TRANSPARENT_GIF, media_type="image/gif", headers=NO_CACHE)


@public_router.get("/track/click/{token}")
async def track_click(
    token: str,
    request: Request,
    u: str = Query(...),
    t: str = Query("other"),
    link_id: str | None = Query(None, alias="id"),
    db: AsyncSession = Depends(get_db),
) -> RedirectResponse:
    target = tracking.decode_url(u)
    if not tracking.is_allowed_target(target):
        logger.warning("Blocked redirect to %s", target)
        raise AppError.validation("Ungültige URL")

    try:
        await tracking.record_click(db, token, target, t, link_id, _visitor(request, token))
    except SQLAlchemyError:
        logger.exception("Failed to record newsletter click")
        await db.rollback()
    return RedirectResponse(target, status_code=status.HTTP_302_FOUND, headers=NO_CACHE)


@public_router.get("/{newsletter_id}", response_model=PublicNewsletterResponse)
async def public_newsletter(
    newsletter_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> PublicNewsletterResponse:
    with database_errors("Newsletter konnte nicht geladen werden"):
        newsletter = await NewsletterService(db).get_public(newsletter_id)
    return PublicNewsletterResponse.model_validate(newsletter)
