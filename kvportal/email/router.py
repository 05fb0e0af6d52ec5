"""
Email API Router

Admin helpers for checking SMTP delivery and previewing templates.
"""

import logging

import aiosmtplib
from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.auth.dependencies import require_admin
from kvportal.auth.models import User
from kvportal.core.config import settings
from kvportal.core.database import get_db, utcnow
from kvportal.core.errors import AppError, ErrorType, database_errors
from kvportal.core.logging import mask_email
from kvportal.email.mailer import Mailer
from kvportal.email.previews import render_preview
from kvportal.email.schemas import TestEmailRequest, TestEmailResponse
from kvportal.newsletter.settings_service import get_newsletter_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["email"])

TEST_EMAIL_FAILED = "Test-E-Mail konnte nicht gesendet werden"


@router.post("/test-email", response_model=TestEmailResponse)
async def send_test_email(
    data: TestEmailRequest,
    _: User = Depends(require_admin),
) -> TestEmailResponse:
    """Verify the SMTP connection and send a short message to ``testEmail``."""
    mailer = Mailer()
    try:
        await mailer.verify_connection(max_retries=1)
    except (aiosmtplib.SMTPException, OSError) as e:
        logger.error("SMTP verification for test email failed: %s", e)
        raise AppError(
            TEST_EMAIL_FAILED, ErrorType.EXTERNAL_SERVICE, 500, {"error": str(e)}
        ) from e

    sent_at = utcnow().strftime("%d.%m.%Y %H:%M:%S UTC")
    result = await mailer.send(
        f"Test Email from {settings.app_name}",
        f"<p>Diese Test-E-Mail wurde am {sent_at} versendet.</p>"
        f"<p>SMTP-Server: {mailer.hostname}:{mailer.port}</p>",
        [str(data.test_email)],
    )
    if not result.success:
        raise AppError(
            TEST_EMAIL_FAILED, ErrorType.EXTERNAL_SERVICE, 500, {"error": result.error}
        )
    logger.info("Test email sent to %s", mask_email(str(data.test_email)))
    return TestEmailResponse(
        message=f"Test-E-Mail an {data.test_email} gesendet",
        message_id=result.message_id or None,
    )


@router.get("/email-preview/{template}", response_class=HTMLResponse)
async def email_preview(
    template: str,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> HTMLResponse:
    with database_errors("Einstellungen konnten nicht geladen werden"):
        config = await get_newsletter_config(db)
    html = render_preview(template, config)
    if html is None:
        raise AppError.not_found(f"Unbekannte Vorlage: {template}")
    return HTMLResponse(html)
