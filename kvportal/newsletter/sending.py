"""
Newsletter Sending

Sending is driven by the client: ``start`` validates the recipients and
splits them into chunks, the client posts each chunk to ``send_chunk`` and
then calls ``retry`` until no retryable recipients remain. Each chunk and
retry batch first verifies the SMTP connection. The server keeps
no state between calls except the newsletter's ``sending_state``.

Every state write is checked against the newsletter's version column. On a
concurrent write the row is reloaded and the change re-applied; if that
keeps failing the request ends with 409.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

import aiosmtplib
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from kvportal.core.database import utcnow
from kvportal.core.errors import AppError, ErrorType
from kvportal.email import notifications
from kvportal.email.mailer import Mailer, format_sender
from kvportal.newsletter.content import format_subject
from kvportal.newsletter.models import NewsletterAnalytics, NewsletterItem, NewsletterStatus
from kvportal.newsletter.recipients import (
    clean_email,
    parse_email_list,
    process_recipient_list,
    validate_email,
)
from kvportal.newsletter.schemas import ChunkResult, FailedRecipient, SendingState
from kvportal.newsletter.services import NEWSLETTER_NOT_FOUND
from kvportal.newsletter.settings_service import NewsletterConfig, get_newsletter_config
from kvportal.newsletter.tracking import create_analytics, inject_tracking

logger = logging.getLogger(__name__)

STATE_WRITE_ATTEMPTS = 3
CONCURRENT_UPDATE = "Newsletter wurde zwischenzeitlich geändert"
SMTP_CONNECTION_FAILED = "SMTP-Verbindung fehlgeschlagen"


def newsletter_error(message: str, status_code: int = 400) -> AppError:
    return AppError(message, ErrorType.NEWSLETTER, status_code)


def load_state(newsletter: NewsletterItem) -> SendingState:
    return SendingState.model_validate(newsletter.sending_state or {})


def split_chunks(emails: list[str], size: int) -> list[list[str]]:
    size = max(1, size)
    return [emails[i : i + size] for i in range(0, len(emails), size)]


@dataclass
class Delivery:
    sent: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


async def deliver(
    emails: list[str], subject: str, html: str, config: NewsletterConfig
) -> Delivery:
    """
    Send one message to ``emails``.

    Several recipients go out as BCC with the sender as visible recipient.
    Recipients refused by the server fail individually; an SMTP error fails
    the whole batch.
    """
    mailer = Mailer(timeout=config.email_timeout_ms / 1000)
    sender = format_sender(config.from_email, config.from_name)
    if len(emails) > 1:
        result = await mailer.send(
            subject, html, [config.from_email], bcc=emails, from_email=sender,
            reply_to=config.reply_to_email,
        )
    else:
        result = await mailer.send(
            subject, html, emails, from_email=sender, reply_to=config.reply_to_email
        )

    refused = {address.lower(): error for address, error in result.refused.items()}
    delivery = Delivery()
    for email in emails:
        if email in refused:
            delivery.failed[email] = refused[email]
        elif not result.success:
            delivery.failed[email] = result.error or "Versand fehlgeschlagen"
        else:
            delivery.sent.append(email)
    return delivery


async def verify_smtp(config: NewsletterConfig) -> None:
    """Check the SMTP connection before a batch goes out; failures end the request with 400."""
    mailer = Mailer(timeout=config.connection_timeout_ms / 1000)
    try:
        await mailer.verify_connection(config.max_retries, config.max_backoff_delay_ms)
    except (aiosmtplib.SMTPException, OSError) as e:
        logger.error("SMTP verification failed: %s", e)
        raise AppError(
            SMTP_CONNECTION_FAILED, ErrorType.NEWSLETTER, 400, {"error": str(e)}
        ) from e


@dataclass
class SendStart:
    newsletter: NewsletterItem
    valid_recipients: int
    chunks: list[list[str]]
    chunk_size: int
    subject: str


@dataclass
class ChunkOutcome:
    chunk_index: int
    sent_count: int
    failed_count: int
    state: SendingState
    status: NewsletterStatus


@dataclass
class RetryOutcome:
    processed: int
    succeeded: int
    remaining: int
    permanent_failures: int
    status: NewsletterStatus

    @property
    def completed(self) -> bool:
        return self.status != NewsletterStatus.RETRYING


class NewsletterSender:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load(self, newsletter_id: uuid.UUID) -> NewsletterItem:
        newsletter = await self.db.scalar(
            select(NewsletterItem)
            .where(NewsletterItem.id == newsletter_id)
            .execution_options(populate_existing=True)
        )
        if newsletter is None:
            raise AppError.not_found(NEWSLETTER_NOT_FOUND)
        return newsletter

    async def _apply(
        self,
        newsletter_id: uuid.UUID,
        change: Callable[[NewsletterItem, SendingState], SendingState | None],
    ) -> tuple[NewsletterItem, SendingState]:
        """
        Apply ``change`` to a freshly loaded newsletter and its state.

        ``change`` may return None to clear the state.
        """
        for attempt in range(1, STATE_WRITE_ATTEMPTS + 1):
            newsletter = await self._load(newsletter_id)
            state = change(newsletter, load_state(newsletter))
            newsletter.sending_state = state.model_dump(mode="json") if state else None
            try:
                await self.db.flush()
                return newsletter, state or SendingState()
            except StaleDataError:
                logger.warning(
                    "Concurrent update of newsletter %s (attempt %d/%d)",
                    newsletter_id,
                    attempt,
                    STATE_WRITE_ATTEMPTS,
                )
                await self.db.rollback()
        raise AppError.conflict(CONCURRENT_UPDATE)

    async def _tracked_html(self, newsletter: NewsletterItem) -> str:
        token = await self.db.scalar(
            select(NewsletterAnalytics.pixel_token).where(
                NewsletterAnalytics.newsletter_id == newsletter.id
            )
        )
        content = newsletter.content or ""
        return inject_tracking(content, token) if token else content

    # =========================================================================
    # Start
    # =========================================================================

    async def start(self, newsletter_id: uuid.UUID, email_text: str) -> SendStart:
        newsletter = await self._load(newsletter_id)
        if newsletter.status not in (NewsletterStatus.DRAFT, NewsletterStatus.FAILED):
            raise newsletter_error("Newsletter wurde bereits versendet oder wird gerade versendet")
        if not (newsletter.content or "").strip():
            raise newsletter_error("Newsletter hat keinen Inhalt")

        config = await get_newsletter_config(self.db)
        emails = parse_email_list(email_text)
        valid = [email for email in emails if validate_email(email)]
        if not valid:
            raise AppError.validation(
                "Keine gültigen E-Mail-Adressen gefunden",
                {"invalidEmails": [email for email in emails if email not in valid]},
            )
        chunks = split_chunks(valid, config.chunk_size)

        def begin(item: NewsletterItem, _: SendingState) -> SendingState:
            if item.status not in (NewsletterStatus.DRAFT, NewsletterStatus.FAILED):
                raise newsletter_error("Newsletter wird bereits versendet")
            item.status = NewsletterStatus.SENDING
            item.recipient_count = len(valid)
            item.sent_at = None
            return SendingState(
                total_recipients=len(valid),
                total_chunks=len(chunks),
                retry_chunk_sizes=config.retry_chunk_size_list,
                started_at=utcnow(),
            )

        newsletter, _ = await self._apply(newsletter_id, begin)
        await process_recipient_list(self.db, email_text, config.email_salt)
        await create_analytics(self.db, newsletter, len(valid))
        logger.info(
            "Newsletter %s sending started: %d recipients in %d chunks",
            newsletter_id,
            len(valid),
            len(chunks),
        )
        return SendStart(
            newsletter=newsletter,
            valid_recipients=len(valid),
            chunks=chunks,
            chunk_size=config.chunk_size,
            subject=format_subject(newsletter.subject),
        )

    # =========================================================================
    # Chunks
    # =========================================================================

    async def send_chunk(
        self, newsletter_id: uuid.UUID, chunk_index: int, emails: list[str]
    ) -> ChunkOutcome:
        newsletter = await self._load(newsletter_id)
        if newsletter.status != NewsletterStatus.SENDING:
            raise newsletter_error("Newsletter wird derzeit nicht versendet")
        state = load_state(newsletter)
        if chunk_index >= state.total_chunks:
            raise newsletter_error("Ungültiger Chunk-Index")

        key = str(chunk_index)
        if key in state.chunk_results:
            done = state.chunk_results[key]
            logger.info("Chunk %d of newsletter %s already sent", chunk_index, newsletter_id)
            return ChunkOutcome(chunk_index, done.sent_count, done.failed_count, state, newsletter.status)

        config = await get_newsletter_config(self.db)
        recipients = list(dict.fromkeys(e for e in (clean_email(e) for e in emails) if e))
        await verify_smtp(config)
        html = await self._tracked_html(newsletter)
        delivery = await deliver(recipients, format_subject(newsletter.subject), html, config)

        def record(item: NewsletterItem, current: SendingState) -> SendingState:
            if key in current.chunk_results:
                return current
            current.chunk_results[key] = ChunkResult(
                sent_count=len(delivery.sent),
                failed_count=len(delivery.failed),
                completed_at=utcnow(),
            )
            current.completed_chunks += 1
            current.total_sent += len(delivery.sent)
            current.total_failed += len(delivery.failed)
            for email, error in delivery.failed.items():
                current.failed_recipients[email] = FailedRecipient(attempts=1, last_error=error)

            if current.completed_chunks >= current.total_chunks:
                if current.failed_recipients:
                    item.status = NewsletterStatus.RETRYING
                else:
                    item.status = NewsletterStatus.SENT
                    item.sent_at = current.completed_at = utcnow()
            return current

        newsletter, state = await self._apply(newsletter_id, record)
        logger.info(
            "Newsletter %s chunk %d: %d sent, %d failed",
            newsletter_id,
            chunk_index,
            len(delivery.sent),
            len(delivery.failed),
        )
        return ChunkOutcome(
            chunk_index, len(delivery.sent), len(delivery.failed), state, newsletter.status
        )

    # =========================================================================
    # Retries
    # =========================================================================

    async def retry(self, newsletter_id: uuid.UUID) -> RetryOutcome:
        newsletter = await self._load(newsletter_id)
        if newsletter.status != NewsletterStatus.RETRYING:
            raise newsletter_error("Newsletter befindet sich nicht im Wiederholungsmodus")

        config = await get_newsletter_config(self.db)
        max_retries = config.max_retries
        state = load_state(newsletter)
        retryable = state.retryable(max_retries)

        batch: list[str] = []
        delivery = Delivery()
        if retryable:
            fewest = min(f.attempts for f in retryable.values())
            sizes = state.retry_chunk_sizes or config.retry_chunk_size_list
            size = sizes[min(fewest - 1, len(sizes) - 1)]
            batch = [email for email, f in retryable.items() if f.attempts == fewest][:size]
            await verify_smtp(config)
            html = await self._tracked_html(newsletter)
            delivery = await deliver(batch, format_subject(newsletter.subject), html, config)

        def record(item: NewsletterItem, current: SendingState) -> SendingState:
            nonlocal notify
            if batch:
                current.current_retry_stage = max(
                    current.current_retry_stage, min(f.attempts for f in retryable.values())
                )
            for email in delivery.sent:
                if current.failed_recipients.pop(email, None) is not None:
                    current.total_sent += 1
                    current.total_failed -= 1
            for email, error in delivery.failed.items():
                failure = current.failed_recipients.get(email)
                if failure is None or failure.permanent:
                    continue
                failure.attempts += 1
                failure.last_error = error
            for failure in current.failed_recipients.values():
                if failure.attempts >= max_retries:
                    failure.permanent = True

            notify = False
            if not current.retryable(max_retries) and item.status == NewsletterStatus.RETRYING:
                if not current.permanent_failures:
                    item.status = NewsletterStatus.SENT
                elif current.total_sent == 0:
                    item.status = NewsletterStatus.FAILED
                else:
                    item.status = NewsletterStatus.PARTIALLY_FAILED
                item.sent_at = current.completed_at = utcnow()
                # one notification per newsletter
                if current.permanent_failures and not current.admin_notified:
                    current.admin_notified = notify = True
            return current

        notify = False
        newsletter, state = await self._apply(newsletter_id, record)
        status = newsletter.status
        if notify:
            await notifications.notify_newsletter_completed(
                format_subject(newsletter.subject), state, max_retries
            )

        outcome = RetryOutcome(
            processed=len(batch),
            succeeded=len(delivery.sent),
            remaining=len(state.retryable(max_retries)),
            permanent_failures=len(state.permanent_failures),
            status=status,
        )
        logger.info(
            "Newsletter %s retry: %d/%d delivered, %d remaining, %d permanent",
            newsletter_id,
            outcome.succeeded,
            outcome.processed,
            outcome.remaining,
            outcome.permanent_failures,
        )
        return outcome

    # =========================================================================
    # Status and recovery
    # =========================================================================

    async def status(self, newsletter_id: uuid.UUID) -> tuple[NewsletterItem, SendingState, int]:
        newsletter = await self._load(newsletter_id)
        config = await get_newsletter_config(self.db)
        state = load_state(newsletter)
        return newsletter, state, len(state.retryable(config.max_retries))

    async def recover(self, newsletter_id: uuid.UUID, action: str) -> NewsletterItem:
        allowed = {
            "reset_retry": (NewsletterStatus.RETRYING,),
            "mark_complete": (
                NewsletterStatus.RETRYING,
                NewsletterStatus.PARTIALLY_FAILED,
                NewsletterStatus.SENDING,
            ),
            "reset_to_draft": tuple(s for s in NewsletterStatus if s != NewsletterStatus.SENT),
        }
        if action not in allowed:
            raise AppError.validation("Unbekannte Aktion")

        def apply(item: NewsletterItem, current: SendingState) -> SendingState | None:
            if item.status not in allowed[action]:
                raise newsletter_error(
                    f"Aktion für Status {item.status} nicht möglich"
                )
            now = utcnow()
            if action == "reset_retry":
                for failure in current.failed_recipients.values():
                    failure.permanent = True
                current.completed_at = now
                item.status = NewsletterStatus.PARTIALLY_FAILED
            elif action == "mark_complete":
                current.completed_at = now
                item.status = NewsletterStatus.SENT
                item.sent_at = item.sent_at or now
            else:
                item.status = NewsletterStatus.DRAFT
                item.sent_at = None
                item.recipient_count = None
                return None
            return current

        newsletter, _ = await self._apply(newsletter_id, apply)
        logger.info("Newsletter %s recovered with %s -> %s", newsletter_id, action, newsletter.status)
        return newsletter

    # =========================================================================
    # Test mails
    # =========================================================================

    async def send_test(
        self,
        newsletter_id: uuid.UUID | None = None,
        html: str | None = None,
        subject: str | None = None,
    ) -> Delivery:
        config = await get_newsletter_config(self.db)
        recipients = config.test_recipient_list
        if not recipients:
            raise newsletter_error("Keine Test-Empfänger konfiguriert")

        if newsletter_id is not None:
            newsletter = await self._load(newsletter_id)
            if not newsletter.content:
                raise newsletter_error("Newsletter hat keinen Inhalt")
            html = newsletter.content
            subject = subject or newsletter.subject
        if not html:
            raise AppError.validation(details={"html": "Inhalt erforderlich"})

        title = format_subject(subject or config.subject_template)
        delivery = Delivery()
        for recipient in recipients:
            result = await deliver([recipient.lower()], f"[TEST] {title}", html, config)
            delivery.sent.extend(result.sent)
            delivery.failed.update(result.failed)
        logger.info("Test newsletter sent to %d/%d recipients", len(delivery.sent), len(recipients))
        return delivery
