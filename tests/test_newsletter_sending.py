"""
Tests for chunked newsletter sending, retries and recovery.
"""

import uuid
from unittest.mock import AsyncMock, patch

import aiosmtplib
import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from kvportal.core.errors import AppError
from kvportal.email.mailer import EmailResult, Mailer
from kvportal.newsletter.models import (
    HashedRecipient,
    NewsletterAnalytics,
    NewsletterItem,
    NewsletterSettings,
    NewsletterStatus,
)
from kvportal.newsletter.sending import NewsletterSender, load_state, split_chunks

CONTENT = '<html><body><p>Hallo</p><a href="https://portal.example.org/gruppen/ag">AG</a></body></html>'


@pytest_asyncio.fixture
async def newsletter(db: AsyncSession) -> NewsletterItem:
    item = NewsletterItem(subject="Newsletter {date}", introduction_text="Intro", content=CONTENT)
    db.add(item)
    await db.commit()
    return item


async def configure(db: AsyncSession, **fields) -> None:
    settings_row = NewsletterSettings(email_salt="salt", **fields)
    db.add(settings_row)
    await db.commit()


class TestSplitChunks:
    """Tests for chunk splitting."""

    def test_split_keeps_order(self) -> None:
        emails = [f"user{i}@example.org" for i in range(5)]
        assert split_chunks(emails, 2) == [emails[0:2], emails[2:4], emails[4:5]]

    def test_split_size_at_least_one(self) -> None:
        assert split_chunks(["a@example.org"], 0) == [["a@example.org"]]


class TestStart:
    """Tests for starting a send."""

    @pytest.mark.asyncio
    async def test_start_creates_chunks_and_analytics(
        self, db: AsyncSession, newsletter: NewsletterItem
    ) -> None:
        await configure(db, chunk_size=2)
        started = await NewsletterSender(db).start(
            newsletter.id, "a@example.org\nB@Example.org\nkaputt\nc@example.org\na@example.org"
        )
        await db.commit()

        assert started.valid_recipients == 3
        assert started.chunks == [["a@example.org", "b@example.org"], ["c@example.org"]]
        assert started.newsletter.status == NewsletterStatus.SENDING
        assert started.newsletter.recipient_count == 3

        state = load_state(started.newsletter)
        assert state.total_recipients == 3
        assert state.total_chunks == 2
        assert state.started_at is not None

        analytics = await db.scalar(
            select(NewsletterAnalytics).where(NewsletterAnalytics.newsletter_id == newsletter.id)
        )
        assert len(analytics.pixel_token) == 32
        assert analytics.total_recipients == 3
        assert await db.scalar(select(func.count(HashedRecipient.id))) == 3

    @pytest.mark.asyncio
    async def test_start_requires_valid_recipients(
        self, db: AsyncSession, newsletter: NewsletterItem
    ) -> None:
        with pytest.raises(AppError) as exc_info:
            await NewsletterSender(db).start(newsletter.id, "kaputt\n<x@example.org>")
        assert exc_info.value.status_code == 400
        assert exc_info.value.details == {"invalidEmails": ["kaputt", "<x@example.org>"]}

    @pytest.mark.asyncio
    async def test_start_requires_content(self, db: AsyncSession) -> None:
        item = NewsletterItem(subject="Leer", introduction_text="")
        db.add(item)
        await db.commit()
        with pytest.raises(AppError) as exc_info:
            await NewsletterSender(db).start(item.id, "a@example.org")
        assert exc_info.value.message == "Newsletter hat keinen Inhalt"

    @pytest.mark.asyncio
    async def test_start_rejects_sent_newsletter(
        self, db: AsyncSession, newsletter: NewsletterItem
    ) -> None:
        newsletter.status = NewsletterStatus.SENT
        await db.commit()
        with pytest.raises(AppError) as exc_info:
            await NewsletterSender(db).start(newsletter.id, "a@example.org")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_start_unknown_newsletter(self, db: AsyncSession) -> None:
        with pytest.raises(AppError) as exc_info:
            await NewsletterSender(db).start(uuid.uuid4(), "a@example.org")
        assert exc_info.value.status_code == 404


class TestSendChunk:
    """Tests for sending a single chunk."""

    @pytest.mark.asyncio
    async def test_all_chunks_delivered_marks_sent(
        self, db: AsyncSession, newsletter: NewsletterItem, smtp: AsyncMock
    ) -> None:
        await configure(db, chunk_size=2)
        sender = NewsletterSender(db)
        started = await sender.start(newsletter.id, "a@example.org\nb@example.org\nc@example.org")

        first = await sender.send_chunk(newsletter.id, 0, started.chunks[0])
        assert first.status == NewsletterStatus.SENDING
        second = await sender.send_chunk(newsletter.id, 1, started.chunks[1])
        await db.commit()

        assert second.status == NewsletterStatus.SENT
        assert second.state.total_sent == 3
        assert second.state.completed_chunks == 2
        assert second.state.completed_at is not None
        assert smtp.await_count == 2

        # several recipients go out as one BCC message addressed to the sender
        subject, html, to = smtp.await_args_list[0].args
        assert to == ["newsletter@linke-frankfurt.de"]
        assert smtp.await_args_list[0].kwargs["bcc"] == ["a@example.org", "b@example.org"]
        assert subject.startswith("Newsletter ")
        assert "/api/newsletter/track/open/" in html
        assert "/api/newsletter/track/click/" in html
        # single recipient is addressed directly
        assert smtp.await_args_list[1].args[2] == ["c@example.org"]

        stored = await db.get(NewsletterItem, newsletter.id)
        assert stored.sent_at is not None
        assert "track" not in stored.content

    @pytest.mark.asyncio
    async def test_duplicate_chunk_is_not_resent(
        self, db: AsyncSession, newsletter: NewsletterItem, smtp: AsyncMock
    ) -> None:
        await configure(db, chunk_size=1)
        sender = NewsletterSender(db)
        await sender.start(newsletter.id, "a@example.org\nb@example.org")

        await sender.send_chunk(newsletter.id, 0, ["a@example.org"])
        again = await sender.send_chunk(newsletter.id, 0, ["a@example.org"])

        assert smtp.await_count == 1
        assert again.sent_count == 1
        assert again.state.completed_chunks == 1
        assert again.state.total_sent == 1

    @pytest.mark.asyncio
    async def test_failed_chunk_moves_to_retrying(
        self, db: AsyncSession, newsletter: NewsletterItem, smtp: AsyncMock
    ) -> None:
        await configure(db)
        smtp.return_value = EmailResult(
            True, "newsletter@linke-frankfurt.de", refused={"B@example.org": "550 mailbox unavailable"}
        )
        sender = NewsletterSender(db)
        started = await sender.start(newsletter.id, "a@example.org\nb@example.org")

        outcome = await sender.send_chunk(newsletter.id, 0, started.chunks[0])

        assert outcome.status == NewsletterStatus.RETRYING
        assert outcome.sent_count == 1
        assert outcome.failed_count == 1
        failure = outcome.state.failed_recipients["b@example.org"]
        assert failure.attempts == 1
        assert failure.last_error == "550 mailbox unavailable"
        assert not failure.permanent

    @pytest.mark.asyncio
    async def test_chunk_requires_sending_status(
        self, db: AsyncSession, newsletter: NewsletterItem
    ) -> None:
        with pytest.raises(AppError) as exc_info:
            await NewsletterSender(db).send_chunk(newsletter.id, 0, ["a@example.org"])
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_chunk_index_out_of_range(
        self, db: AsyncSession, newsletter: NewsletterItem
    ) -> None:
        await configure(db)
        sender = NewsletterSender(db)
        await sender.start(newsletter.id, "a@example.org")
        with pytest.raises(AppError) as exc_info:
            await sender.send_chunk(newsletter.id, 5, ["a@example.org"])
        assert exc_info.value.message == "Ungültiger Chunk-Index"

    @pytest.mark.asyncio
    async def test_chunk_verifies_smtp_connection_first(
        self, db: AsyncSession, newsletter: NewsletterItem, smtp_verify: AsyncMock
    ) -> None:
        await configure(db, max_retries=4, max_backoff_delay_ms=2500, connection_timeout_ms=15000)
        sender = NewsletterSender(db)
        started = await sender.start(newsletter.id, "a@example.org")

        with patch("kvportal.newsletter.sending.Mailer", wraps=Mailer) as mailer_class:
            await sender.send_chunk(newsletter.id, 0, started.chunks[0])

        smtp_verify.assert_awaited_once_with(4, 2500)
        assert mailer_class.call_args_list[0].kwargs == {"timeout": 15.0}

    @pytest.mark.asyncio
    async def test_unreachable_smtp_fails_chunk_without_recording(
        self,
        db: AsyncSession,
        newsletter: NewsletterItem,
        smtp: AsyncMock,
        smtp_verify: AsyncMock,
    ) -> None:
        await configure(db)
        sender = NewsletterSender(db)
        started = await sender.start(newsletter.id, "a@example.org")
        smtp_verify.side_effect = aiosmtplib.SMTPConnectError("connection refused")

        with pytest.raises(AppError) as exc_info:
            await sender.send_chunk(newsletter.id, 0, started.chunks[0])

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "SMTP-Verbindung fehlgeschlagen"
        smtp.assert_not_awaited()
        stored = await db.get(NewsletterItem, newsletter.id)
        assert stored.status == NewsletterStatus.SENDING
        assert load_state(stored).completed_chunks == 0

        # the same chunk can be sent once the server is reachable again
        smtp_verify.side_effect = None
        outcome = await sender.send_chunk(newsletter.id, 0, started.chunks[0])
        assert outcome.status == NewsletterStatus.SENT


class TestRetry:
    """Tests for retrying failed recipients."""

    async def _fail_everything(
        self, db: AsyncSession, newsletter: NewsletterItem, smtp: AsyncMock, emails: str
    ) -> NewsletterSender:
        smtp.return_value = EmailResult(False, "x", "Connection timed out")
        sender = NewsletterSender(db)
        started = await sender.start(newsletter.id, emails)
        for index, chunk in enumerate(started.chunks):
            await sender.send_chunk(newsletter.id, index, chunk)
        return sender

    @pytest.mark.asyncio
    async def test_successful_retry_marks_sent(
        self, db: AsyncSession, newsletter: NewsletterItem, smtp: AsyncMock
    ) -> None:
        await configure(db)
        sender = await self._fail_everything(db, newsletter, smtp, "a@example.org\nb@example.org")
        smtp.return_value = EmailResult(True, "x")

        outcome = await sender.retry(newsletter.id)

        assert outcome.processed == 2
        assert outcome.succeeded == 2
        assert outcome.remaining == 0
        assert outcome.status == NewsletterStatus.SENT
        assert outcome.completed
        state = load_state(await db.get(NewsletterItem, newsletter.id))
        assert state.total_sent == 2
        assert state.total_failed == 0
        assert state.failed_recipients == {}

    @pytest.mark.asyncio
    async def test_retry_uses_configured_chunk_sizes(
        self, db: AsyncSession, newsletter: NewsletterItem, smtp: AsyncMock
    ) -> None:
        await configure(db, retry_chunk_sizes="2,1")
        emails = "\n".join(f"user{i}@example.org" for i in range(3))
        sender = await self._fail_everything(db, newsletter, smtp, emails)

        first = await sender.retry(newsletter.id)
        assert first.processed == 2
        assert first.remaining == 3

        # the recipient with the fewest attempts goes next
        second = await sender.retry(newsletter.id)
        assert second.processed == 1
        assert smtp.await_args.args[2] == ["user2@example.org"]

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_and_notify_once(
        self, db: AsyncSession, newsletter: NewsletterItem, smtp: AsyncMock
    ) -> None:
        await configure(db, max_retries=2)
        sender = await self._fail_everything(db, newsletter, smtp, "a@example.org")

        with patch(
            "kvportal.newsletter.sending.notifications.notify_newsletter_completed",
            new=AsyncMock(),
        ) as notify:
            outcome = await sender.retry(newsletter.id)
            assert outcome.status == NewsletterStatus.FAILED
            assert outcome.permanent_failures == 1
            assert outcome.completed

            with pytest.raises(AppError):
                await sender.retry(newsletter.id)

        notify.assert_awaited_once()
        state = load_state(await db.get(NewsletterItem, newsletter.id))
        assert state.admin_notified
        assert state.failed_recipients["a@example.org"].permanent

    @pytest.mark.asyncio
    async def test_partial_failure(
        self, db: AsyncSession, newsletter: NewsletterItem, smtp: AsyncMock
    ) -> None:
        await configure(db, max_retries=2)
        smtp.return_value = EmailResult(True, "x", refused={"b@example.org": "550"})
        sender = NewsletterSender(db)
        started = await sender.start(newsletter.id, "a@example.org\nb@example.org")
        await sender.send_chunk(newsletter.id, 0, started.chunks[0])

        smtp.return_value = EmailResult(False, "x", "550")
        outcome = await sender.retry(newsletter.id)

        assert outcome.status == NewsletterStatus.PARTIALLY_FAILED
        assert outcome.permanent_failures == 1
        # delivery report goes to the admin address
        assert smtp.await_args.args[2] == ["admin@example.org"]

    @pytest.mark.asyncio
    async def test_retry_requires_retrying_status(
        self, db: AsyncSession, newsletter: NewsletterItem
    ) -> None:
        with pytest.raises(AppError) as exc_info:
            await NewsletterSender(db).retry(newsletter.id)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_retry_aborts_when_smtp_unreachable(
        self,
        db: AsyncSession,
        newsletter: NewsletterItem,
        smtp: AsyncMock,
        smtp_verify: AsyncMock,
    ) -> None:
        await configure(db)
        sender = await self._fail_everything(db, newsletter, smtp, "a@example.org")
        smtp.reset_mock()
        smtp_verify.side_effect = OSError("network unreachable")

        with pytest.raises(AppError) as exc_info:
            await sender.retry(newsletter.id)

        assert exc_info.value.message == "SMTP-Verbindung fehlgeschlagen"
        smtp.assert_not_awaited()
        state = load_state(await db.get(NewsletterItem, newsletter.id))
        assert state.failed_recipients["a@example.org"].attempts == 1


class TestConcurrency:
    """Tests for versioned state writes."""

    @pytest.mark.asyncio
    async def test_stale_write_is_detected(self, session_maker, newsletter: NewsletterItem) -> None:
        async with session_maker() as first, session_maker() as second:
            stale = await first.get(NewsletterItem, newsletter.id)
            fresh = await second.get(NewsletterItem, newsletter.id)
            fresh.sending_state = {"totalSent": 1}
            await second.commit()

            stale.sending_state = {"totalSent": 2}
            with pytest.raises(StaleDataError):
                await first.flush()

    @pytest.mark.asyncio
    async def test_apply_retries_after_conflict(
        self, db: AsyncSession, newsletter: NewsletterItem
    ) -> None:
        sender = NewsletterSender(db)
        flush = db.flush
        calls = 0

        async def flaky_flush(*args, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise StaleDataError("concurrent update")
            return await flush(*args, **kwargs)

        def bump(item, state):
            state.total_sent += 1
            return state

        with patch.object(db, "flush", side_effect=flaky_flush):
            _, state = await sender._apply(newsletter.id, bump)

        assert calls == 2
        assert state.total_sent == 1

    @pytest.mark.asyncio
    async def test_apply_gives_up_with_conflict(
        self, db: AsyncSession, newsletter: NewsletterItem
    ) -> None:
        sender = NewsletterSender(db)
        with patch.object(db, "flush", AsyncMock(side_effect=StaleDataError("conflict"))):
            with pytest.raises(AppError) as exc_info:
                await sender._apply(newsletter.id, lambda item, state: state)
        assert exc_info.value.status_code == 409


class TestRecover:
    """Tests for manual recovery actions."""

    @pytest.mark.asyncio
    async def test_reset_retry(self, db: AsyncSession, newsletter: NewsletterItem) -> None:
        newsletter.status = NewsletterStatus.RETRYING
        newsletter.sending_state = {
            "total_sent": 1,
            "failed_recipients": {"a@example.org": {"attempts": 1}},
        }
        await db.commit()

        item = await NewsletterSender(db).recover(newsletter.id, "reset_retry")

        assert item.status == NewsletterStatus.PARTIALLY_FAILED
        state = load_state(item)
        assert state.failed_recipients["a@example.org"].permanent
        assert state.completed_at is not None

    @pytest.mark.asyncio
    async def test_mark_complete(self, db: AsyncSession, newsletter: NewsletterItem) -> None:
        newsletter.status = NewsletterStatus.SENDING
        await db.commit()
        item = await NewsletterSender(db).recover(newsletter.id, "mark_complete")
        assert item.status == NewsletterStatus.SENT
        assert item.sent_at is not None

    @pytest.mark.asyncio
    async def test_reset_to_draft_clears_state(
        self, db: AsyncSession, newsletter: NewsletterItem
    ) -> None:
        newsletter.status = NewsletterStatus.FAILED
        newsletter.recipient_count = 4
        newsletter.sending_state = {"total_sent": 0}
        await db.commit()

        item = await NewsletterSender(db).recover(newsletter.id, "reset_to_draft")

        assert item.status == NewsletterStatus.DRAFT
        assert item.sending_state is None
        assert item.recipient_count is None

    @pytest.mark.asyncio
    async def test_sent_newsletter_cannot_be_reset(
        self, db: AsyncSession, newsletter: NewsletterItem
    ) -> None:
        newsletter.status = NewsletterStatus.SENT
        await db.commit()
        with pytest.raises(AppError) as exc_info:
            await NewsletterSender(db).recover(newsletter.id, "reset_to_draft")
        assert exc_info.value.message == "Aktion für Status sent nicht möglich"


class TestSendTest:
    """Tests for test mails."""

    @pytest.mark.asyncio
    async def test_sends_to_each_test_recipient(
        self, db: AsyncSession, newsletter: NewsletterItem, smtp: AsyncMock
    ) -> None:
        await configure(db, test_email_recipients="eins@example.org, zwei@example.org")

        delivery = await NewsletterSender(db).send_test(newsletter.id)

        assert delivery.sent == ["eins@example.org", "zwei@example.org"]
        assert smtp.await_count == 2
        subject = smtp.await_args.args[0]
        assert subject.startswith("[TEST] Newsletter ")

    @pytest.mark.asyncio
    async def test_requires_test_recipients(
        self, db: AsyncSession, newsletter: NewsletterItem
    ) -> None:
        await configure(db, test_email_recipients="")
        with pytest.raises(AppError) as exc_info:
            await NewsletterSender(db).send_test(newsletter.id)
        assert exc_info.value.message == "Keine Test-Empfänger konfiguriert"
