"""
Email utilities for the portal.

SMTP delivery via aiosmtplib with HTML + plain text alternatives.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from html import unescape

import aiosmtplib

from kvportal.core.config import settings
from kvportal.core.logging import mask_email

logger = logging.getLogger(__name__)


@dataclass
class EmailResult:
    """Result of an email send operation."""

    success: bool
    recipient: str
    error: str = ""
    refused: dict[str, str] = field(default_factory=dict)
    message_id: str = ""

    @property
    def failed_recipients(self) -> list[str]:
        return list(self.refused)


def html_to_text(html: str) -> str:
    """Rough plain text rendering of an HTML body."""
    text = re.sub(r"(?is)<(script|style).*?>.*?</\1>", "", html)
    text = re.sub(r"(?i)<br\s*/?>|</p>|</h[1-6]>|</li>|</tr>", "\n", text)
    text = re.sub(r"<[^>]+>", "", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text)
    return unescape(text).strip()


def format_sender(email: str, name: str | None = None) -> str:
    return formataddr((name, email)) if name else email


class Mailer:
    """
    SMTP mailer.

    One connection per ``send`` call; the connection settings come from the
    environment and can be overridden per instance.
    """

    def __init__(
        self,
        hostname: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool | None = None,
        start_tls: bool | None = None,
        timeout: float | None = None,
    ) -> None:
        self.hostname = hostname or settings.smtp_host
        self.port = port or settings.smtp_port
        self.username = username if username is not None else settings.smtp_username
        self.password = password if password is not None else settings.smtp_password
        self.use_tls = settings.smtp_use_tls if use_tls is None else use_tls
        self.start_tls = settings.smtp_start_tls if start_tls is None else start_tls
        self.timeout = timeout or settings.smtp_timeout

    def _client(self) -> aiosmtplib.SMTP:
        return aiosmtplib.SMTP(
            hostname=self.hostname,
            port=self.port,
            username=self.username,
            password=self.password,
            use_tls=self.use_tls,
            start_tls=False if self.use_tls else self.start_tls,
            timeout=self.timeout,
        )

    async def verify_connection(
        self, max_retries: int = 3, max_backoff_delay_ms: int = 10000
    ) -> None:
        """
        Open and close an SMTP session, retrying with backoff.

        Delay before attempt n+1 is ``min(1000 * 2^(n-1), max_backoff_delay_ms)``.
        Raises the last SMTP error when every attempt fails.
        """
        for attempt in range(1, max_retries + 1):
            try:
                smtp = self._client()
                await smtp.connect()
                await smtp.noop()
                await smtp.quit()
                return
            except (aiosmtplib.SMTPException, OSError) as e:
                logger.warning("SMTP verification attempt %d/%d failed: %s", attempt, max_retries, e)
                if attempt == max_retries:
                    raise
                delay_ms = min(1000 * 2 ** (attempt - 1), max_backoff_delay_ms)
                await asyncio.sleep(delay_ms / 1000)

    def build_message(
        self,
        subject: str,
        html: str,
        to: list[str],
        bcc: list[str] | None = None,
        from_email: str | None = None,
        reply_to: str | None = None,
        text: str | None = None,
    ) -> EmailMessage:
        sender = from_email or settings.email_from
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = sender
        message["To"] = ", ".join(to)
        if bcc:
            message["Bcc"] = ", ".join(bcc)
        if reply_to:
            message["Reply-To"] = reply_to
        message["Message-ID"] = make_msgid()
        message.set_content(text or html_to_text(html))
        message.add_alternative(html, subtype="html")
        return message

    async def send(
        self,
        subject: str,
        html: str,
        to: list[str],
        bcc: list[str] | None = None,
        from_email: str | None = None,
        reply_to: str | None = None,
        text: str | None = None,
    ) -> EmailResult:
        """
        Send one message; recipients refused by the server are reported in
        ``EmailResult.refused`` while the rest are delivered.
        """
        message = self.build_message(subject, html, to, bcc, from_email, reply_to, text)
        recipient = ", ".join(to)
        smtp = self._client()
        try:
            async with smtp:
                refused, _ = await smtp.send_message(message)
        except aiosmtplib.SMTPRecipientsRefused as e:
            refused_all = {r.recipient: str(r) for r in e.recipients}
            logger.error("All recipients refused for '%s'", subject)
            return EmailResult(False, recipient, "Alle Empfänger abgelehnt", refused_all)
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", mask_email(recipient), e)
            return EmailResult(False, recipient, str(e))

        refused_map = {address: str(response) for address, response in refused.items()}
        if refused_map:
            logger.warning("%d recipients refused for '%s'", len(refused_map), subject)
        logger.info("Email sent to %s: %s", mask_email(recipient), subject)
        return EmailResult(
            True, recipient, refused=refused_map, message_id=message["Message-ID"]
        )


mailer = Mailer()


async def send_email(
    to: str | list[str],
    subject: str,
    html: str,
    reply_to: str | None = None,
    from_email: str | None = None,
) -> EmailResult:
    """Send an email using the configured SMTP settings."""
    recipients = [to] if isinstance(to, str) else list(to)
    if not recipients:
        return EmailResult(False, "", "Keine Empfänger")
    return await mailer.send(subject, html, recipients, reply_to=reply_to, from_email=from_email)
