"""
Newsletter tracking and analytics.

Opens are counted through a 1x1 pixel, clicks through a redirect endpoint.
Unique counts rely on an anonymous fingerprint: SHA-256 of ip, user agent
and the newsletter's pixel token.
"""

import base64
import binascii
import hashlib
import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta
from html import unescape
from urllib.parse import quote, urlencode, urlsplit

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from kvportal.core.config import settings
from kvportal.core.database import utcnow
from kvportal.core.errors import AppError
from kvportal.newsletter.models import (
    NewsletterAnalytics,
    NewsletterFingerprint,
    NewsletterItem,
    NewsletterLinkClick,
    NewsletterLinkClickFingerprint,
)

logger = logging.getLogger(__name__)

TRANSPARENT_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")
ANALYTICS_RETENTION = timedelta(days=365)

HREF_PATTERN = re.compile(r"""href=(["'])(https?://[^"']+)\1""", re.IGNORECASE)
REPORT_ANCHOR = re.compile(r"#report-([\w-]+)")


# =============================================================================
# Link encoding and classification
# =============================================================================


def encode_url(url: str) -> str:
    return base64.urlsafe_b64encode(url.encode()).decode().rstrip("=")


def decode_url(encoded: str) -> str:
    padding = "=" * (-len(encoded) % 4)
    try:
        return base64.urlsafe_b64decode(encoded + padding).decode()
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise AppError.validation("Ungültige URL") from e


def classify_link(url: str) -> tuple[str, str | None]:
    """Return ``(link_type, link_id)`` for a newsletter link."""
    if match := REPORT_ANCHOR.search(url):
        return "statusreport", match.group(1)
    path = urlsplit(url).path
    for prefix, link_type in (("/gruppen/", "group"), ("/termine/", "appointment")):
        if prefix in path:
            slug = path.split(prefix, 1)[1].strip("/").split("/")[0]
            return link_type, slug or None
    return "other", None


def is_allowed_target(url: str) -> bool:
    """Only http(s) targets on configured hosts (or their subdomains) may be redirected to."""
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return False
    host = parts.hostname.lower()
    allowed = [h.lower() for h in settings.tracking_allowed_hosts]
    base_host = urlsplit(settings.base_url).hostname
    if base_host:
        allowed.append(base_host.lower())
    return any(host == h or host.endswith(f".{h}") for h in allowed)


def fingerprint(ip: str | None, user_agent: str | None, token: str) -> str:
    return hashlib.sha256(f"{ip or ''}{user_agent or ''}{token}".encode()).hexdigest()


# =============================================================================
# HTML injection
# =============================================================================


def tracking_base() -> str:
    return f"{settings.base_url.rstrip('/')}/api/newsletter/track"


def inject_tracking(html: str, token: str) -> str:
    """Rewrite http(s) links through the click tracker and append the open pixel."""
    base = tracking_base()

    def rewrite(match: re.Match[str]) -> str:
        quote_char, url = match.group(1), unescape(match.group(2))
        if url.startswith(base):
            return match.group(0)
        link_type, link_id = classify_link(url)
        params = {"u": encode_url(url), "t": link_type}
        if link_id:
            params["id"] = link_id
        tracked = f"{base}/click/{quote(token)}?{urlencode(params)}"
        return f"href={quote_char}{tracked.replace('&', '&amp;')}{quote_char}"

    html = HREF_PATTERN.sub(rewrite, html)
    pixel = (
        f'<img src="{base}/open/{token}.gif" width="1" height="1" alt="" '
        'style="display:block;width:1px;height:1px;border:0;" />'
    )
    if re.search(r"</body>", html, re.IGNORECASE):
        return re.sub(r"</body>", pixel + "</body>", html, count=1, flags=re.IGNORECASE)
    return html + pixel


# =============================================================================
# Recording
# =============================================================================


async def create_analytics(
    db: AsyncSession, newsletter: NewsletterItem, total_recipients: int
) -> NewsletterAnalytics:
    """Create the analytics row with a fresh pixel token unless one exists."""
    analytics = await db.scalar(
        select(NewsletterAnalytics).where(NewsletterAnalytics.newsletter_id == newsletter.id)
    )
    if analytics is None:
        analytics = NewsletterAnalytics(
            newsletter_id=newsletter.id,
            pixel_token=secrets.token_hex(16),
            total_recipients=total_recipients,
        )
        db.add(analytics)
    else:
        analytics.total_recipients = total_recipients
    await db.flush()
    return analytics


async def _by_token(db: AsyncSession, token: str) -> NewsletterAnalytics | None:
    return await db.scalar(select(NewsletterAnalytics).where(NewsletterAnalytics.pixel_token == token))


async def record_open(db: AsyncSession, token: str, visitor: str) -> bool:
    analytics = await _by_token(db, token)
    if analytics is None:
        logger.debug("Open for unknown token %s", token)
        return False

    now = utcnow()
    analytics.total_opens += 1
    existing = await db.scalar(
        select(NewsletterFingerprint).where(
            NewsletterFingerprint.analytics_id == analytics.id,
            NewsletterFingerprint.fingerprint == visitor,
        )
    )
    if existing is None:
        db.add(
            NewsletterFingerprint(
                analytics_id=analytics.id, fingerprint=visitor, first_seen=now, last_seen=now
            )
        )
        analytics.unique_opens += 1
    else:
        existing.open_count += 1
        existing.last_seen = now
    await db.flush()
    return True


async def record_click(
    db: AsyncSession,
    token: str,
    url: str,
    link_type: str,
    link_id: str | None,
    visitor: str,
) -> bool:
    analytics = await _by_token(db, token)
    if analytics is None:
        logger.debug("Click for unknown token %s", token)
        return False

    now = utcnow()
    click = await db.scalar(
        select(NewsletterLinkClick).where(
            NewsletterLinkClick.analytics_id == analytics.id, NewsletterLinkClick.url == url
        )
    )
    if click is None:
        click = NewsletterLinkClick(
            analytics_id=analytics.id,
            url=url,
            link_type=link_type,
            link_id=link_id,
            click_count=0,
            unique_clicks=0,
            first_click=now,
            last_click=now,
        )
        db.add(click)
        await db.flush()
    click.click_count += 1
    click.last_click = now

    existing = await db.scalar(
        select(NewsletterLinkClickFingerprint).where(
            NewsletterLinkClickFingerprint.link_click_id == click.id,
            NewsletterLinkClickFingerprint.fingerprint == visitor,
        )
    )
    if existing is None:
        db.add(
            NewsletterLinkClickFingerprint(
                link_click_id=click.id, fingerprint=visitor, first_click=now, last_click=now
            )
        )
        click.unique_clicks += 1
    else:
        existing.click_count += 1
        existing.last_click = now
    await db.flush()
    return True


# =============================================================================
# Reporting
# =============================================================================


@dataclass
class AnalyticsSummary:
    newsletter: NewsletterItem
    analytics: NewsletterAnalytics
    links: list[NewsletterLinkClick]

    @property
    def open_rate(self) -> float:
        total = self.analytics.total_recipients
        return round(self.analytics.unique_opens / total * 100, 1) if total else 0.0

    @property
    def total_clicks(self) -> int:
        return sum(link.click_count for link in self.links)

    @property
    def unique_clicks(self) -> int:
        return sum(link.unique_clicks for link in self.links)

    @property
    def click_rate(self) -> float:
        total = self.analytics.total_recipients
        return round(self.unique_clicks / total * 100, 1) if total else 0.0


async def get_analytics(db: AsyncSession, newsletter_id: uuid.UUID) -> AnalyticsSummary:
    analytics = await db.scalar(
        select(NewsletterAnalytics)
        .where(NewsletterAnalytics.newsletter_id == newsletter_id)
        .options(
            selectinload(NewsletterAnalytics.newsletter),
            selectinload(NewsletterAnalytics.link_clicks),
        )
    )
    if analytics is None:
        raise AppError.not_found("Keine Analysedaten für diesen Newsletter gefunden")
    links = sorted(analytics.link_clicks, key=lambda link: link.click_count, reverse=True)
    return AnalyticsSummary(newsletter=analytics.newsletter, analytics=analytics, links=links)


async def cleanup_old_analytics(db: AsyncSession) -> int:
    """Delete analytics (and their clicks/fingerprints) older than one year."""
    cutoff = utcnow() - ANALYTICS_RETENTION
    old_ids = list(
        await db.scalars(select(NewsletterAnalytics.id).where(NewsletterAnalytics.created_at < cutoff))
    )
    if not old_ids:
        return 0

    click_ids = select(NewsletterLinkClick.id).where(NewsletterLinkClick.analytics_id.in_(old_ids))
    await db.execute(
        delete(NewsletterLinkClickFingerprint).where(
            NewsletterLinkClickFingerprint.link_click_id.in_(click_ids)
        )
    )
    await db.execute(delete(NewsletterLinkClick).where(NewsletterLinkClick.analytics_id.in_(old_ids)))
    await db.execute(delete(NewsletterFingerprint).where(NewsletterFingerprint.analytics_id.in_(old_ids)))
    await db.execute(delete(NewsletterAnalytics).where(NewsletterAnalytics.id.in_(old_ids)))
    await db.flush()
    logger.info("Deleted %d newsletter analytics older than %s", len(old_ids), cutoff.date())
    return len(old_ids)
