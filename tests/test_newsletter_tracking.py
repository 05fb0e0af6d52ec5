"""
Tests for newsletter open/click tracking.
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.core.errors import AppError
from kvportal.newsletter import tracking
from kvportal.newsletter.models import (
    NewsletterAnalytics,
    NewsletterItem,
    NewsletterLinkClick,
    NewsletterStatus,
)

TOKEN = "a" * 32


@pytest_asyncio.fixture
async def analytics(db: AsyncSession) -> NewsletterAnalytics:
    newsletter = NewsletterItem(
        subject="Newsletter", introduction_text="", content="<p>x</p>", status=NewsletterStatus.SENT
    )
    db.add(newsletter)
    await db.flush()
    row = await tracking.create_analytics(db, newsletter, 10)
    row.pixel_token = TOKEN
    await db.commit()
    return row


class TestLinks:
    """Tests for link encoding, classification and redirect targets."""

    def test_encode_decode(self) -> None:
        url = "https://portal.example.org/gruppen/ag?x=1&y=ä"
        encoded = tracking.encode_url(url)
        assert "=" not in encoded
        assert tracking.decode_url(encoded) == url

    def test_decode_garbage(self) -> None:
        with pytest.raises(AppError) as exc_info:
            tracking.decode_url("__4")
        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://portal.example.org/gruppen/ag-stadtteil", ("group", "ag-stadtteil")),
            ("https://portal.example.org/termine/42/", ("appointment", "42")),
            ("https://portal.example.org/gruppen/ag#report-abc-1", ("statusreport", "abc-1")),
            ("https://example.com/", ("other", None)),
        ],
    )
    def test_classify_link(self, url: str, expected: tuple[str, str | None]) -> None:
        assert tracking.classify_link(url) == expected

    @pytest.mark.parametrize(
        "url,allowed",
        [
            ("https://portal.example.org/x", True),
            ("https://www.linke-frankfurt.de/", True),
            ("http://linke-frankfurt.de", True),
            ("https://evil.example.com/", False),
            ("https://linke-frankfurt.de.evil.com/", False),
            ("javascript:alert(1)", False),
            ("ftp://portal.example.org/file", False),
        ],
    )
    def test_is_allowed_target(self, url: str, allowed: bool) -> None:
        assert tracking.is_allowed_target(url) is allowed

    def test_fingerprint_depends_on_token(self) -> None:
        one = tracking.fingerprint("1.2.3.4", "Firefox", "token-a")
        assert one == tracking.fingerprint("1.2.3.4", "Firefox", "token-a")
        assert one != tracking.fingerprint("1.2.3.4", "Firefox", "token-b")
        assert len(one) == 64


class TestInjectTracking:
    """Tests for rewriting newsletter HTML."""

    def test_links_and_pixel(self) -> None:
        html = (
            '<html><body><a href="https://portal.example.org/gruppen/ag?a=1&amp;b=2">AG</a>'
            "<a href='mailto:info@example.org'>Mail</a></body></html>"
        )
        result = tracking.inject_tracking(html, TOKEN)

        base = "https://portal.example.org/api/newsletter/track"
        encoded = tracking.encode_url("https://portal.example.org/gruppen/ag?a=1&b=2")
        assert f'href="{base}/click/{TOKEN}?u={encoded}&amp;t=group&amp;id=ag"' in result
        assert "mailto:info@example.org" in result
        assert result.index(f"{base}/open/{TOKEN}.gif") < result.index("</body>")

    def test_already_tracked_links_are_kept(self) -> None:
        html = f'<a href="https://portal.example.org/api/newsletter/track/click/{TOKEN}?u=x">x</a>'
        result = tracking.inject_tracking(html, TOKEN)
        assert result.count("/click/") == 1

    def test_pixel_appended_without_body(self) -> None:
        result = tracking.inject_tracking("<p>kein body</p>", TOKEN)
        assert result.endswith('border:0;" />')


class TestRecording:
    """Tests for counting opens and clicks."""

    @pytest.mark.asyncio
    async def test_unique_opens(self, db: AsyncSession, analytics: NewsletterAnalytics) -> None:
        assert await tracking.record_open(db, TOKEN, "visitor-1")
        assert await tracking.record_open(db, TOKEN, "visitor-1")
        assert await tracking.record_open(db, TOKEN, "visitor-2")

        assert analytics.total_opens == 3
        assert analytics.unique_opens == 2

    @pytest.mark.asyncio
    async def test_unknown_token(self, db: AsyncSession) -> None:
        assert not await tracking.record_open(db, "unknown", "visitor")
        assert not await tracking.record_click(db, "unknown", "https://x", "other", None, "v")

    @pytest.mark.asyncio
    async def test_clicks_per_url(self, db: AsyncSession, analytics: NewsletterAnalytics) -> None:
        url = "https://portal.example.org/gruppen/ag"
        await tracking.record_click(db, TOKEN, url, "group", "ag", "visitor-1")
        await tracking.record_click(db, TOKEN, url, "group", "ag", "visitor-1")
        await tracking.record_click(db, TOKEN, url, "group", "ag", "visitor-2")

        summary = await tracking.get_analytics(db, analytics.newsletter_id)
        assert len(summary.links) == 1
        link = summary.links[0]
        assert (link.click_count, link.unique_clicks) == (3, 2)
        assert link.link_type == "group"
        assert summary.click_rate == 20.0

    @pytest.mark.asyncio
    async def test_analytics_missing(self, db: AsyncSession) -> None:
        newsletter = NewsletterItem(subject="Ohne", introduction_text="")
        db.add(newsletter)
        await db.commit()
        with pytest.raises(AppError) as exc_info:
            await tracking.get_analytics(db, newsletter.id)
        assert exc_info.value.status_code == 404


@pytest.mark.integration
class TestTrackingEndpoints:
    """Tests for the public tracking endpoints."""

    @pytest.mark.asyncio
    async def test_open_pixel(
        self, client: AsyncClient, db: AsyncSession, analytics: NewsletterAnalytics
    ) -> None:
        response = await client.get(f"/api/newsletter/track/open/{TOKEN}.gif")

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/gif"
        assert response.content == tracking.TRANSPARENT_GIF
        assert "no-store" in response.headers["cache-control"]
        await db.refresh(analytics)
        assert analytics.total_opens == 1

    @pytest.mark.asyncio
    async def test_open_pixel_unknown_token(self, client: AsyncClient) -> None:
        response = await client.get("/api/newsletter/track/open/unbekannt.gif")
        assert response.status_code == 200
        assert response.content == tracking.TRANSPARENT_GIF

    @pytest.mark.asyncio
    async def test_click_redirects(
        self, client: AsyncClient, db: AsyncSession, analytics: NewsletterAnalytics
    ) -> None:
        target = "https://portal.example.org/gruppen/ag"
        response = await client.get(
            f"/api/newsletter/track/click/{TOKEN}",
            params={"u": tracking.encode_url(target), "t": "group", "id": "ag"},
            headers={"user-agent": "pytest", "x-forwarded-for": "10.0.0.1, 10.0.0.2"},
        )

        assert response.status_code == 302
        assert response.headers["location"] == target
        click = await db.scalar(
            select(NewsletterLinkClick).where(NewsletterLinkClick.analytics_id == analytics.id)
        )
        assert click.url == target
        assert click.link_id == "ag"
        assert click.click_count == 1

    @pytest.mark.asyncio
    async def test_click_rejects_foreign_host(
        self, client: AsyncClient, analytics: NewsletterAnalytics
    ) -> None:
        response = await client.get(
            f"/api/newsletter/track/click/{TOKEN}",
            params={"u": tracking.encode_url("https://evil.example.com/phish")},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Ungültige URL"
