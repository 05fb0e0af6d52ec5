"""
Tests for status report submission and moderation.
"""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.groups.models import Group, GroupStatus
from kvportal.status_reports.models import StatusReport, StatusReportStatus

from conftest import make_group


def report_form(group: Group, **overrides) -> dict[str, str]:
    form = {
        "groupId": str(group.id),
        "title": "Infostand am Samstag",
        "content": "Wir haben 200 Flyer verteilt.",
        "reporterFirstName": "Rosa",
        "reporterLastName": "Lux",
    }
    form.update(overrides)
    return form


async def add_report(db: AsyncSession, group: Group, **fields) -> StatusReport:
    report = StatusReport(
        title=fields.pop("title", "Bericht"),
        content="Inhalt",
        reporter_first_name="Rosa",
        reporter_last_name="Lux",
        group_id=group.id,
        **fields,
    )
    db.add(report)
    await db.commit()
    return report


@pytest.mark.integration
class TestSubmit:
    """Tests for the public submission form."""

    @pytest.mark.asyncio
    async def test_submit_with_files(
        self, client: AsyncClient, db: AsyncSession, blob: dict[str, AsyncMock]
    ) -> None:
        group = await make_group(db)
        response = await client.post(
            "/api/status-reports/submit",
            data=report_form(group),
            files=[
                ("files", ("protokoll.pdf", b"%PDF-1.4", "application/pdf")),
                ("files", ("foto.jpg", b"\xff\xd8jpeg", "image/jpeg")),
            ],
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "NEW"
        assert len(body["fileUrls"]) == 2
        assert blob["put"].await_count == 2

    @pytest.mark.asyncio
    async def test_inactive_group(self, client: AsyncClient, db: AsyncSession) -> None:
        group = await make_group(db, status=GroupStatus.NEW)
        response = await client.post("/api/status-reports/submit", data=report_form(group))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_too_many_files(
        self, client: AsyncClient, db: AsyncSession, blob: dict[str, AsyncMock]
    ) -> None:
        group = await make_group(db)
        files = [("files", (f"f{i}.pdf", f"pdf {i}".encode(), "application/pdf")) for i in range(6)]
        response = await client.post(
            "/api/status-reports/submit", data=report_form(group), files=files
        )
        assert response.status_code == 400
        blob["put"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validation(self, client: AsyncClient, db: AsyncSession) -> None:
        group = await make_group(db)
        response = await client.post(
            "/api/status-reports/submit", data=report_form(group, title="ab", reporterLastName="L")
        )
        assert response.status_code == 400
        assert set(response.json()["details"]) == {"title", "reporterLastName"}


@pytest.mark.integration
class TestModeration:
    """Tests for the admin endpoints."""

    @pytest.mark.asyncio
    async def test_activate_sends_email(
        self, client: AsyncClient, db: AsyncSession, admin_headers, smtp: AsyncMock
    ) -> None:
        group = await make_group(db)
        report = await add_report(db, group)

        response = await client.patch(
            f"/api/admin/status-reports/{report.id}", json={"status": "ACTIVE"}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["group"]["slug"] == group.slug
        subject, _, to = smtp.await_args.args
        assert subject == "Statusbericht veröffentlicht: Bericht"
        assert to == ["rosa@example.org"]

    @pytest.mark.asyncio
    async def test_cannot_activate_for_new_group(
        self, client: AsyncClient, db: AsyncSession, admin_headers
    ) -> None:
        group = await make_group(db, status=GroupStatus.NEW)
        report = await add_report(db, group)
        response = await client.patch(
            f"/api/admin/status-reports/{report.id}", json={"status": "ACTIVE"}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Gruppe ist nicht aktiv"

    @pytest.mark.asyncio
    async def test_removed_files_are_deleted(
        self, client: AsyncClient, db: AsyncSession, admin_headers, blob: dict[str, AsyncMock]
    ) -> None:
        group = await make_group(db)
        report = await add_report(
            db, group, file_urls=["https://blob.example.org/a.pdf", "https://blob.example.org/b.pdf"]
        )
        response = await client.patch(
            f"/api/admin/status-reports/{report.id}",
            json={"fileUrls": ["https://blob.example.org/a.pdf"]},
            headers=admin_headers,
        )
        assert response.json()["fileUrls"] == ["https://blob.example.org/a.pdf"]
        blob["delete"].assert_awaited_once_with(["https://blob.example.org/b.pdf"])

    @pytest.mark.asyncio
    async def test_list_filters(self, client: AsyncClient, db: AsyncSession, admin_headers) -> None:
        group = await make_group(db)
        other = await make_group(db, "AG Andere")
        await add_report(db, group, title="Mietendemo", status=StatusReportStatus.ACTIVE)
        await add_report(db, group, title="Sommerfest")
        await add_report(db, other, title="Lesekreis")

        body = (
            await client.get(
                "/api/admin/status-reports",
                params={"groupId": str(group.id), "orderBy": "title", "orderDirection": "asc"},
                headers=admin_headers,
            )
        ).json()
        assert [r["title"] for r in body["reports"]] == ["Mietendemo", "Sommerfest"]

        body = (
            await client.get("/api/admin/status-reports", params={"status": "ACTIVE"}, headers=admin_headers)
        ).json()
        assert body["totalItems"] == 1

        body = (
            await client.get("/api/admin/status-reports", params={"search": "lese"}, headers=admin_headers)
        ).json()
        assert [r["title"] for r in body["reports"]] == ["Lesekreis"]

    @pytest.mark.asyncio
    async def test_delete(
        self, client: AsyncClient, db: AsyncSession, admin_headers, blob: dict[str, AsyncMock]
    ) -> None:
        group = await make_group(db)
        report = await add_report(db, group, file_urls=["https://blob.example.org/a.pdf"])

        response = await client.delete(f"/api/admin/status-reports/{report.id}", headers=admin_headers)

        assert response.status_code == 200
        assert (
            await client.get(f"/api/admin/status-reports/{report.id}", headers=admin_headers)
        ).status_code == 404
        blob["delete"].assert_awaited_once_with(["https://blob.example.org/a.pdf"])
