"""
Tests for group requests, public pages and admin management.
"""

import json
import re
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.groups.models import Group, GroupMember, GroupStatus
from kvportal.groups.services import generate_slug
from kvportal.status_reports.models import StatusReport, StatusReportStatus

from conftest import GROUP_DESCRIPTION, make_group, make_user

PERSONS = [{"firstName": " Clara ", "lastName": "Zetkin", "email": "Clara@Example.org"}]


def submit_form(**overrides) -> dict[str, str]:
    form = {
        "name": "AG Mieten",
        "description": GROUP_DESCRIPTION,
        "responsiblePersons": json.dumps(PERSONS),
        "recurringPatterns": json.dumps(["jeden 2. Dienstag"]),
        "meetingTime": "19:00",
        "meetingPostalCode": "60311",
    }
    form.update(overrides)
    return form


def test_generate_slug() -> None:
    slug = generate_slug("AG Ökologie & Verkehr!")
    assert re.fullmatch(r"ag-okologie-verkehr-\d{4}", slug)


@pytest.mark.integration
class TestSubmit:
    """Tests for public group requests."""

    @pytest.mark.asyncio
    async def test_submit_with_logo(
        self, client: AsyncClient, smtp: AsyncMock, blob: dict[str, AsyncMock]
    ) -> None:
        response = await client.post(
            "/api/groups/submit",
            data=submit_form(),
            files={
                "logo": ("logo.png", b"original", "image/png"),
                "croppedLogo": ("logo-cropped.png", b"cropped", "image/png"),
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "NEW"
        assert body["slug"].startswith("ag-mieten-")
        assert body["meetingTime"] == "19:00"
        assert body["recurringPatterns"] == ["jeden 2. Dienstag"]
        assert body["responsiblePersons"][0]["firstName"] == "Clara"
        assert body["responsiblePersons"][0]["email"] == "clara@example.org"
        assert body["logoUrl"].endswith("logo-cropped.png")
        assert body["logoMetadata"]["originalUrl"].endswith("logo.png")
        assert blob["put"].await_count == 2
        # admin is told about the request
        assert smtp.await_args.args[2] == ["admin@example.org"]

    @pytest.mark.asyncio
    async def test_submit_validation(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/groups/submit",
            data=submit_form(description="zu kurz", meetingTime="25:00", responsiblePersons="[]"),
        )
        assert response.status_code == 400
        details = response.json()["details"]
        assert {"description", "meetingTime", "responsiblePersons"} <= set(details)

    @pytest.mark.asyncio
    async def test_submit_rejects_logo_type(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/groups/submit",
            data=submit_form(),
            files={"logo": ("logo.pdf", b"%PDF", "application/pdf")},
        )
        assert response.status_code == 400
        assert response.json()["type"] == "FILE_UPLOAD"


@pytest.mark.integration
class TestPublicGroups:
    """Tests for the public group pages."""

    @pytest.mark.asyncio
    async def test_only_active_groups(self, client: AsyncClient, db: AsyncSession) -> None:
        await make_group(db, "AG Aktiv")
        await make_group(db, "AG Neu", status=GroupStatus.NEW)

        names = [g["name"] for g in (await client.get("/api/groups")).json()]
        assert names == ["AG Aktiv"]
        assert (await client.get("/api/groups/ag-neu")).status_code == 404

    @pytest.mark.asyncio
    async def test_group_page_shows_active_reports(self, client: AsyncClient, db: AsyncSession) -> None:
        group = await make_group(db, "AG Aktiv")
        for title, status in (("Sichtbar", StatusReportStatus.ACTIVE), ("Neu", StatusReportStatus.NEW)):
            db.add(
                StatusReport(
                    title=title, content="Bericht", reporter_first_name="Rosa",
                    reporter_last_name="Lux", status=status, group_id=group.id,
                )
            )
        await db.commit()

        body = (await client.get("/api/groups/ag-aktiv")).json()
        assert [r["title"] for r in body["statusReports"]] == ["Sichtbar"]
        assert "responsiblePersons" not in body


@pytest.mark.integration
class TestAdminGroups:
    """Tests for admin group management."""

    @pytest.mark.asyncio
    async def test_list_filters_and_counts(
        self, client: AsyncClient, db: AsyncSession, admin_headers
    ) -> None:
        active = await make_group(db, "AG Aktiv")
        await make_group(db, "AG Neu", status=GroupStatus.NEW)
        db.add(
            StatusReport(
                title="Bericht", content="x", reporter_first_name="Rosa",
                reporter_last_name="Lux", group_id=active.id,
            )
        )
        await db.commit()

        body = (await client.get("/api/admin/groups", params={"status": "ACTIVE"}, headers=admin_headers)).json()
        assert body["totalItems"] == 1
        assert body["items"][0]["statusReportCount"] == 1

        body = (await client.get("/api/admin/groups", params={"search": "neu"}, headers=admin_headers)).json()
        assert [g["name"] for g in body["items"]] == ["AG Neu"]

        response = await client.get("/api/admin/groups", params={"status": "WEG"}, headers=admin_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_activate_notifies_responsible_persons(
        self, client: AsyncClient, db: AsyncSession, admin_headers, smtp: AsyncMock
    ) -> None:
        group = await make_group(db, "AG Neu", status=GroupStatus.NEW)
        response = await client.patch(
            f"/api/admin/groups/{group.id}", json={"status": "ACTIVE"}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ACTIVE"
        subject, _, to = smtp.await_args.args
        assert to == ["rosa@example.org"]
        assert subject.startswith("Ihre Gruppe wurde freigeschaltet")

    @pytest.mark.asyncio
    async def test_rename_changes_slug(
        self, client: AsyncClient, db: AsyncSession, admin_headers
    ) -> None:
        group = await make_group(db, "AG Alt")
        response = await client.patch(
            f"/api/admin/groups/{group.id}", json={"name": "AG Neuer Name"}, headers=admin_headers
        )
        assert response.json()["slug"].startswith("ag-neuer-name-")

    @pytest.mark.asyncio
    async def test_multipart_update_replaces_logo(
        self, client: AsyncClient, db: AsyncSession, admin_headers, blob: dict[str, AsyncMock]
    ) -> None:
        group = await make_group(db, "AG Logo")
        group.logo_url = "https://blob.example.org/groups/old-cropped.png"
        group.logo_metadata = {"originalUrl": "https://blob.example.org/groups/old.png"}
        await db.commit()

        response = await client.patch(
            f"/api/admin/groups/{group.id}",
            data={"description": GROUP_DESCRIPTION, "responsiblePersons": json.dumps(PERSONS)},
            files={"logo": ("neu.png", b"neu", "image/png")},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["logoUrl"].endswith("neu.png")
        assert response.json()["responsiblePersons"][0]["lastName"] == "Zetkin"
        deleted = {call.args[0][0] for call in blob["delete"].await_args_list}
        assert deleted == {
            "https://blob.example.org/groups/old-cropped.png",
            "https://blob.example.org/groups/old.png",
        }

    @pytest.mark.asyncio
    async def test_identical_logo_upload_keeps_current_files(
        self, client: AsyncClient, db: AsyncSession, admin_headers, blob: dict[str, AsyncMock]
    ) -> None:
        group = await make_group(db, "AG Gleiches Logo")
        logo_files = {
            "logo": ("logo.png", b"original", "image/png"),
            "croppedLogo": ("logo-cropped.png", b"cropped", "image/png"),
        }
        form = {"description": GROUP_DESCRIPTION, "responsiblePersons": json.dumps(PERSONS)}

        first = await client.patch(
            f"/api/admin/groups/{group.id}", data=form, files=logo_files, headers=admin_headers
        )
        second = await client.patch(
            f"/api/admin/groups/{group.id}", data=form, files=logo_files, headers=admin_headers
        )

        assert second.status_code == 200
        body = second.json()
        assert body["logoUrl"] == first.json()["logoUrl"]
        assert body["logoMetadata"] == first.json()["logoMetadata"]
        assert blob["put"].await_count == 2
        deleted = {url for call in blob["delete"].await_args_list for url in call.args[0]}
        assert body["logoUrl"] not in deleted
        assert body["logoMetadata"]["originalUrl"] not in deleted

        page = await client.get(f"/api/admin/groups/{group.id}", headers=admin_headers)
        assert page.json()["logoUrl"] == body["logoUrl"]

    @pytest.mark.asyncio
    async def test_delete_removes_files(
        self, client: AsyncClient, db: AsyncSession, admin_headers, blob: dict[str, AsyncMock]
    ) -> None:
        group = await make_group(db, "AG Weg")
        db.add(
            StatusReport(
                title="Bericht", content="x", reporter_first_name="Rosa", reporter_last_name="Lux",
                group_id=group.id, file_urls=["https://blob.example.org/reports/a.pdf"],
            )
        )
        await db.commit()

        response = await client.delete(f"/api/admin/groups/{group.id}", headers=admin_headers)

        assert response.status_code == 200
        assert await db.scalar(select(Group).where(Group.id == group.id)) is None
        deleted = [call.args[0][0] for call in blob["delete"].await_args_list]
        assert deleted == ["https://blob.example.org/reports/a.pdf"]

    @pytest.mark.asyncio
    async def test_responsible_users(
        self, client: AsyncClient, db: AsyncSession, admin_headers
    ) -> None:
        group = await make_group(db)
        user = await make_user(db, "clara")
        url = f"/api/admin/groups/{group.id}/responsible"

        response = await client.post(url, json={"userId": str(user.id)}, headers=admin_headers)
        assert response.status_code == 200
        membership = await db.scalar(
            select(GroupMember).where(GroupMember.group_id == group.id, GroupMember.user_id == user.id)
        )
        assert membership is not None

        again = await client.post(url, json={"userId": str(user.id)}, headers=admin_headers)
        assert again.status_code == 400

        removed = await client.delete(url, params={"userId": str(user.id)}, headers=admin_headers)
        assert removed.status_code == 200
        missing = await client.delete(url, params={"userId": str(user.id)}, headers=admin_headers)
        assert missing.status_code == 404
