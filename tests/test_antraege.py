"""
Tests for Antrag submission, editing and decisions.
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.antraege.models import Antrag, AntragStatus
from kvportal.antraege.schemas import Purposes
from kvportal.email.mailer import EmailResult

ANTRAG = {
    "firstName": "Clara",
    "lastName": "Zetkin",
    "email": "clara@example.org",
    "title": "Zuschuss Sommerfest",
    "summary": "Wir planen ein Sommerfest im Stadtteil.",
    "purposes": {"zuschuss": {"enabled": True, "amount": 250}},
}


async def add_antrag(db: AsyncSession, **fields) -> Antrag:
    antrag = Antrag(
        first_name="Clara",
        last_name="Zetkin",
        email="clara@example.org",
        title="Raum für Lesekreis",
        summary="Wir brauchen einen Raum.",
        purposes={"raumbuchung": {"enabled": True}},
        **fields,
    )
    db.add(antrag)
    await db.commit()
    return antrag


class TestPurposes:
    """Tests for purpose validation."""

    def test_requires_one_purpose(self) -> None:
        with pytest.raises(ValueError, match="mindestens einen Zweck"):
            Purposes.model_validate({"zuschuss": {"enabled": False}})

    def test_zuschuss_amount(self) -> None:
        with pytest.raises(ValueError, match="mindestens 1 €"):
            Purposes.model_validate({"zuschuss": {"enabled": True, "amount": 0}})

    def test_raumbuchung_fields(self) -> None:
        with pytest.raises(ValueError, match="Raumbuchung"):
            Purposes.model_validate({"raumbuchung": {"enabled": True, "location": "Büro"}})

    def test_enabled_labels(self) -> None:
        purposes = Purposes.model_validate(
            {
                "zuschuss": {"enabled": True, "amount": 10},
                "weiteres": {"enabled": True, "details": "Plakate"},
                "personelleUnterstuetzung": {"enabled": False},
            }
        )
        assert purposes.enabled_labels() == ["Zuschuss (Finanzielle Unterstützung)", "Weiteres"]


@pytest.mark.integration
class TestSubmit:
    """Tests for the public submission."""

    @pytest.mark.asyncio
    async def test_json_submission_notifies_recipients(
        self, client: AsyncClient, smtp: AsyncMock
    ) -> None:
        response = await client.post("/api/antraege/submit", json=ANTRAG)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "NEU"
        assert body["purposes"]["zuschuss"]["amount"] == 250
        _, _, to = smtp.await_args.args
        assert to == [
            "admin@die-linke-frankfurt.de",
            "kreisvorstand@die-linke-frankfurt.de",
        ]
        assert smtp.await_args.kwargs["reply_to"] == "clara@example.org"

    @pytest.mark.asyncio
    async def test_multipart_with_files(
        self, client: AsyncClient, blob: dict[str, AsyncMock]
    ) -> None:
        form = {key: value for key, value in ANTRAG.items() if key != "purposes"}
        form["purposes"] = json.dumps(ANTRAG["purposes"])
        form["fileCount"] = "1"
        response = await client.post(
            "/api/antraege/submit",
            data=form,
            files={"file-0": ("kosten.pdf", b"%PDF", "application/pdf")},
        )
        assert response.status_code == 201
        assert len(response.json()["fileUrls"]) == 1

    @pytest.mark.asyncio
    async def test_invalid_purposes(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/antraege/submit", json={**ANTRAG, "purposes": {"zuschuss": {"enabled": False}}}
        )
        assert response.status_code == 400
        assert "purposes" in response.json()["details"]

    @pytest.mark.asyncio
    async def test_invalid_form_uploads_nothing(
        self, client: AsyncClient, blob: dict[str, AsyncMock]
    ) -> None:
        form = {key: value for key, value in ANTRAG.items() if key != "purposes"}
        form["purposes"] = json.dumps(ANTRAG["purposes"])
        form["title"] = "x" * 300
        response = await client.post(
            "/api/antraege/submit", data=form, files={"file-0": ("a.pdf", b"%PDF", "application/pdf")}
        )
        # validation happens before any upload
        assert response.status_code == 400
        blob["put"].assert_not_awaited()


@pytest.mark.integration
class TestAdmin:
    """Tests for admin management and decisions."""

    @pytest.mark.asyncio
    async def test_list_views(self, client: AsyncClient, db: AsyncSession, admin_headers) -> None:
        await add_antrag(db)
        await add_antrag(db, status=AntragStatus.AKZEPTIERT)

        pending = (
            await client.get("/api/admin/antraege", params={"view": "pending"}, headers=admin_headers)
        ).json()
        assert pending["totalItems"] == 1
        assert pending["items"][0]["status"] == "NEU"

        everything = (await client.get("/api/admin/antraege", headers=admin_headers)).json()
        assert everything["totalItems"] == 2

    @pytest.mark.asyncio
    async def test_accept_with_comment(
        self, client: AsyncClient, db: AsyncSession, admin, admin_headers, smtp: AsyncMock
    ) -> None:
        antrag = await add_antrag(db)
        response = await client.post(
            f"/api/admin/antraege/{antrag.id}/accept",
            json={"decisionComment": "  Viel Erfolg!  "},
            headers=admin_headers,
        )

        body = response.json()
        assert body["emailSent"] is True
        assert body["message"] == "Antrag erfolgreich angenommen"
        assert body["antrag"]["status"] == "AKZEPTIERT"
        assert body["antrag"]["decisionComment"] == "Viel Erfolg!"
        assert body["antrag"]["decidedBy"] == "Ada Admin"
        assert smtp.await_args.args[2] == ["clara@example.org"]

        again = await client.post(f"/api/admin/antraege/{antrag.id}/reject", headers=admin_headers)
        assert again.status_code == 400
        assert again.json()["error"] == "Antrag wurde bereits akzeptiert"

    @pytest.mark.asyncio
    async def test_reject_mail_failure_is_reported(
        self, client: AsyncClient, db: AsyncSession, admin_headers, smtp: AsyncMock
    ) -> None:
        smtp.return_value = EmailResult(False, "clara@example.org", "timeout")
        antrag = await add_antrag(db)
        response = await client.post(f"/api/admin/antraege/{antrag.id}/reject", headers=admin_headers)

        body = response.json()
        assert response.status_code == 200
        assert body["emailSent"] is False
        assert body["message"].endswith("E-Mail konnte jedoch nicht gesendet werden")

    @pytest.mark.asyncio
    async def test_update_only_new(self, client: AsyncClient, db: AsyncSession, admin_headers) -> None:
        decided = await add_antrag(db, status=AntragStatus.ABGELEHNT)
        response = await client.put(
            f"/api/admin/antraege/{decided.id}", json={"title": "Neuer Titel"}, headers=admin_headers
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_update_files(
        self, client: AsyncClient, db: AsyncSession, admin_headers, blob: dict[str, AsyncMock]
    ) -> None:
        antrag = await add_antrag(
            db, file_urls=["https://blob.example.org/a.pdf", "https://blob.example.org/b.pdf"]
        )
        response = await client.put(
            f"/api/admin/antraege/{antrag.id}",
            data={
                "title": "Neuer Titel",
                "filesToDelete": json.dumps(["https://blob.example.org/a.pdf"]),
            },
            files={"file-0": ("neu.pdf", b"%PDF neu", "application/pdf")},
            headers=admin_headers,
        )

        body = response.json()
        assert body["title"] == "Neuer Titel"
        assert body["fileUrls"][0] == "https://blob.example.org/b.pdf"
        assert body["fileUrls"][1].endswith("neu.pdf")
        blob["delete"].assert_awaited_once_with(["https://blob.example.org/a.pdf"])

    @pytest.mark.asyncio
    async def test_delete_aborts_when_files_remain(
        self, client: AsyncClient, db: AsyncSession, admin_headers, blob: dict[str, AsyncMock]
    ) -> None:
        request = httpx.Request("POST", "https://blob.example.org/delete")
        blob["delete"].side_effect = httpx.HTTPStatusError(
            "down", request=request, response=httpx.Response(500, request=request)
        )
        antrag = await add_antrag(db, file_urls=["https://blob.example.org/a.pdf"])

        response = await client.delete(f"/api/admin/antraege/{antrag.id}", headers=admin_headers)

        assert response.status_code == 500
        assert response.json()["type"] == "FILE_UPLOAD"
        assert (await client.get(f"/api/admin/antraege/{antrag.id}", headers=admin_headers)).status_code == 200

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient, db: AsyncSession, admin_headers) -> None:
        antrag = await add_antrag(db, file_urls=["https://blob.example.org/a.pdf"])
        response = await client.delete(f"/api/admin/antraege/{antrag.id}", headers=admin_headers)
        assert response.json()["deletedFiles"] == 1


@pytest.mark.integration
class TestConfiguration:
    """Tests for the recipient configuration."""

    @pytest.mark.asyncio
    async def test_default_and_update(self, client: AsyncClient, admin_headers) -> None:
        url = "/api/admin/antraege/configuration"
        default = (await client.get(url, headers=admin_headers)).json()
        assert default["recipientEmails"].startswith("admin@die-linke-frankfurt.de")

        response = await client.put(
            url, json={"recipientEmails": "vorstand@example.org, kasse@example.org"}, headers=admin_headers
        )
        assert response.json()["recipientEmails"] == "vorstand@example.org, kasse@example.org"

        invalid = await client.put(url, json={"recipientEmails": "kaputt"}, headers=admin_headers)
        assert invalid.status_code == 400
