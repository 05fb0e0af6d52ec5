"""
Tests for appointment submission, the public calendar and admin review.
"""

import json
from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.addresses.models import Address
from kvportal.appointments.models import Appointment, AppointmentStatus
from kvportal.appointments.schemas import END_BEFORE_START
from kvportal.appointments.services import COVER_REQUIRED, AppointmentService
from kvportal.core.database import utcnow

BASE = "/api/admin/appointments"
COVER = "https://blob.example.org/appointments/cover.png"
CROPPED = "https://blob.example.org/appointments/cover-crop.png"


def in_days(days: float) -> datetime:
    return utcnow() + timedelta(days=days)


def submission(**fields) -> dict:
    return {
        "title": "Lesekreis",
        "mainText": "Wir lesen gemeinsam das Kommunistische Manifest.",
        "startDateTime": in_days(3).isoformat(),
        **fields,
    }


async def add_appointment(
    db: AsyncSession, title: str = "Infostand", days: float = 3, **fields
) -> Appointment:
    appointment = Appointment(
        title=title,
        main_text="Am Samstag auf dem Wochenmarkt.",
        start_date_time=in_days(days),
        status=fields.pop("status", AppointmentStatus.ACCEPTED),
        **fields,
    )
    db.add(appointment)
    await db.commit()
    return appointment


def deleted_urls(blob) -> set[str]:
    return {url for call in blob["delete"].await_args_list for url in call.args[0]}


@pytest.mark.integration
class TestSubmit:
    """Tests for the public submission."""

    @pytest.mark.asyncio
    async def test_multipart_with_files_and_cover(self, client: AsyncClient, blob) -> None:
        response = await client.post(
            "/api/appointments/submit",
            data={
                "title": "Sommerfest",
                "mainText": "Mit Musik und Essen im Stadtteilzentrum.",
                "startDateTime": in_days(10).isoformat(),
                "featured": "true",
                "fileCount": "1",
                "street": "",
            },
            files=[
                ("file-0", ("flyer.pdf", b"%PDF flyer", "application/pdf")),
                ("coverImage", ("cover.png", b"original", "image/png")),
                ("croppedCoverImage", ("cover-crop.png", b"cropped", "image/png")),
            ],
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["featured"] is True
        assert body["street"] is None
        assert [url.rsplit("-", 1)[-1] for url in body["fileUrls"]] == ["flyer.pdf"]
        assert body["coverImageUrl"].endswith("cover-cover.png")
        assert body["croppedCoverImageUrl"].endswith("cover-cover-crop.png")
        assert blob["put"].await_count == 3

    @pytest.mark.asyncio
    async def test_featured_requires_cover(self, client: AsyncClient, blob) -> None:
        response = await client.post("/api/appointments/submit", json=submission(featured=True))

        assert response.status_code == 400
        assert response.json()["details"] == {"coverImage": COVER_REQUIRED}
        blob["put"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cover_is_ignored_when_not_featured(self, client: AsyncClient, blob) -> None:
        form = submission()
        response = await client.post(
            "/api/appointments/submit",
            data=form,
            files={"coverImage": ("cover.png", b"original", "image/png")},
        )

        assert response.status_code == 201
        assert response.json()["coverImageUrl"] is None
        blob["put"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_end_before_start(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/appointments/submit",
            json=submission(endDateTime=in_days(1).isoformat()),
        )

        assert response.status_code == 400
        assert response.json()["details"] == {"body": END_BEFORE_START}

    @pytest.mark.asyncio
    async def test_invalid_attachment_uploads_nothing(self, client: AsyncClient, blob) -> None:
        response = await client.post(
            "/api/appointments/submit",
            data=submission(),
            files={"file-0": ("tool.exe", b"MZ", "application/x-msdownload")},
        )

        assert response.status_code == 400
        blob["put"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_saved_address_fills_location(self, client: AsyncClient, db: AsyncSession) -> None:
        address = Address(
            name="Gewerkschaftshaus",
            street="Wilhelm-Leuschner-Straße 69",
            city="Frankfurt am Main",
            postal_code="60329",
            location_details="Großer Saal",
        )
        db.add(address)
        await db.commit()

        response = await client.post(
            "/api/appointments/submit",
            json=submission(addressId=str(address.id), locationDetails="Raum 3"),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["addressId"] == str(address.id)
        assert body["street"] == "Wilhelm-Leuschner-Straße 69"
        assert body["postalCode"] == "60329"
        assert body["locationDetails"] == "Raum 3"

    @pytest.mark.asyncio
    async def test_unknown_address(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/appointments/submit",
            json=submission(addressId="00000000-0000-0000-0000-000000000000"),
        )
        assert response.status_code == 404


@pytest.mark.integration
class TestPublicCalendar:
    """Tests for the public appointment list."""

    @pytest.mark.asyncio
    async def test_only_accepted_upcoming(self, client: AsyncClient, db: AsyncSession) -> None:
        later = await add_appointment(db, "Demo", days=5)
        soon = await add_appointment(db, "Infostand", days=1)
        await add_appointment(db, "Vorbei", days=-2)
        pending = await add_appointment(db, "Eingereicht", status=AppointmentStatus.PENDING)

        body = (await client.get("/api/appointments")).json()
        assert body["totalItems"] == 2
        assert [a["title"] for a in body["items"]] == ["Infostand", "Demo"]

        response = await client.get(f"/api/appointments/{soon.id}")
        assert response.status_code == 200
        assert "firstName" not in response.json()
        assert (await client.get(f"/api/appointments/{later.id}")).status_code == 200
        assert (await client.get(f"/api/appointments/{pending.id}")).status_code == 404


@pytest.mark.integration
class TestAdmin:
    """Tests for reviewing appointments."""

    @pytest.mark.asyncio
    async def test_requires_admin(self, client: AsyncClient, member_headers) -> None:
        assert (await client.get(BASE)).status_code == 401
        assert (await client.get(BASE, headers=member_headers)).status_code == 403

    @pytest.mark.asyncio
    async def test_views(self, client: AsyncClient, db: AsyncSession, admin_headers) -> None:
        await add_appointment(db, "Neu", status=AppointmentStatus.PENDING)
        await add_appointment(db, "Demo", days=5)
        await add_appointment(db, "Infostand", days=1)
        await add_appointment(db, "Vorbei", days=-2)
        await add_appointment(db, "Abgelehnt", days=4, status=AppointmentStatus.REJECTED)

        async def titles(**params) -> list[str]:
            body = (await client.get(BASE, params=params, headers=admin_headers)).json()
            return [a["title"] for a in body["items"]]

        assert await titles(view="pending") == ["Neu"]
        assert await titles(view="upcoming") == ["Infostand", "Demo"]
        assert set(await titles(view="archive")) == {"Vorbei", "Abgelehnt"}
        assert await titles(view="archive", status="pending") == ["Neu"]
        assert await titles(search="infostand") == ["Infostand"]
        assert len(await titles()) == 5

    @pytest.mark.asyncio
    async def test_accept_sets_processing_dates(
        self, client: AsyncClient, db: AsyncSession, admin_headers
    ) -> None:
        appointment = await add_appointment(db, status=AppointmentStatus.PENDING)

        response = await client.patch(
            f"{BASE}/{appointment.id}", json={"status": "accepted"}, headers=admin_headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "accepted"
        assert body["processed"] is True
        assert body["processingDate"] is not None
        assert body["statusChangeDate"] == body["processingDate"]

    @pytest.mark.asyncio
    async def test_update_keeps_required_fields(
        self, client: AsyncClient, db: AsyncSession, admin_headers
    ) -> None:
        appointment = await add_appointment(db)

        response = await client.patch(
            f"{BASE}/{appointment.id}",
            json={"title": None, "city": "Offenbach"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Infostand"
        assert response.json()["city"] == "Offenbach"

    @pytest.mark.asyncio
    async def test_update_end_before_start(
        self, client: AsyncClient, db: AsyncSession, admin_headers
    ) -> None:
        appointment = await add_appointment(db, days=3)

        response = await client.patch(
            f"{BASE}/{appointment.id}",
            json={"endDateTime": in_days(1).isoformat()},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["details"] == {"endDateTime": END_BEFORE_START}

    @pytest.mark.asyncio
    async def test_feature_requires_cover(
        self, client: AsyncClient, db: AsyncSession, admin_headers
    ) -> None:
        appointment = await add_appointment(db)

        response = await client.patch(
            f"{BASE}/{appointment.id}", json={"featured": True}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["details"] == {"coverImage": COVER_REQUIRED}

    @pytest.mark.asyncio
    async def test_unfeature_removes_cover(
        self, client: AsyncClient, db: AsyncSession, admin_headers, blob
    ) -> None:
        appointment = await add_appointment(
            db, featured=True, cover_image_url=COVER, cropped_cover_image_url=CROPPED
        )

        response = await client.patch(
            f"{BASE}/{appointment.id}", json={"featured": False}, headers=admin_headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["featured"] is False
        assert body["coverImageUrl"] is None
        assert body["croppedCoverImageUrl"] is None
        assert deleted_urls(blob) == {COVER, CROPPED}

    @pytest.mark.asyncio
    async def test_new_cover_replaces_old(
        self, client: AsyncClient, db: AsyncSession, admin_headers, blob
    ) -> None:
        appointment = await add_appointment(
            db, featured=True, cover_image_url=COVER, cropped_cover_image_url=CROPPED
        )

        response = await client.patch(
            f"{BASE}/{appointment.id}",
            data={"featured": "true"},
            files={
                "coverImage": ("neu.png", b"neu", "image/png"),
                "croppedCoverImage": ("neu-crop.png", b"neu-crop", "image/png"),
            },
            headers=admin_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["coverImageUrl"].endswith("cover-neu.png")
        assert body["croppedCoverImageUrl"].endswith("cover-neu-crop.png")
        assert deleted_urls(blob) == {COVER, CROPPED}

    @pytest.mark.asyncio
    async def test_multipart_update_files(
        self, client: AsyncClient, db: AsyncSession, admin_headers, blob
    ) -> None:
        keep = "https://blob.example.org/appointments/keep.pdf"
        drop = "https://blob.example.org/appointments/drop.pdf"
        appointment = await add_appointment(db, file_urls=[keep, drop])

        response = await client.patch(
            f"{BASE}/{appointment.id}",
            data={"existingFileUrls": json.dumps([keep])},
            files={"file-0": ("neu.pdf", b"%PDF neu", "application/pdf")},
            headers=admin_headers,
        )

        assert response.status_code == 200
        urls = response.json()["fileUrls"]
        assert urls[0] == keep
        assert urls[1].endswith("neu.pdf")
        assert deleted_urls(blob) == {drop}

    @pytest.mark.asyncio
    async def test_delete_removes_files(
        self, client: AsyncClient, db: AsyncSession, admin_headers, blob
    ) -> None:
        flyer = "https://blob.example.org/appointments/flyer.pdf"
        appointment = await add_appointment(
            db, featured=True, file_urls=[flyer], cover_image_url=COVER
        )

        response = await client.delete(f"{BASE}/{appointment.id}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Termin erfolgreich gelöscht"}
        assert deleted_urls(blob) == {flyer, COVER}
        response = await client.get(f"{BASE}/{appointment.id}", headers=admin_headers)
        assert response.status_code == 404


@pytest.mark.integration
class TestNewsletterSelection:
    """Tests for choosing featured appointments for the newsletter."""

    @pytest.mark.asyncio
    async def test_list_upcoming(self, client: AsyncClient, db: AsyncSession, admin_headers) -> None:
        await add_appointment(db, "Demo", days=5, featured=True)
        await add_appointment(db, "Vorbei", days=-1)

        response = await client.get("/api/admin/newsletter/appointments", headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["totalItems"] == 1
        assert body["items"][0]["title"] == "Demo"
        assert body["items"][0]["featured"] is True

    @pytest.mark.asyncio
    async def test_toggle_featured(
        self, client: AsyncClient, db: AsyncSession, admin_headers
    ) -> None:
        appointment = await add_appointment(db)
        url = "/api/admin/newsletter/appointments"

        response = await client.patch(url, json={"featured": True}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Termin-ID erforderlich"

        response = await client.patch(url, json={"id": str(appointment.id)}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Featured-Status erforderlich"

        response = await client.patch(
            url,
            json={"id": "00000000-0000-0000-0000-000000000000", "featured": True},
            headers=admin_headers,
        )
        assert response.status_code == 404

        response = await client.patch(
            url, json={"id": str(appointment.id), "featured": True}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["featured"] is True


class TestNewsletterAppointments:
    """Tests for the appointment selection used in generated newsletters."""

    @pytest.mark.asyncio
    async def test_split_from_start_of_today(self, db: AsyncSession) -> None:
        now = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)
        db.add_all(
            [
                Appointment(
                    title="Morgens", main_text="Heute früh.",
                    start_date_time=datetime(2026, 10, 17, 8, 0, tzinfo=UTC),
                    status=AppointmentStatus.ACCEPTED,
                ),
                Appointment(
                    title="Gestern", main_text="Schon vorbei.",
                    start_date_time=datetime(2026, 10, 16, 20, 0, tzinfo=UTC),
                    status=AppointmentStatus.ACCEPTED,
                ),
                Appointment(
                    title="Highlight", main_text="Großes Fest.",
                    start_date_time=datetime(2026, 10, 24, 18, 0, tzinfo=UTC),
                    featured=True, status=AppointmentStatus.ACCEPTED,
                ),
                Appointment(
                    title="Offen", main_text="Noch nicht geprüft.",
                    start_date_time=datetime(2026, 10, 18, 18, 0, tzinfo=UTC),
                    status=AppointmentStatus.PENDING,
                ),
            ]
        )
        await db.commit()

        featured, upcoming = await AppointmentService(db).newsletter_appointments(now)

        assert [a.title for a in featured] == ["Highlight"]
        assert [a.title for a in upcoming] == ["Morgens"]
