"""
Sample data for previewing notification and newsletter templates.

Objects are transient model instances; nothing is written to the database.
"""

import uuid
from collections.abc import Callable
from datetime import timedelta

from kvportal.antraege.models import Antrag
from kvportal.appointments.models import Appointment, AppointmentStatus
from kvportal.core.database import utcnow
from kvportal.email.templates import render_template
from kvportal.groups.models import Group, GroupStatus
from kvportal.newsletter.content import GroupReports, NewsletterContent, render_newsletter
from kvportal.newsletter.settings_service import NewsletterConfig
from kvportal.status_reports.models import StatusReport, StatusReportStatus


def sample_group() -> Group:
    return Group(
        id=uuid.uuid4(),
        name="Arbeitskreis Klimagerechtigkeit",
        slug="ak-klimagerechtigkeit",
        description="Wir setzen uns für eine sozial gerechte Klimapolitik ein.",
        status=GroupStatus.ACTIVE,
    )


def sample_report() -> StatusReport:
    return StatusReport(
        id=uuid.uuid4(),
        title="Aktionstag am Rathaus",
        content="<p>Mit über 50 Teilnehmenden war unser Aktionstag ein voller Erfolg.</p>",
        reporter_first_name="Anna",
        reporter_last_name="Schmidt",
        status=StatusReportStatus.ACTIVE,
        created_at=utcnow(),
    )


def sample_antrag() -> Antrag:
    return Antrag(
        id=uuid.uuid4(),
        first_name="Max",
        last_name="Mustermann",
        email="max.mustermann@example.org",
        title="Unterstützung für das Sommerfest",
        summary="Wir beantragen Unterstützung für das Sommerfest im Stadtteilzentrum.",
        file_urls=[],
        created_at=utcnow(),
    )


def sample_appointments() -> tuple[list[Appointment], list[Appointment]]:
    start = utcnow().replace(hour=18, minute=0, second=0, microsecond=0) + timedelta(days=7)
    featured = Appointment(
        id=uuid.uuid4(),
        title="Mitgliederversammlung",
        main_text="<p>Wir wählen den neuen Vorstand und beraten über das Wahlprogramm.</p>",
        start_date_time=start,
        end_date_time=start + timedelta(hours=3),
        city="Frankfurt am Main",
        featured=True,
        status=AppointmentStatus.ACCEPTED,
    )
    upcoming = Appointment(
        id=uuid.uuid4(),
        title="Offenes Treffen",
        main_text="<p>Alle Interessierten sind herzlich eingeladen.</p>",
        start_date_time=start + timedelta(days=3),
        city="Frankfurt am Main",
        featured=False,
        status=AppointmentStatus.ACCEPTED,
    )
    return [featured], [upcoming]


def _antrag_submission(config: NewsletterConfig) -> str:
    return render_template(
        "antrag_submission.html",
        antrag=sample_antrag(),
        purposes=["Zuschuss: 500 €", "Personelle Unterstützung: Auf- und Abbau"],
    )


def _group_acceptance(config: NewsletterConfig) -> str:
    return render_template("group_acceptance.html", group=sample_group())


def _status_report_acceptance(config: NewsletterConfig) -> str:
    return render_template(
        "status_report_acceptance.html", group=sample_group(), report=sample_report()
    )


def _newsletter(config: NewsletterConfig) -> str:
    featured, upcoming = sample_appointments()
    content = NewsletterContent(
        groups=[GroupReports(sample_group(), [sample_report()])],
        featured_appointments=featured,
        upcoming_appointments=upcoming,
    )
    return render_newsletter(
        "Newsletter-Vorschau",
        "<p>Liebe Mitglieder, hier sind die Neuigkeiten der letzten Wochen.</p>",
        content,
        config,
    )


PREVIEWS: dict[str, Callable[[NewsletterConfig], str]] = {
    "newsletter": _newsletter,
    "antrag-submission": _antrag_submission,
    "group-acceptance": _group_acceptance,
    "status-report-acceptance": _status_report_acceptance,
}


def render_preview(template: str, config: NewsletterConfig) -> str | None:
    """HTML of ``template`` filled with sample data, ``None`` for unknown names."""
    render = PREVIEWS.get(template)
    return render(config) if render else None
