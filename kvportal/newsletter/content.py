"""
Newsletter content: appointment and status report selection and HTML generation.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from kvportal.appointments.models import Appointment
from kvportal.appointments.services import AppointmentService
from kvportal.core.database import utcnow
from kvportal.email.templates import render_template
from kvportal.groups.models import Group, GroupStatus
from kvportal.newsletter.settings_service import NewsletterConfig
from kvportal.status_reports.models import StatusReport, StatusReportStatus

REPORT_WINDOW = timedelta(weeks=2)


@dataclass
class GroupReports:
    group: Group
    reports: list[StatusReport] = field(default_factory=list)


def format_subject(template: str, when: datetime | None = None) -> str:
    """Replace ``{date}`` with the date as dd.mm.yyyy."""
    return template.replace("{date}", (when or utcnow()).strftime("%d.%m.%Y"))


async def recent_status_reports(
    db: AsyncSession, config: NewsletterConfig, now: datetime | None = None
) -> list[GroupReports]:
    """
    ACTIVE reports of the last two weeks, grouped by (active) group.

    Groups are ordered by name; each group keeps its newest
    ``max_status_reports_per_group`` reports and at most
    ``max_groups_with_reports`` groups are returned.
    """
    since = (now or utcnow()) - REPORT_WINDOW
    result = await db.execute(
        select(StatusReport)
        .join(StatusReport.group)
        .where(
            StatusReport.status == StatusReportStatus.ACTIVE,
            StatusReport.created_at >= since,
            Group.status == GroupStatus.ACTIVE,
        )
        .options(contains_eager(StatusReport.group))
        .order_by(Group.name.asc(), StatusReport.created_at.desc())
    )

    grouped: dict[uuid.UUID, GroupReports] = {}
    for report in result.scalars().unique():
        entry = grouped.get(report.group_id)
        if entry is None:
            if len(grouped) >= config.max_groups_with_reports:
                continue
            entry = grouped[report.group_id] = GroupReports(group=report.group)
        if len(entry.reports) < config.max_status_reports_per_group:
            entry.reports.append(report)
    return list(grouped.values())


@dataclass
class NewsletterContent:
    groups: list[GroupReports] = field(default_factory=list)
    featured_appointments: list[Appointment] = field(default_factory=list)
    upcoming_appointments: list[Appointment] = field(default_factory=list)


async def collect_content(
    db: AsyncSession, config: NewsletterConfig, now: datetime | None = None
) -> NewsletterContent:
    """Appointments from today on and the recent status reports."""
    featured, upcoming = await AppointmentService(db).newsletter_appointments(now)
    groups = await recent_status_reports(db, config, now)
    return NewsletterContent(groups, featured, upcoming)


def render_newsletter(
    subject: str, introduction: str, content: NewsletterContent, config: NewsletterConfig
) -> str:
    return render_template(
        "newsletter.html",
        subject=subject,
        introduction=introduction,
        groups=content.groups,
        featured_appointments=content.featured_appointments,
        upcoming_appointments=content.upcoming_appointments,
        config=config,
    )
