"""
Notification emails for groups, status reports and Anträge.

All senders are best-effort: delivery problems are logged and reported via
the returned EmailResult, never raised.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from kvportal.core.config import settings
from kvportal.email.mailer import EmailResult, send_email
from kvportal.email.templates import render_template

if TYPE_CHECKING:
    from kvportal.antraege.models import Antrag
    from kvportal.auth.models import User
    from kvportal.groups.models import Group
    from kvportal.newsletter.schemas import SendingState
    from kvportal.status_reports.models import StatusReport

logger = logging.getLogger(__name__)

GROUP_STATUS_TEMPLATES = {
    "ACTIVE": ("group_acceptance.html", "Ihre Gruppe wurde freigeschaltet"),
    "ARCHIVED": ("group_archiving.html", "Ihre Gruppe wurde archiviert"),
}

REPORT_STATUS_TEMPLATES = {
    "ACTIVE": ("status_report_acceptance.html", "Statusbericht veröffentlicht"),
    "REJECTED": ("status_report_rejection.html", "Statusbericht nicht veröffentlicht"),
    "ARCHIVED": ("status_report_archiving.html", "Statusbericht archiviert"),
}


def _responsible_emails(group: "Group") -> list[str]:
    return sorted({person.email for person in group.responsible_persons if person.email})


async def notify_group_submitted(group: "Group") -> EmailResult | None:
    if not settings.admin_notification_email:
        return None
    html = render_template("group_submitted_admin.html", group=group)
    return await send_email(
        settings.admin_notification_email, f"Neue Gruppenanfrage: {group.name}", html
    )


async def send_group_status_email(group: "Group", status: str) -> EmailResult | None:
    """Acceptance or archiving mail to the group's responsible persons."""
    template = GROUP_STATUS_TEMPLATES.get(str(status))
    recipients = _responsible_emails(group)
    if template is None or not recipients:
        return None
    name, subject = template
    result = await send_email(recipients, f"{subject}: {group.name}", render_template(name, group=group))
    if not result.success:
        logger.error("Group status email for %s failed: %s", group.id, result.error)
    return result


async def send_status_report_email(report: "StatusReport", group: "Group") -> EmailResult | None:
    template = REPORT_STATUS_TEMPLATES.get(str(report.status))
    recipients = _responsible_emails(group)
    if template is None or not recipients:
        return None
    name, subject = template
    html = render_template(name, group=group, report=report)
    result = await send_email(recipients, f"{subject}: {report.title}", html)
    if not result.success:
        logger.error("Status report email for %s failed: %s", report.id, result.error)
    return result


async def notify_member_joined(
    group: "Group", member: "User", recipients: list[str], joined_at: datetime
) -> EmailResult | None:
    if not recipients:
        return None
    html = render_template(
        "group_member_joined.html",
        group=group,
        member_name=member.display_name,
        member_email=member.email,
        joined_at=joined_at,
    )
    return await send_email(recipients, f"Neues Mitglied in {group.name}", html)


async def send_antrag_submission_email(
    antrag: "Antrag", recipients: list[str], purposes: list[str]
) -> EmailResult | None:
    if not recipients:
        logger.warning("No recipients configured for Antrag notifications")
        return None
    html = render_template("antrag_submission.html", antrag=antrag, purposes=purposes)
    return await send_email(
        recipients, f"Neuer Antrag: {antrag.title}", html, reply_to=antrag.email
    )


async def send_antrag_decision_email(antrag: "Antrag", accepted: bool) -> EmailResult:
    if accepted:
        name, subject = "antrag_acceptance.html", "Ihr Antrag wurde angenommen"
    else:
        name, subject = "antrag_rejection.html", "Entscheidung zu Ihrem Antrag"
    html = render_template(name, antrag=antrag)
    result = await send_email(antrag.email, f"{subject}: {antrag.title}", html)
    if not result.success:
        logger.error("Decision email for Antrag %s failed: %s", antrag.id, result.error)
    return result


async def notify_newsletter_completed(
    subject: str, state: "SendingState", max_retries: int
) -> EmailResult | None:
    """Delivery report for the admins once retries are exhausted."""
    if not settings.admin_notification_email:
        logger.warning("No admin notification email configured for newsletter reports")
        return None
    total = state.total_recipients
    html = render_template(
        "newsletter_admin_notification.html",
        subject=subject,
        total_recipients=total,
        total_sent=state.total_sent,
        permanent_failures=state.permanent_failures,
        success_rate=(state.total_sent / total * 100) if total else 0.0,
        max_retries=max_retries,
    )
    result = await send_email(
        settings.admin_notification_email, f"Newsletter-Versand abgeschlossen: {subject}", html
    )
    if not result.success:
        logger.error("Newsletter admin notification failed: %s", result.error)
    return result
