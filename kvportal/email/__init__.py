"""Email module - SMTP delivery and notification templates."""

from kvportal.email.mailer import EmailResult, Mailer, mailer, send_email
from kvportal.email.templates import render_template

__all__ = [
    "EmailResult",
    "Mailer",
    "mailer",
    "render_template",
    "send_email",
]
