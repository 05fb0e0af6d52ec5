"""
Model registry

Imports every model module so ``Base.metadata`` is complete and string
relationships resolve (app startup, CLI, Alembic).
"""

from kvportal.addresses.models import Address
from kvportal.antraege.models import Antrag, AntragConfiguration
from kvportal.appointments.models import Appointment
from kvportal.auth.models import User
from kvportal.core.database import Base
from kvportal.faq.models import FaqEntry
from kvportal.groups.models import Group, GroupMember, ResponsiblePerson
from kvportal.newsletter.models import (
    HashedRecipient,
    NewsletterAnalytics,
    NewsletterFingerprint,
    NewsletterItem,
    NewsletterLinkClick,
    NewsletterLinkClickFingerprint,
    NewsletterSettings,
)
from kvportal.status_reports.models import StatusReport

__all__ = [
    "Address",
    "Antrag",
    "AntragConfiguration",
    "Appointment",
    "Base",
    "FaqEntry",
    "Group",
    "GroupMember",
    "HashedRecipient",
    "NewsletterAnalytics",
    "NewsletterFingerprint",
    "NewsletterItem",
    "NewsletterLinkClick",
    "NewsletterLinkClickFingerprint",
    "NewsletterSettings",
    "ResponsiblePerson",
    "StatusReport",
    "User",
]
