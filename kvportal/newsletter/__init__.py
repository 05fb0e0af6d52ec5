"""Newsletter module - drafts, chunked sending with retries, tracking and AI intros."""

from kvportal.newsletter.models import NewsletterItem, NewsletterStatus
from kvportal.newsletter.schemas import SendingState
from kvportal.newsletter.sending import NewsletterSender
from kvportal.newsletter.services import NewsletterService

__all__ = [
    "NewsletterItem",
    "NewsletterSender",
    "NewsletterService",
    "NewsletterStatus",
    "SendingState",
]
