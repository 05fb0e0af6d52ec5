"""
Recipient list cleaning, validation and hashing.

Plain addresses are only held in memory for the send; the database keeps
salted SHA-256 hashes to count new and returning recipients.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kvportal.core.database import utcnow
from kvportal.newsletter.models import HashedRecipient

logger = logging.getLogger(__name__)

MAX_EMAIL_LENGTH = 254
EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)
# zero width characters, BOM, soft hyphen and C0/C1 control characters
INVISIBLE_CHARS = re.compile(r"[\u200b-\u200f\u2028-\u202f\u2060-\u206f\ufeff\u00ad\x00-\x1f\x7f-\x9f]")
FORBIDDEN_CHARS = ("<", ">", '"')


def clean_email(email: str) -> str:
    email = INVISIBLE_CHARS.sub("", email)
    return re.sub(r"\s+", "", email).lower()


def validate_email(email: str) -> bool:
    if not email or len(email) > MAX_EMAIL_LENGTH:
        return False
    if any(char in email for char in FORBIDDEN_CHARS):
        return False
    return EMAIL_PATTERN.match(email) is not None


def hash_email(email: str, salt: str) -> str:
    return hashlib.sha256(f"{email}{salt}".encode()).hexdigest()


def parse_email_list(text: str) -> list[str]:
    """Split newline (or comma/semicolon) separated input into cleaned, unique addresses."""
    seen: dict[str, None] = {}
    for line in re.split(r"[\n,;]+", text):
        email = clean_email(line)
        if email:
            seen.setdefault(email)
    return list(seen)


@dataclass
class RecipientResult:
    valid: int = 0
    invalid: int = 0
    new: int = 0
    existing: int = 0
    invalid_emails: list[str] = field(default_factory=list)
    validated_emails: list[str] = field(default_factory=list)


async def process_recipient_list(db: AsyncSession, text: str, salt: str) -> RecipientResult:
    """Validate the addresses and upsert their hashes (``last_sent`` is refreshed)."""
    result = RecipientResult()
    for email in parse_email_list(text):
        if validate_email(email):
            result.validated_emails.append(email)
        else:
            result.invalid_emails.append(email)
    result.valid = len(result.validated_emails)
    result.invalid = len(result.invalid_emails)
    if not result.validated_emails:
        return result

    hashes = {hash_email(email, salt) for email in result.validated_emails}
    existing_rows = await db.scalars(
        select(HashedRecipient).where(HashedRecipient.hashed_email.in_(hashes))
    )
    now = utcnow()
    known = set()
    for row in existing_rows:
        row.last_sent = now
        known.add(row.hashed_email)
    for digest in hashes - known:
        db.add(HashedRecipient(hashed_email=digest, first_seen=now, last_sent=now))
    await db.flush()

    result.existing = len(known)
    result.new = len(hashes) - len(known)
    logger.info(
        "Recipients validated: %d valid, %d invalid, %d new",
        result.valid,
        result.invalid,
        result.new,
    )
    return result
