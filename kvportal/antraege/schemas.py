"""
Antrag Pydantic Schemas
"""

import re
import uuid
from datetime import datetime
from typing import Any

from pydantic import EmailStr, Field, field_validator, model_validator

from kvportal.antraege.models import AntragStatus
from kvportal.core.schemas import CamelModel

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PURPOSE_LABELS = {
    "zuschuss": "Zuschuss (Finanzielle Unterstützung)",
    "personelle_unterstuetzung": "Personelle Unterstützung",
    "raumbuchung": "Raumbuchung",
    "weiteres": "Weiteres",
}


def _blank(value: str | None) -> bool:
    return not value or not value.strip()


# =============================================================================
# Purposes
# =============================================================================


class Zuschuss(CamelModel):
    enabled: bool = False
    amount: float = Field(0, ge=0, le=999999)

    @model_validator(mode="after")
    def amount_required(self) -> "Zuschuss":
        if self.enabled and self.amount < 1:
            raise ValueError("Bitte geben Sie einen gültigen Betrag an (mindestens 1 €)")
        return self


class PersonelleUnterstuetzung(CamelModel):
    enabled: bool = False
    details: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def details_required(self) -> "PersonelleUnterstuetzung":
        if self.enabled and _blank(self.details):
            raise ValueError("Bitte beschreiben Sie die benötigte personelle Unterstützung")
        return self


class Raumbuchung(CamelModel):
    enabled: bool = False
    location: str | None = Field(None, max_length=200)
    number_of_people: int | None = Field(None, ge=1, le=1000)
    details: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def fields_required(self) -> "Raumbuchung":
        if self.enabled and (
            _blank(self.location) or not self.number_of_people or _blank(self.details)
        ):
            raise ValueError("Bitte füllen Sie alle Felder der Raumbuchung aus")
        return self


class Weiteres(CamelModel):
    enabled: bool = False
    details: str | None = Field(None, max_length=1000)

    @model_validator(mode="after")
    def details_required(self) -> "Weiteres":
        if self.enabled and _blank(self.details):
            raise ValueError("Bitte beschreiben Sie Ihr Anliegen")
        return self


class Purposes(CamelModel):
    zuschuss: Zuschuss | None = None
    personelle_unterstuetzung: PersonelleUnterstuetzung | None = None
    raumbuchung: Raumbuchung | None = None
    weiteres: Weiteres | None = None

    @model_validator(mode="after")
    def at_least_one(self) -> "Purposes":
        if not self.enabled_labels():
            raise ValueError("Bitte wählen Sie mindestens einen Zweck aus")
        return self

    def enabled_labels(self) -> list[str]:
        return [
            label
            for key, label in PURPOSE_LABELS.items()
            if (purpose := getattr(self, key)) is not None and purpose.enabled
        ]


# =============================================================================
# Requests
# =============================================================================


class AntragFields(CamelModel):
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    title: str = Field(..., min_length=3, max_length=200)
    summary: str = Field(..., min_length=10, max_length=300)

    @field_validator("first_name", "last_name", "title", "summary", "email", mode="before")
    @classmethod
    def strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class AntragSubmit(AntragFields):
    purposes: Purposes


class AntragUpdate(CamelModel):
    first_name: str | None = Field(None, min_length=2, max_length=50)
    last_name: str | None = Field(None, min_length=2, max_length=50)
    email: EmailStr | None = None
    title: str | None = Field(None, min_length=3, max_length=200)
    summary: str | None = Field(None, min_length=10, max_length=300)
    purposes: Purposes | None = None
    file_urls: list[str] | None = None


class DecisionRequest(CamelModel):
    decision_comment: str | None = Field(None, max_length=5000)


class ConfigurationUpdate(CamelModel):
    recipient_emails: str

    @field_validator("recipient_emails")
    @classmethod
    def valid_emails(cls, value: str) -> str:
        emails = [email.strip() for email in value.split(",") if email.strip()]
        if not emails:
            raise ValueError("Mindestens eine E-Mail-Adresse ist erforderlich")
        for email in emails:
            if not EMAIL_PATTERN.match(email):
                raise ValueError(f"Ungültige E-Mail-Adresse: {email}")
        return value.strip()


# =============================================================================
# Responses
# =============================================================================


class AntragResponse(CamelModel):
    id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    title: str
    summary: str
    purposes: dict[str, Any]
    file_urls: list[str] = []
    status: AntragStatus
    decision_comment: str | None = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class AntragListResponse(CamelModel):
    items: list[AntragResponse]
    total_items: int
    page: int
    page_size: int
    total_pages: int


class DecisionResponse(CamelModel):
    success: bool = True
    antrag: AntragResponse
    email_sent: bool
    message: str


class DeleteAntragResponse(CamelModel):
    success: bool = True
    message: str
    deleted_files: int


class ConfigurationResponse(CamelModel):
    id: uuid.UUID
    recipient_emails: str
    created_at: datetime
    updated_at: datetime
