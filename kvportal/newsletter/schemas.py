"""
Newsletter Pydantic Schemas
"""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, EmailStr, Field, field_validator

from kvportal.core.schemas import CamelModel
from kvportal.newsletter.models import NewsletterStatus

# =============================================================================
# Sending state
# =============================================================================


class ChunkResult(BaseModel):
    sent_count: int = 0
    failed_count: int = 0
    completed_at: datetime | None = None


class FailedRecipient(BaseModel):
    attempts: int = 1
    last_error: str = ""
    permanent: bool = False


class SendingState(BaseModel):
    """Progress and retry bookkeeping of one newsletter send."""

    total_recipients: int = 0
    total_chunks: int = 0
    completed_chunks: int = 0
    total_sent: int = 0
    total_failed: int = 0
    chunk_results: dict[str, ChunkResult] = Field(default_factory=dict)
    failed_recipients: dict[str, FailedRecipient] = Field(default_factory=dict)
    retry_chunk_sizes: list[int] = Field(default_factory=lambda: [10, 5, 1])
    current_retry_stage: int = 0
    admin_notified: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def permanent_failures(self) -> list[str]:
        return [email for email, f in self.failed_recipients.items() if f.permanent]

    def retryable(self, max_retries: int) -> dict[str, FailedRecipient]:
        return {
            email: f
            for email, f in self.failed_recipients.items()
            if not f.permanent and f.attempts < max_retries
        }


# =============================================================================
# Settings
# =============================================================================


class NewsletterSettingsUpdate(CamelModel):
    from_email: EmailStr | None = None
    from_name: str | None = Field(None, max_length=100)
    reply_to_email: EmailStr | None = None
    subject_template: str | None = Field(None, max_length=200)
    test_email_recipients: str | None = None
    header_logo: str | None = None
    header_banner: str | None = None
    footer_text: str | None = None
    unsubscribe_link: str | None = None
    chunk_size: int | None = Field(None, ge=1, le=500)
    chunk_delay_ms: int | None = Field(None, ge=0, le=60000)
    max_retries: int | None = Field(None, ge=1, le=10)
    max_backoff_delay_ms: int | None = Field(None, ge=0, le=120000)
    retry_chunk_sizes: str | None = None
    email_timeout_ms: int | None = Field(None, ge=1000)
    connection_timeout_ms: int | None = Field(None, ge=1000)
    max_status_reports_per_group: int | None = Field(None, ge=1, le=10)
    max_groups_with_reports: int | None = Field(None, ge=1, le=50)
    ai_system_prompt: str | None = None
    ai_model: str | None = None
    ai_topic_extraction_prompt: str | None = None
    ai_refinement_prompt: str | None = None

    @field_validator("retry_chunk_sizes")
    @classmethod
    def valid_chunk_sizes(cls, value: str | None) -> str | None:
        if value is None:
            return value
        parts = [p.strip() for p in value.split(",")]
        if not parts or not all(p.isdigit() and int(p) > 0 for p in parts):
            raise ValueError("Retry-Chunk-Größen müssen positive, kommagetrennte Zahlen sein")
        return ",".join(parts)


class NewsletterSettingsResponse(CamelModel):
    """Settings as returned to admins; the salt is never exposed."""

    id: uuid.UUID
    from_email: str
    from_name: str
    reply_to_email: str | None = None
    subject_template: str
    test_email_recipients: str | None = None
    header_logo: str | None = None
    header_banner: str | None = None
    footer_text: str | None = None
    unsubscribe_link: str | None = None
    chunk_size: int
    chunk_delay_ms: int
    max_retries: int
    max_backoff_delay_ms: int
    retry_chunk_sizes: str
    email_timeout_ms: int
    connection_timeout_ms: int
    max_status_reports_per_group: int
    max_groups_with_reports: int
    ai_system_prompt: str | None = None
    ai_model: str | None = None
    ai_topic_extraction_prompt: str | None = None
    ai_refinement_prompt: str | None = None
    updated_at: datetime


# =============================================================================
# CRUD
# =============================================================================


class NewsletterCreate(CamelModel):
    subject: str = Field(..., min_length=1, max_length=200)
    introduction: str = ""

    @field_validator("subject", mode="before")
    @classmethod
    def strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class NewsletterUpdate(CamelModel):
    subject: str | None = Field(None, min_length=1, max_length=200)
    introduction: str | None = None
    content: str | None = None


class NewsletterResponse(CamelModel):
    id: uuid.UUID
    subject: str
    introduction_text: str
    content: str | None = None
    status: NewsletterStatus
    sent_at: datetime | None = None
    recipient_count: int | None = None
    created_at: datetime
    updated_at: datetime


class NewsletterListResponse(CamelModel):
    items: list[NewsletterResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class PublicNewsletterResponse(CamelModel):
    id: uuid.UUID
    subject: str
    content: str | None = None
    sent_at: datetime | None = None


class GenerateRequest(CamelModel):
    newsletter_id: uuid.UUID


class RegenerateRequest(CamelModel):
    subject: str = Field(..., min_length=1, max_length=200)
    introduction_text: str = Field(..., min_length=1)

    @field_validator("subject", "introduction_text", mode="before")
    @classmethod
    def strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class ReportPreview(CamelModel):
    id: uuid.UUID
    title: str
    content: str
    reporter_first_name: str
    reporter_last_name: str
    created_at: datetime


class GroupReportsPreview(CamelModel):
    group_id: uuid.UUID
    group_name: str
    group_slug: str
    logo_url: str | None = None
    reports: list[ReportPreview]


# =============================================================================
# Recipients and sending
# =============================================================================


class RecipientsRequest(CamelModel):
    email_text: str


class RecipientValidation(CamelModel):
    valid: int
    invalid: int
    new: int
    existing: int
    invalid_emails: list[str]


class SendRequest(CamelModel):
    newsletter_id: uuid.UUID
    email_text: str


class SendResponse(CamelModel):
    success: bool = True
    newsletter_id: uuid.UUID
    valid_recipients: int
    email_chunks: list[list[str]]
    total_chunks: int
    chunk_size: int
    subject: str


class ChunkRequest(CamelModel):
    newsletter_id: uuid.UUID
    chunk_index: int = Field(..., ge=0)
    emails: list[str] = Field(..., min_length=1)


class ChunkResponse(CamelModel):
    success: bool
    chunk_index: int
    sent_count: int
    failed_count: int
    completed_chunks: int
    total_chunks: int
    is_complete: bool
    status: NewsletterStatus


class RetryRequest(CamelModel):
    newsletter_id: uuid.UUID


class RetryResponse(CamelModel):
    success: bool = True
    processed: int
    succeeded: int
    remaining: int
    permanent_failures: int
    status: NewsletterStatus
    completed: bool


class SendStatusResponse(CamelModel):
    id: uuid.UUID
    status: NewsletterStatus
    recipient_count: int | None = None
    total_chunks: int
    completed_chunks: int
    total_sent: int
    total_failed: int
    retryable: int
    permanent_failures: int
    is_complete: bool
    sent_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class SendTestRequest(CamelModel):
    newsletter_id: uuid.UUID | None = None
    html: str | None = None
    subject: str | None = None


class SendTestResponse(CamelModel):
    success: bool
    recipients: int
    message: str


RecoveryAction = Literal["reset_retry", "mark_complete", "reset_to_draft"]


class RecoverRequest(CamelModel):
    newsletter_id: uuid.UUID
    action: RecoveryAction


# =============================================================================
# Analytics
# =============================================================================


class LinkPerformance(CamelModel):
    url: str
    link_type: str
    link_id: str | None = None
    click_count: int
    unique_clicks: int
    first_click: datetime
    last_click: datetime


class AnalyticsResponse(CamelModel):
    newsletter_id: uuid.UUID
    subject: str
    sent_at: datetime | None = None
    total_recipients: int
    total_opens: int
    unique_opens: int
    open_rate: float
    total_clicks: int
    unique_clicks: int
    click_rate: float
    links: list[LinkPerformance]


# =============================================================================
# AI
# =============================================================================


class ConversationMessage(CamelModel):
    role: Literal["user", "assistant"]
    content: str


class AIGenerateRequest(CamelModel):
    top_themes: str = Field(..., min_length=1)
    previous_intro: str | None = None
    board_protocol: str | None = None


class AIGenerateResponse(CamelModel):
    generated_text: str
    extracted_topics: str | None = None


class AIRefineRequest(CamelModel):
    generated_text: str = Field(..., min_length=1)
    refinement_request: str = Field(..., min_length=1)
    conversation_history: list[ConversationMessage] = []


class AIRefineResponse(CamelModel):
    refined_text: str
