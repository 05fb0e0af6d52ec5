"""
Email Pydantic Schemas
"""

from pydantic import EmailStr

from kvportal.core.schemas import CamelModel


class TestEmailRequest(CamelModel):
    test_email: EmailStr


class TestEmailResponse(CamelModel):
    success: bool = True
    message: str
    message_id: str | None = None
