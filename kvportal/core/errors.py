"""
Error Handling

Application error taxonomy and the FastAPI exception handlers that turn
errors into JSON bodies with German user-facing messages.
"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from enum import StrEnum
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from kvportal.core.config import settings

logger = logging.getLogger(__name__)

VALIDATION_FAILED = "Validierung fehlgeschlagen"
UNEXPECTED_ERROR = "Ein unerwarteter Fehler ist aufgetreten"


class ErrorType(StrEnum):
    """Categories of application errors."""

    VALIDATION = "VALIDATION"
    AUTHENTICATION = "AUTHENTICATION"
    AUTHORIZATION = "AUTHORIZATION"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    BUSINESS_RULE = "BUSINESS_RULE"
    DATABASE = "DATABASE"
    FILE_UPLOAD = "FILE_UPLOAD"
    EXTERNAL_SERVICE = "EXTERNAL_SERVICE"
    NEWSLETTER = "NEWSLETTER"
    UNKNOWN = "UNKNOWN"


class AppError(Exception):
    """Error with a category, HTTP status and optional details for the client."""

    def __init__(
        self,
        message: str,
        type: ErrorType = ErrorType.UNKNOWN,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Any = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.type = type
        self.status_code = status_code
        self.details = details
        self.context = context or {}

    @classmethod
    def validation(cls, message: str = VALIDATION_FAILED, details: Any = None) -> "AppError":
        return cls(message, ErrorType.VALIDATION, status.HTTP_400_BAD_REQUEST, details)

    @classmethod
    def authentication(cls, message: str = "Nicht autorisiert") -> "AppError":
        return cls(message, ErrorType.AUTHENTICATION, status.HTTP_401_UNAUTHORIZED)

    @classmethod
    def authorization(cls, message: str = "Zugriff verweigert") -> "AppError":
        return cls(message, ErrorType.AUTHORIZATION, status.HTTP_403_FORBIDDEN)

    @classmethod
    def not_found(cls, message: str = "Ressource nicht gefunden") -> "AppError":
        return cls(message, ErrorType.NOT_FOUND, status.HTTP_404_NOT_FOUND)

    @classmethod
    def conflict(cls, message: str) -> "AppError":
        return cls(message, ErrorType.CONFLICT, status.HTTP_409_CONFLICT)

    @classmethod
    def business_rule(cls, message: str, details: Any = None) -> "AppError":
        return cls(message, ErrorType.BUSINESS_RULE, status.HTTP_400_BAD_REQUEST, details)

    @classmethod
    def database(cls, message: str, context: dict[str, Any] | None = None) -> "AppError":
        return cls(
            message, ErrorType.DATABASE, status.HTTP_500_INTERNAL_SERVER_ERROR, context=context
        )

    @classmethod
    def file_upload(
        cls,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Any = None,
    ) -> "AppError":
        return cls(message, ErrorType.FILE_UPLOAD, status_code, details)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "type": str(self.type)}
        if self.details is not None:
            body["details"] = self.details
        if self.context and settings.debug:
            body["context"] = self.context
        return body


def field_errors(raw_errors: Sequence[Any]) -> dict[str, str]:
    """Flatten pydantic errors into {field: message}, first message per field wins."""
    errors: dict[str, str] = {}
    for error in raw_errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "form")]
        field = ".".join(loc) or "body"
        message = str(error.get("msg", "Ungültiger Wert"))
        # pydantic prefixes messages raised by validators
        message = message.removeprefix("Value error, ")
        errors.setdefault(field, message)
    return errors


# =============================================================================
# Exception handlers
# =============================================================================


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s (%s) %s",
            request.method, request.url.path, exc.message, exc.type, exc.context,
        )
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": VALIDATION_FAILED,
            "type": str(ErrorType.VALIDATION),
            "details": field_errors(exc.errors()),
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": UNEXPECTED_ERROR, "type": str(ErrorType.UNKNOWN)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


@contextmanager
def database_errors(message: str) -> Iterator[None]:
    """Turn SQLAlchemy errors inside the block into a 500 with ``message``."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Database error: %s", message)
        raise AppError.database(message) from exc
