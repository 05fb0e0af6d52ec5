"""
Logging Configuration

Console logging for the API, the CLI and the migrations.
"""

import logging.config

from kvportal.core.config import settings


def configure_logging() -> None:
    level = "DEBUG" if settings.debug else settings.log_level.upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "verbose": {
                    "format": "{levelname} {asctime} {module} {message}",
                    "style": "{",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "verbose",
                },
            },
            "root": {
                "handlers": ["console"],
                "level": "INFO",
            },
            "loggers": {
                "kvportal": {
                    "handlers": ["console"],
                    "level": level,
                    "propagate": False,
                },
                "sqlalchemy.engine": {
                    "level": "INFO" if settings.debug else "WARNING",
                },
            },
        }
    )


def mask_email(email: str) -> str:
    """Shorten an address for log output, e.g. ``ma***@example.org``."""
    local, _, domain = email.partition("@")
    if not domain:
        return email[:2] + "***"
    return f"{local[:2]}***@{domain}"
