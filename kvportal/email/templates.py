"""
Jinja2 rendering for notification and newsletter emails.
"""

from datetime import datetime
from functools import lru_cache
from typing import Any

from jinja2 import Environment, PackageLoader, select_autoescape

from kvportal.core.config import settings
from kvportal.email.mailer import html_to_text


def format_date(value: datetime | None, fmt: str = "%d.%m.%Y") -> str:
    return value.strftime(fmt) if value else ""


def truncate_words(text: str, max_length: int = 300) -> str:
    """Cut at the last word boundary before ``max_length`` and append an ellipsis."""
    if not text or len(text) <= max_length:
        return text
    cut = text[:max_length]
    space = cut.rfind(" ")
    return (cut[:space] if space != -1 else cut) + "..."


def absolute_url(path: str | None) -> str:
    if not path or path.startswith(("http://", "https://")):
        return path or ""
    return f"{settings.base_url.rstrip('/')}/{path.lstrip('/')}"


@lru_cache
def get_environment() -> Environment:
    env = Environment(
        loader=PackageLoader("kvportal.email", "templates"),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["date"] = format_date
    env.filters["plain"] = html_to_text
    env.filters["truncate_words"] = truncate_words
    env.filters["absolute"] = absolute_url
    env.globals["base_url"] = settings.base_url.rstrip("/")
    return env


def render_template(name: str, **context: Any) -> str:
    return get_environment().get_template(name).render(**context)
