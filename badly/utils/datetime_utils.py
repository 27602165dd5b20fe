"""
Datetime utility functions.

Session instants are stored as UTC ISO-8601 strings with millisecond precision
and a trailing "Z" (e.g. "2026-10-24T16:00:00.000Z").
"""

import os
from datetime import datetime
from typing import Optional

import pytz
from dotenv import load_dotenv

load_dotenv()

# Timezone used to read naive datetimes and to render dates in notifications
APP_TIMEZONE = pytz.timezone(os.getenv("APP_TIMEZONE", "Europe/Paris"))


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def parse_datetime(value) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into an aware UTC datetime.

    Naive values are interpreted in APP_TIMEZONE.

    Args:
        value: ISO string ("2026-10-24T18:00", "2026-10-24T16:00:00.000Z", ...)

    Returns:
        Aware UTC datetime, or None if the value cannot be parsed
    """
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = APP_TIMEZONE.localize(parsed)
    return parsed.astimezone(pytz.UTC)


def to_iso_string(value: datetime) -> str:
    """Serialize an aware datetime the way session instants are stored."""
    utc_value = value.astimezone(pytz.UTC)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_value.microsecond // 1000:03d}Z"


def utcnow_iso() -> str:
    """Current instant as a stored ISO string."""
    return to_iso_string(utcnow())


def format_session_date(value: str) -> str:
    """
    Format a stored session instant for notification bodies.

    Args:
        value: Stored ISO string

    Returns:
        Local date like "Sat 24 Oct, 18:00", or the raw value if unparsable

    Examples:
        >>> format_session_date("2026-10-24T16:00:00.000Z")
        "Sat 24 Oct, 18:00"
    """
    parsed = parse_datetime(value)
    if parsed is None:
        return value
    local = parsed.astimezone(APP_TIMEZONE)
    return f"{local.strftime('%a')} {local.day:02d} {local.strftime('%b')}, {local.strftime('%H:%M')}"
