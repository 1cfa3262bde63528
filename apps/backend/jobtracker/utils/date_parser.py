"""Date parsing utilities for job form input.

Form fields arrive as strings in several shapes ("2024-01-15" from a date
picker, full ISO-8601 timestamps from the backend, or hand-typed text).
Blank input means "not set" and is kept distinct from an invalid date.
"""

import re
from datetime import date, datetime, timezone

from dateutil import parser


_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_job_date(value: str | date | datetime | None) -> datetime | None:
    """Parse a job date field into an aware UTC datetime.

    Supports:
    - None or blank strings (returns None, the field is unset)
    - datetime / date objects
    - "2024-01-15" (date picker output, midnight UTC)
    - ISO-8601 timestamps with or without offset
    - Free text dateutil understands ("Jan 15 2024", "15/01/2024")

    Args:
        value: Raw field value

    Returns:
        Aware UTC datetime, or None when the field is unset

    Raises:
        ValueError: If a non-blank value cannot be parsed

    Examples:
        >>> parse_job_date("2024-01-15")
        datetime.datetime(2024, 1, 15, 0, 0, tzinfo=datetime.timezone.utc)
        >>> parse_job_date("   ") is None
        True
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if not isinstance(value, str):
        raise ValueError(f"Unsupported date value: {value!r}")

    text = value.strip()
    if not text:
        return None

    # Strategy 1: date picker output
    if _DATE_ONLY.match(text):
        try:
            return datetime.strptime(text, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except ValueError:
            pass

    # Strategy 2: ISO-8601 timestamp ("Z" suffix included)
    try:
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    # Strategy 3: anything dateutil can make sense of
    try:
        return ensure_utc(parser.parse(text))
    except (ValueError, OverflowError, parser.ParserError):
        pass

    raise ValueError(
        f"Cannot parse date: '{text}'. Supported formats: "
        f"'2024-01-15', ISO-8601 timestamps, or 'Jan 15 2024'"
    )
