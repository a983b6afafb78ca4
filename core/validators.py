"""
Input validation functions for API parameters.

All validators raise ValidationError on invalid input.
"""

import re
from datetime import datetime
from typing import Optional, Tuple

from core.clock import end_of_day, wall_clock
from core.exceptions import ValidationError
from core.models import Bucket


TICKER_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,16}$")
DATE_ONLY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def validate_ticker(value: str) -> str:
    """
    Validate a ticker symbol.

    Returns:
        Stripped ticker; matching is exact and case-sensitive

    Raises:
        ValidationError: If ticker is empty or has unexpected characters
    """
    if not value or not value.strip():
        raise ValidationError("ticker", "Ticker is required", value)

    ticker = value.strip()
    if not TICKER_PATTERN.match(ticker):
        raise ValidationError(
            "ticker",
            "Ticker must be 1-16 letters, digits, '.', '_' or '-'",
            value
        )
    return ticker


def validate_date_param(value: Optional[str], field: str) -> Optional[Tuple[datetime, bool]]:
    """
    Parse a query date that is either ``YYYY-MM-DD`` or an ISO datetime.

    Aware datetimes are converted to wall-clock time in the history zone.

    Returns:
        (naive datetime, date_only flag), or None when value is empty

    Raises:
        ValidationError: If value is not a valid date or datetime
    """
    if value is None or value == "":
        return None

    text = value.strip()
    if DATE_ONLY_PATTERN.match(text):
        try:
            parsed = datetime.strptime(text, "%Y-%m-%d")
        except ValueError:
            raise ValidationError(field, "Invalid date", value)
        return parsed, True

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(
            field,
            "Invalid date format. Expected YYYY-MM-DD or ISO 8601 datetime",
            value
        )
    return wall_clock(parsed), False


def resolve_range(
    start_date: Optional[str],
    end_date: Optional[str],
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Turn optional start/end query values into an inclusive wall-clock range.

    A date-only end is widened to the last instant of that day.

    Raises:
        ValidationError: If end is given without start, or start > end
    """
    start = validate_date_param(start_date, "startDate")
    end = validate_date_param(end_date, "endDate")

    if end is not None and start is None:
        raise ValidationError("startDate", "startDate is required when endDate is given", start_date)

    start_at = start[0] if start else None
    end_at = None
    if end is not None:
        end_at = end_of_day(end[0]) if end[1] else end[0]

    if start_at is not None and end_at is not None and start_at > end_at:
        raise ValidationError(
            "startDate",
            f"startDate must be before endDate ({end_date})",
            start_date
        )
    return start_at, end_at


def validate_frequency(value: Optional[str], default: str) -> Bucket:
    """
    Parse a frequency keyword, falling back to ``default`` when empty.

    Raises:
        ValidationError: If the keyword is unknown
    """
    try:
        return Bucket.parse(value or default)
    except ValueError as e:
        raise ValidationError("frequency", str(e), value)


def validate_account_id(value: Optional[int]) -> Optional[int]:
    """Validate an optional shareholder account id."""
    if value is None:
        return None
    if value < 0:
        raise ValidationError("accountId", "Must be non-negative", value)
    return value


def validate_limit(value: Optional[int], default: int = 10, max_value: int = 50) -> int:
    """Validate a history limit parameter."""
    if value is None:
        return default
    if value < 1:
        raise ValidationError("limit", "Must be at least 1", value)
    if value > max_value:
        raise ValidationError("limit", f"Cannot exceed {max_value}", value)
    return value

