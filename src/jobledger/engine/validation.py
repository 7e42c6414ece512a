"""Payload validation for job transitions.

Every check raises ValidationError with a message fit to show the acting
user. Nothing here touches state.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from jobledger.calendar import parse_date_key
from jobledger.compensation.commission import to_money
from jobledger.errors import ValidationError


# Upper bound for rates and hours. Keeps rate × hours quantizable to
# pence within the default Decimal context.
MAX_NUMBER = Decimal("1000000")


def require_text(value: Any, label: str) -> str:
    """Return ``value`` stripped, or raise if it is missing or blank."""
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    return value.strip()


def optional_text(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"Expected text, got {type(value).__name__}")
    return value.strip()


def parse_positive(value: Any, label: str) -> Decimal:
    """Parse a positive, finite number. Accepts numbers and numeric strings."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{label} is required")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{label} is required")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{label} must be a number, got {value!r}") from None
    if not number.is_finite() or number <= 0:
        raise ValidationError(f"{label} must be a positive number, got {value!r}")
    if number > MAX_NUMBER:
        raise ValidationError(f"{label} must be at most {MAX_NUMBER}, got {value!r}")
    return number


def parse_estimated_hours(value: Any, minimum: Decimal) -> Decimal:
    hours = parse_positive(value, "Estimated hours")
    if hours < minimum:
        raise ValidationError(f"Please estimate at least {minimum} hour for the job")
    return hours


def priced_total(rate: Decimal, hours: Decimal) -> Decimal:
    """Return rate × hours in pounds and pence; it must come to at least a penny."""
    total = to_money(rate * hours)
    if total <= 0:
        raise ValidationError(
            f"Rate of {rate} for {hours} hours comes to less than a penny"
        )
    return total


def normalise_photos(photos: Optional[Iterable[Any]], max_photos: int) -> list[str]:
    """Return the non-blank photo references, enforcing the upload limit."""
    if photos is None:
        return []
    if isinstance(photos, str):
        photos = [photos]
    result = [p.strip() for p in photos if isinstance(p, str) and p.strip()]
    if len(result) > max_photos:
        raise ValidationError(f"Maximum {max_photos} photos allowed")
    return result


def validate_date_key(value: Any) -> str:
    text = require_text(value, "Date")
    if parse_date_key(text) is None:
        raise ValidationError(f"Date must be YYYY-MM-DD, got {text!r}")
    return text


def validate_time_slot(value: Any, slots: Iterable[str]) -> str:
    text = require_text(value, "Time slot")
    allowed = tuple(slots)
    if text not in allowed:
        raise ValidationError(
            f"Time slot must be one of {', '.join(allowed)}, got {text!r}"
        )
    return text


def validate_rating(value: Any, bounds: tuple[int, int]) -> int:
    """Ratings are whole numbers within the configured bounds."""
    lo, hi = bounds
    if value is None:
        raise ValidationError("Rating is required")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Rating must be a whole number, got {value!r}")
    if not lo <= value <= hi:
        raise ValidationError(f"Rating must be between {lo} and {hi}, got {value}")
    return value
