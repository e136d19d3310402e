"""Input coercion shared by services.

parse_date:        ISO or DD.MM.YYYY → date, None for empty input
require_text:      non-blank string or ValidationError
positive_int:      strictly positive integer or ValidationError
non_negative_int:  integer ≥ 0 or ValidationError
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from civicworks.core.exceptions import ValidationError


def parse_date(value, field: str = "date"):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty input; raises ValidationError for anything
    that is present but unparseable.
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    for parse in (
        lambda v: date.fromisoformat(v),
        lambda v: datetime.fromisoformat(v).date(),
        lambda v: datetime.strptime(v, "%d.%m.%Y").date(),
    ):
        try:
            return parse(str(value))
        except (ValueError, TypeError):
            continue
    raise ValidationError(f"{field} is not a valid date", details={field: "invalid date"})


def require_text(value, field: str) -> str:
    """Return the stripped string or raise if it is missing/blank."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", details={field: "required"})
    return value.strip()


def _as_int(value, field: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={field: "not an integer"})
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer", details={field: "not an integer"})


def positive_int(value, field: str) -> int:
    n = _as_int(value, field)
    if n <= 0:
        raise ValidationError(f"{field} must be greater than zero", details={field: "must be > 0"})
    return n


def non_negative_int(value, field: str) -> int:
    n = _as_int(value, field)
    if n < 0:
        raise ValidationError(f"{field} must not be negative", details={field: "must be >= 0"})
    return n


def money(value, field: str) -> Decimal:
    """Coerce a cost to a 2-place Decimal (≥ 0)."""
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number", details={field: "not a number"}) from None
    if amount < 0:
        raise ValidationError(f"{field} must not be negative", details={field: "must be >= 0"})
    return amount


def as_float(value):
    """Decimal/None → float/None for JSON projections."""
    return float(value) if value is not None else None


def iso(value):
    return value.isoformat() if value else None
