"""Input coercion shared by the repository services.

All helpers raise ValidationError with a field-level ``details`` entry so
blueprints can return structured 422 responses.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from email_validator import EmailNotValidError, validate_email

from delivery_workspace.core.exceptions import ValidationError


def require(data: dict, *fields: str) -> None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(
            f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required",
            details={f: "required" for f in missing},
        )


def check_choice(value, allowed: set, field: str):
    """Return ``value`` if it is one of ``allowed`` (None passes through)."""
    if value is None:
        return None
    if value not in allowed:
        raise ValidationError(
            f"Invalid {field}: {value!r}",
            details={field: f"must be one of {sorted(allowed)}"},
        )
    return value


def parse_date(value, field: str):
    """Parse an ISO date (or datetime) string. Empty input → None."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        raise ValidationError(
            f"Invalid date for {field}", details={field: "use YYYY-MM-DD"},
        ) from None


def parse_decimal(value, field: str):
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid number for {field}", details={field: "not a number"}) from None


def parse_int(value, field: str):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid integer for {field}", details={field: "not an integer"}) from None


def apply_fields(obj, data: dict, fields) -> dict:
    """Copy plain fields from ``data`` onto ``obj``; return {field: (old, new)} for audit."""
    changes = {}
    for field in fields:
        if field in data:
            old = getattr(obj, field)
            new = data[field]
            if old != new:
                setattr(obj, field, new)
                changes[field] = (old, new)
    return changes


def parse_email(value, field: str = "email"):
    """Normalize an email address. Empty input → None."""
    if value in (None, ""):
        return None
    try:
        return validate_email(str(value), check_deliverability=False).normalized
    except EmailNotValidError as exc:
        raise ValidationError(f"Invalid email: {exc}", details={field: "invalid email"}) from None
