"""Clock and date parsing utilities"""

from datetime import date, datetime, timezone

from billing_gateway.domain.exceptions import ValidationError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def today() -> date:
    """Current UTC calendar date, used for overdue checks"""
    return utc_now().date()


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def parse_iso_date(value: date | str | None, field: str) -> date | None:
    """Parse an ISO-8601 date (YYYY-MM-DD); None passes through"""
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD), got {value!r}") from e
