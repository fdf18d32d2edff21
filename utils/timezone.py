"""UTC-everywhere time handling for invoices, stock and discount windows."""

from datetime import date, datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Every stored timestamp (created_at, paid_at, history entries) comes from
    here, never from datetime.now().
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def utc_date(dt: datetime) -> date:
    """Calendar day of a timestamp in UTC, used to bucket daily revenue."""
    return to_utc(dt).date()
