"""Utility functions for carrymatch."""

import math
import uuid
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ValidationError

SECONDS_PER_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """Generate a new document ID."""
    return str(uuid.uuid4())


def to_iso(value: datetime | None) -> str | None:
    """Serialize an aware datetime as ISO 8601 UTC with a 'Z' suffix."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def from_iso(value: str | None) -> datetime | None:
    """
    Parse an ISO 8601 string into an aware datetime.

    Naive values are taken to be UTC.
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_until(target: datetime, now: datetime) -> int:
    """Whole days from now until target, rounded up."""
    return math.ceil((target - now).total_seconds() / SECONDS_PER_DAY)


def hours_until(target: datetime, now: datetime) -> float:
    return (target - now).total_seconds() / 3600


def add_hours(value: datetime, hours: float) -> datetime:
    return value + timedelta(hours=hours)


def resolve_timezone(tz_name: str) -> ZoneInfo:
    """Look up an IANA timezone, raising ValidationError for unknown names."""
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Invalid timezone: '{tz_name}'", field="timezone")


def parse_local_datetime(date_str: str, time_str: str, tz_name: str) -> datetime:
    """
    Parse a local date and time in a named timezone into an aware UTC datetime.

    Formats:
    - date_str: MM/dd/yyyy
    - time_str: HH:mm (24-hour)
    - tz_name: IANA timezone (e.g. "America/New_York")

    Raises:
        ValidationError: If any part is malformed or out of range.
    """
    parts = date_str.split("/")
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        raise ValidationError(
            f"Invalid date format: expected MM/dd/yyyy, got '{date_str}'", field="date"
        )
    month, day, year = (int(p) for p in parts)
    if not (1 <= month <= 12 and 1 <= day <= 31 and 1900 <= year <= 2100):
        raise ValidationError(
            f"Invalid date: month/day/year out of range in '{date_str}'", field="date"
        )

    time_parts = time_str.split(":")
    if len(time_parts) != 2 or not all(p.isdigit() for p in time_parts):
        raise ValidationError(
            f"Invalid time format: expected HH:mm, got '{time_str}'", field="time"
        )
    hour, minute = (int(p) for p in time_parts)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValidationError(
            f"Invalid time: hour/minute out of range in '{time_str}'", field="time"
        )

    zone = resolve_timezone(tz_name)
    try:
        local = datetime(year, month, day, hour, minute, tzinfo=zone)
    except ValueError as e:
        raise ValidationError(f"Invalid date '{date_str}': {e}", field="date")
    return local.astimezone(timezone.utc)
