"""
Schedule time helpers.
Parsing, comparison and formatting of timestamps used by the signal rules,
plus conversion of assignment minute offsets into absolute UTC times.
"""
import math
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple, Union
import pytz
from ..config import settings


def ensure_utc(value: datetime) -> datetime:
    """Return a timezone-aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=pytz.UTC)
    return value.astimezone(pytz.UTC)


def to_date(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp.

    Returns None for empty or unparseable values so callers can skip the
    entity instead of failing.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if raw.endswith("Z") or raw.endswith("z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return ensure_utc(parsed)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end (negative when end is earlier)."""
    return round_half_up((end - start).total_seconds() / 60)


def add_minutes(value: datetime, minutes: float) -> datetime:
    return value + timedelta(minutes=minutes)


def latest_date(*values: Optional[datetime]) -> Optional[datetime]:
    latest = None
    for value in values:
        if value is None:
            continue
        if latest is None or value > latest:
            latest = value
    return latest


def earliest_date(*values: Optional[datetime]) -> Optional[datetime]:
    earliest = None
    for value in values:
        if value is None:
            continue
        if earliest is None or value < earliest:
            earliest = value
    return earliest


def format_minutes(minutes: float) -> str:
    """Format a duration as 45m, 2h or 1h 30m."""
    if minutes is None or not math.isfinite(minutes):
        return "0m"
    rounded = max(0, round_half_up(minutes))
    if rounded < 60:
        return f"{rounded}m"
    hours, mins = divmod(rounded, 60)
    return f"{hours}h {mins}m" if mins else f"{hours}h"


def format_currency(cents: Optional[float], currency: str) -> str:
    amount = max(0, float(cents or 0)) / 100
    return f"{currency.upper()} {amount:.2f}"


def format_number(value: float) -> str:
    """Render 3.0 as 3 and 2.5 as 2.5 for human readable reasons."""
    return f"{value:g}"


def local_to_utc(local_datetime: datetime, timezone_str: str) -> datetime:
    """
    Convert local datetime to UTC.

    Args:
        local_datetime: Local datetime (naive)
        timezone_str: Timezone string (e.g., "Australia/Sydney")

    Returns:
        UTC datetime (timezone-aware)
    """
    try:
        tz = pytz.timezone(timezone_str)
    except pytz.UnknownTimeZoneError:
        return local_datetime.replace(tzinfo=pytz.UTC)
    if local_datetime.tzinfo is None:
        local_dt = tz.localize(local_datetime)
    else:
        local_dt = local_datetime.astimezone(tz)
    return local_dt.astimezone(pytz.UTC)


def assignment_to_date_range(
    day: date,
    start_minutes: int,
    end_minutes: int,
    timezone_str: Optional[str] = None,
) -> Tuple[datetime, datetime]:
    """
    Resolve an assignment's minute offsets into absolute times.

    Offsets count from the workday start in the organization's timezone.

    Returns:
        (scheduled_start, scheduled_end) as UTC datetimes
    """
    tz_name = timezone_str or settings.tz_default
    hours, mins = divmod(settings.workday_start_minutes, 60)
    base = local_to_utc(datetime.combine(day, time(hours, mins)), tz_name)
    return (
        base + timedelta(minutes=start_minutes),
        base + timedelta(minutes=end_minutes),
    )
