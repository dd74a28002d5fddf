# ==============================================================================
# Period Calendar - Pure Date Logic
# ==============================================================================
"""
Pure functions converting date ranges into canonical period keys.

Key formats:
    daily    2025-04-17   (calendar day)
    weekly   2025-W16     (ISO year and ISO week, weeks start on Monday)
    monthly  2025-04      (calendar month)

All instants are handled in UTC. Naive datetimes are assumed to already be
UTC; plain dates are taken as midnight UTC.

`enumerate_periods` and `period_key_of` share the same key format, so a raw
event timestamp can be looked up directly in a zero-filled bucket map.
"""

from datetime import UTC, date, datetime, timedelta
from typing import Optional, Union

from engagement.core.errors import InvalidRangeError
from engagement.core.models import Granularity

DateLike = Union[date, datetime]

# Default lookback per granularity, chosen so default reports show
# a round number of buckets (31 days, 10 weeks, 12 months).
DEFAULT_LOOKBACK: dict[Granularity, int] = {
    Granularity.DAILY: 30,
    Granularity.WEEKLY: 9,
    Granularity.MONTHLY: 11,
}

_ONE_TICK = timedelta(microseconds=1)


def parse_granularity(value: Union[str, Granularity]) -> Granularity:
    """
    Parse a granularity name.

    Raises:
        InvalidRangeError: If the value is not daily, weekly or monthly
    """
    if isinstance(value, Granularity):
        return value
    try:
        return Granularity(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(g.value for g in Granularity)
        raise InvalidRangeError(f"Unsupported granularity '{value}' (expected one of: {allowed})")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_utc(value: DateLike) -> datetime:
    """Coerce a date or datetime to an aware UTC datetime."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    return datetime(value.year, value.month, value.day, tzinfo=UTC)


def unit_start(value: DateLike, granularity: Granularity) -> datetime:
    """First instant of the day, ISO week or month containing value."""
    dt = to_utc(value)
    day = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity is Granularity.WEEKLY:
        return day - timedelta(days=day.weekday())
    if granularity is Granularity.MONTHLY:
        return day.replace(day=1)
    return day


def shift_units(value: DateLike, granularity: Granularity, count: int) -> datetime:
    """Move value by `count` units; month shifts snap to the first of the month."""
    dt = to_utc(value)
    if granularity is Granularity.DAILY:
        return dt + timedelta(days=count)
    if granularity is Granularity.WEEKLY:
        return dt + timedelta(weeks=count)
    months = dt.year * 12 + (dt.month - 1) + count
    return unit_start(dt, Granularity.MONTHLY).replace(year=months // 12, month=months % 12 + 1)


def unit_end(value: DateLike, granularity: Granularity) -> datetime:
    """Last instant (microsecond precision) of the unit containing value."""
    return shift_units(unit_start(value, granularity), granularity, 1) - _ONE_TICK


def canonicalize_range(
    start: Optional[DateLike],
    end: Optional[DateLike],
    granularity: Granularity,
    include_prior_period: bool = False,
    today: Optional[DateLike] = None,
    lookback: Optional[int] = None,
) -> tuple[datetime, datetime]:
    """
    Snap a requested range to whole periods.

    Args:
        start: Requested start, or None for the default lookback window
        end: Requested end, or None for today
        granularity: Unit to snap to
        include_prior_period: Extend the start back by one unit, for growth
            rates that need the period before the first reported one
        today: Reference "now" for defaults (defaults to the current UTC time)
        lookback: Override for the default lookback (units before `end`)

    Returns:
        (normalized_start, normalized_end): first instant of the start unit and
        last instant of the end unit

    Raises:
        InvalidRangeError: If end is before start
    """
    granularity = parse_granularity(granularity)
    reference = to_utc(today) if today is not None else datetime.now(UTC)

    end_dt = to_utc(end) if end is not None else reference
    if start is not None:
        start_dt = to_utc(start)
    else:
        units_back = lookback if lookback is not None else DEFAULT_LOOKBACK[granularity]
        start_dt = shift_units(unit_start(reference, granularity), granularity, -units_back)

    if end_dt < start_dt:
        raise InvalidRangeError(
            f"End {end_dt.date().isoformat()} is before start {start_dt.date().isoformat()}"
        )

    normalized_start = unit_start(start_dt, granularity)
    if include_prior_period:
        normalized_start = shift_units(normalized_start, granularity, -1)
    return normalized_start, unit_end(end_dt, granularity)


def period_key_of(timestamp: DateLike, granularity: Granularity) -> str:
    """Canonical key of the period containing timestamp."""
    dt = to_utc(timestamp)
    if granularity is Granularity.WEEKLY:
        iso_year, iso_week, _ = dt.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if granularity is Granularity.MONTHLY:
        return dt.strftime("%Y-%m")
    return dt.strftime("%Y-%m-%d")


def enumerate_periods(start: DateLike, end: DateLike, granularity: Granularity) -> list[str]:
    """
    Ordered, gap-free period keys covering [start, end], both ends inclusive.

    Returns an empty list when end is before start.
    """
    granularity = parse_granularity(granularity)
    end_dt = to_utc(end)
    current = unit_start(start, granularity)
    keys: list[str] = []
    while current <= end_dt:
        keys.append(period_key_of(current, granularity))
        current = shift_units(current, granularity, 1)
    return keys


def period_bounds(key: str, granularity: Granularity) -> tuple[datetime, datetime]:
    """
    First and last instant of the period identified by key.

    Raises:
        InvalidRangeError: If the key does not match the granularity's format
    """
    try:
        if granularity is Granularity.WEEKLY:
            year, week = key.split("-W")
            first = datetime.fromisocalendar(int(year), int(week), 1).replace(tzinfo=UTC)
        elif granularity is Granularity.MONTHLY:
            first = datetime.strptime(key, "%Y-%m").replace(tzinfo=UTC)
        else:
            first = datetime.strptime(key, "%Y-%m-%d").replace(tzinfo=UTC)
    except ValueError as e:
        raise InvalidRangeError(f"Invalid {granularity.value} period key '{key}': {e}")
    return first, unit_end(first, granularity)


def period_offset(from_key: str, to_key: str, granularity: Granularity) -> int:
    """Number of whole periods from from_key to to_key (negative if earlier)."""
    first, _ = period_bounds(from_key, granularity)
    second, _ = period_bounds(to_key, granularity)
    if granularity is Granularity.MONTHLY:
        return (second.year - first.year) * 12 + (second.month - first.month)
    days = (second - first).days
    if granularity is Granularity.WEEKLY:
        return days // 7
    return days
