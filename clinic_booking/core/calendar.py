"""Clinic calendar helpers.

Every "which day does this belong to" decision goes through these helpers so
that day boundaries are taken in the clinic timezone, never in UTC or in the
caller's timezone. Timestamps are stored normalised to UTC.
"""

from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo


def ensure_utc(value: datetime) -> datetime:
    """Coerce a datetime into UTC timezone-aware form.

    Naive values are assumed to already be UTC, which is how they come back
    from backends without native timezone support.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def local_datetime(day: date, wall_clock: time, tz: ZoneInfo) -> datetime:
    """Build the UTC instant of a clinic wall-clock time on a given day."""
    return datetime.combine(day, wall_clock, tzinfo=tz).astimezone(UTC)


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of a clinic-local calendar day as UTC instants."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(UTC), end.astimezone(UTC)


def range_bounds(start_day: date, end_day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` covering clinic-local days ``start_day..end_day``."""
    start, _ = day_bounds(start_day, tz)
    _, end = day_bounds(end_day, tz)
    return start, end


def local_date(value: datetime, tz: ZoneInfo) -> date:
    """Return the clinic-local calendar date of an instant."""
    return ensure_utc(value).astimezone(tz).date()


def clinic_today(tz: ZoneInfo, now: datetime | None = None) -> date:
    """Return today's date on the clinic calendar."""
    return local_date(now or datetime.now(UTC), tz)


def iter_days(start_day: date, end_day: date) -> Iterator[date]:
    """Yield each date from ``start_day`` to ``end_day`` inclusive."""
    current = start_day
    while current <= end_day:
        yield current
        current += timedelta(days=1)
