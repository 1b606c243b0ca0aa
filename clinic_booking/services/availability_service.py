"""Slot availability for fixed-duration bookings."""

import math
from collections.abc import Sequence
from datetime import date, datetime, time, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.config import Settings, settings as default_settings
from clinic_booking.core.calendar import day_bounds, ensure_utc, iter_days, local_datetime, range_bounds
from clinic_booking.core.exceptions import ValidationException
from clinic_booking.models.appointments import appointments
from clinic_booking.schemas.appointments import AppointmentStatus
from clinic_booking.schemas.availability import AvailabilityResponse, DayAvailability
from clinic_booking.services.service_catalog import ServiceCatalog

logger = structlog.get_logger(__name__)

SLOT_MINUTES = 30
GRID_START = time(9, 0)
GRID_END = time(18, 0)

Window = tuple[datetime, datetime]


def generate_time_slots(
    start: time = GRID_START,
    end: time = GRID_END,
    step_minutes: int = SLOT_MINUTES,
) -> list[time]:
    """Wall-clock start times of the day grid (09:00 to 17:30 by default)."""
    slots = []
    current = datetime.combine(date.min, start)
    last = datetime.combine(date.min, end)
    while current + timedelta(minutes=step_minutes) <= last:
        slots.append(current.time())
        current += timedelta(minutes=step_minutes)
    return slots


def compute_day_availability(
    day: date,
    grid: Sequence[time],
    busy: Sequence[Window],
    duration: int,
    tz: ZoneInfo,
) -> DayAvailability:
    """
    Split the grid of one day into available and booked slots.

    A slot is blocked when its start lies inside ``[start, end)`` of a busy
    window. An unblocked slot is available only if it and the slots needed
    to fit ``duration`` all exist before closing and are unblocked.

    Args:
        day: Clinic calendar date
        grid: Wall-clock slot starts
        busy: UTC windows of live appointments
        duration: Service duration in minutes
        tz: Clinic timezone

    Returns:
        Availability of the day
    """
    slot_starts = [local_datetime(day, slot, tz) for slot in grid]
    blocked = [any(start <= slot < end for start, end in busy) for slot in slot_starts]
    slots_needed = max(1, math.ceil(duration / SLOT_MINUTES))

    available: list[str] = []
    booked: list[str] = []
    for index, slot in enumerate(grid):
        label = slot.strftime("%H:%M")
        needed = blocked[index : index + slots_needed]
        if len(needed) == slots_needed and not any(needed):
            available.append(label)
        else:
            booked.append(label)

    return DayAvailability(
        is_fully_booked=not available,
        booked_slots=booked,
        available_slots=available,
    )


class AvailabilityService:
    """Service computing bookable slots over a date range."""

    def __init__(self, db: AsyncSession, app_settings: Settings | None = None):
        """Initialize service with database session."""
        self.db = db
        self.settings = app_settings or default_settings
        self.tz = self.settings.clinic_tz
        self.catalog = ServiceCatalog(db)

    async def compute_availability(
        self,
        start_date: date,
        end_date: date,
        service_id: UUID,
    ) -> AvailabilityResponse:
        """
        Compute slot availability for each date of a range.

        Existing appointments are fetched with a single range query covering
        the whole range; shift-mode appointments do not occupy the grid.

        Args:
            start_date: First clinic calendar date
            end_date: Last clinic calendar date, inclusive
            service_id: Service whose duration must fit

        Returns:
            Availability keyed by date

        Raises:
            ValidationException: If the range is reversed or too long
            NotFoundException: If the service does not exist
        """
        if end_date < start_date:
            raise ValidationException("End date must not be before start date")
        span = (end_date - start_date).days + 1
        if span > self.settings.availability_max_days:
            raise ValidationException(
                f"Date range must not exceed {self.settings.availability_max_days} days"
            )

        service = await self.catalog.get_service(service_id)

        range_start, range_end = range_bounds(start_date, end_date, self.tz)
        result = await self.db.execute(
            select(appointments.c.appointment_at, appointments.c.end_time).where(
                appointments.c.status != AppointmentStatus.CANCELLED.value,
                appointments.c.shift.is_(None),
                appointments.c.appointment_at < range_end,
                appointments.c.end_time > range_start,
            )
        )
        windows = [(ensure_utc(row.appointment_at), ensure_utc(row.end_time)) for row in result]

        grid = generate_time_slots()
        days: dict[date, DayAvailability] = {}
        for day in iter_days(start_date, end_date):
            day_start, day_end = day_bounds(day, self.tz)
            busy = [(s, e) for s, e in windows if s < day_end and e > day_start]
            days[day] = compute_day_availability(day, grid, busy, service.duration, self.tz)

        logger.debug(
            "availability_computed",
            service_id=str(service_id),
            start=start_date.isoformat(),
            end=end_date.isoformat(),
            appointments=len(windows),
        )
        return AvailabilityResponse(service_id=service_id, duration=service.duration, days=days)
