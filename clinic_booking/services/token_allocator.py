"""Per-day, per-shift queue number allocation."""

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.calendar import day_bounds
from clinic_booking.models.appointments import appointments, token_counters
from clinic_booking.schemas.appointments import Shift

logger = structlog.get_logger(__name__)


class TokenAllocator:
    """
    Allocates queue tokens for shift-mode appointments.

    The counter row of a (date, shift) pair is locked for the rest of the
    caller's transaction, so two confirmations for the same shift cannot
    read the same maximum. The caller persists the returned number and
    commits.
    """

    def __init__(self, db: AsyncSession, tz: ZoneInfo):
        """Initialize allocator with database session and clinic timezone."""
        self.db = db
        self.tz = tz

    async def next_token(self, day: date, shift: Shift) -> int:
        """
        Reserve the next queue number of a shift.

        Args:
            day: Clinic calendar date the appointment falls on
            shift: Shift of the appointment

        Returns:
            One more than the highest number ever issued for the pair
        """
        last_issued = await self._lock_counter(day, shift)

        start, end = day_bounds(day, self.tz)
        # Any status counts: a cancelled appointment keeps its number
        result = await self.db.execute(
            select(func.max(appointments.c.token_number)).where(
                appointments.c.shift == shift.value,
                appointments.c.appointment_at >= start,
                appointments.c.appointment_at < end,
                appointments.c.token_number.is_not(None),
            )
        )
        highest_on_day = result.scalar() or 0

        token = max(last_issued, highest_on_day) + 1
        await self.db.execute(
            update(token_counters)
            .where(
                token_counters.c.appointment_date == day,
                token_counters.c.shift == shift.value,
            )
            .values(last_token=token, updated_at=datetime.now(UTC))
        )

        logger.info("token_allocated", date=day.isoformat(), shift=shift.value, token=token)
        return token

    async def _lock_counter(self, day: date, shift: Shift) -> int:
        stmt = (
            select(token_counters.c.last_token)
            .where(
                token_counters.c.appointment_date == day,
                token_counters.c.shift == shift.value,
            )
            .with_for_update()
        )
        row = (await self.db.execute(stmt)).fetchone()
        if row is not None:
            return row.last_token

        try:
            async with self.db.begin_nested():
                await self.db.execute(
                    insert(token_counters).values(
                        appointment_date=day,
                        shift=shift.value,
                        last_token=0,
                    )
                )
        except IntegrityError:
            # Created by a concurrent confirmation; lock theirs instead
            logger.debug("token_counter_exists", date=day.isoformat(), shift=shift.value)

        row = (await self.db.execute(stmt)).fetchone()
        return row.last_token
