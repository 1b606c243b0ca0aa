"""Double-booking prevention for slot-mode appointments."""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.calendar import ensure_utc
from clinic_booking.core.exceptions import ConflictException
from clinic_booking.models.appointments import appointments
from clinic_booking.schemas.appointments import AppointmentStatus
from clinic_booking.services.service_catalog import ServiceCatalog

logger = structlog.get_logger(__name__)


class OverlapGuard:
    """
    Check-then-write protection against overlapping slot bookings.

    Callers must run :meth:`lock_service`, :meth:`ensure_free` and their own
    insert/update inside one transaction. The service row lock serialises
    concurrent bookings for the same service, so the first writer to commit
    wins and the second sees its row.
    """

    def __init__(self, db: AsyncSession):
        """Initialize guard with database session."""
        self.db = db
        self.catalog = ServiceCatalog(db)

    async def lock_service(self, service_id: UUID) -> Row[Any]:
        """Lock and return the service row for the rest of the transaction."""
        return await self.catalog.get_service(service_id, for_update=True)

    async def has_overlap(
        self,
        service_id: UUID,
        start: datetime,
        end: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> bool:
        """
        Check whether ``[start, end)`` collides with a live appointment of the service.

        Args:
            service_id: Service ID
            start: Proposed start
            end: Proposed end
            exclude_appointment_id: Appointment being moved, ignored in the check

        Returns:
            True if an overlapping non-cancelled slot-mode appointment exists
        """
        # Overlap condition: existing start < new end AND existing end > new start
        stmt = (
            select(appointments.c.id)
            .where(
                appointments.c.service_id == service_id,
                appointments.c.status != AppointmentStatus.CANCELLED.value,
                appointments.c.shift.is_(None),
                appointments.c.appointment_at < ensure_utc(end),
                appointments.c.end_time > ensure_utc(start),
            )
            .limit(1)
        )
        if exclude_appointment_id is not None:
            stmt = stmt.where(appointments.c.id != exclude_appointment_id)

        result = await self.db.execute(stmt)
        return result.first() is not None

    async def ensure_free(
        self,
        service_id: UUID,
        start: datetime,
        end: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> None:
        """
        Raise if the window is taken.

        Raises:
            ConflictException: If the window overlaps an existing appointment
        """
        if await self.has_overlap(service_id, start, end, exclude_appointment_id):
            logger.info(
                "slot_conflict",
                service_id=str(service_id),
                start=start.isoformat(),
                end=end.isoformat(),
            )
            raise ConflictException(
                "Time slot unavailable: It overlaps with an existing appointment"
            )
