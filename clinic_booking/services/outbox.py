"""Transactional notification outbox writer."""

from uuid import UUID

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.models.notification_outbox import notification_outbox
from clinic_booking.schemas.appointments import AppointmentStatus


class NotificationOutbox:
    """Appends notification events inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        """Initialize outbox with database session."""
        self.db = db

    async def enqueue(
        self,
        appointment_id: UUID,
        status: AppointmentStatus,
        reason: str | None = None,
    ) -> None:
        """
        Record that an appointment entered ``status``.

        The event becomes visible to the dispatcher only when the caller commits.
        """
        await self.db.execute(
            insert(notification_outbox).values(
                appointment_id=appointment_id,
                event_type=status.value,
                reason=reason,
            )
        )
