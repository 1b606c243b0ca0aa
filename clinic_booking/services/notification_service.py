"""Post-commit delivery of appointment notifications from the outbox."""

from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_booking.config import Settings, settings as default_settings
from clinic_booking.core.calendar import ensure_utc
from clinic_booking.core.exceptions import NotFoundException
from clinic_booking.models.action_tokens import action_tokens
from clinic_booking.models.appointments import appointments
from clinic_booking.models.notification_outbox import notification_outbox
from clinic_booking.models.patients import patients
from clinic_booking.models.services import services
from clinic_booking.schemas.action_tokens import ActionType
from clinic_booking.schemas.appointments import AppointmentResponse, AppointmentStatus
from clinic_booking.schemas.notifications import (
    AppointmentNotice,
    DrainResult,
    OutboxEvent,
    OutboxStatus,
)
from clinic_booking.services.action_token_service import ActionTokenService

logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    """Outbound channel to patients (email, SMS, ...)."""

    async def notify_requested(self, notice: AppointmentNotice) -> None:
        """Tell the patient their request was received."""
        ...

    async def notify_confirmed(self, notice: AppointmentNotice) -> None:
        """Tell the patient their appointment is confirmed."""
        ...

    async def notify_cancelled(self, notice: AppointmentNotice, reason: str | None) -> None:
        """Tell the patient their appointment was cancelled."""
        ...


class LoggingNotifier:
    """Notifier that only writes structured log entries."""

    async def notify_requested(self, notice: AppointmentNotice) -> None:
        """Log a received request."""
        logger.info(
            "notification_requested",
            appointment_id=str(notice.appointment.id),
            email=notice.patient_email,
            start=notice.local_start,
        )

    async def notify_confirmed(self, notice: AppointmentNotice) -> None:
        """Log a confirmation together with its action links."""
        logger.info(
            "notification_confirmed",
            appointment_id=str(notice.appointment.id),
            email=notice.patient_email,
            start=notice.local_start,
            token_number=notice.appointment.token_number,
            cancel_url=notice.cancel_url,
            reschedule_url=notice.reschedule_url,
        )

    async def notify_cancelled(self, notice: AppointmentNotice, reason: str | None) -> None:
        """Log a cancellation."""
        logger.info(
            "notification_cancelled",
            appointment_id=str(notice.appointment.id),
            email=notice.patient_email,
            reason=reason,
        )


class NotificationDispatcher:
    """
    Drains pending outbox events into a notifier.

    Each event is claimed in its own session. Action links are stored and
    the event marked sent in one commit before the notifier is called, so a
    delivered link always refers to a stored token. A failing notifier never
    affects the appointment: the links it was given are withdrawn and the
    event is retried until ``outbox_max_attempts`` is reached.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        app_settings: Settings | None = None,
    ):
        """Initialize dispatcher with a session factory and notifier."""
        self.session_factory = session_factory
        self.notifier = notifier
        self.settings = app_settings or default_settings

    async def _pending_ids(self, limit: int) -> list[UUID]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(notification_outbox.c.id)
                .where(notification_outbox.c.status == OutboxStatus.PENDING.value)
                .order_by(notification_outbox.c.created_at.asc())
                .limit(limit)
            )
            return [row.id for row in result]

    async def _claim(self, session: AsyncSession, event_id: UUID) -> OutboxEvent | None:
        result = await session.execute(
            select(notification_outbox)
            .where(
                notification_outbox.c.id == event_id,
                notification_outbox.c.status == OutboxStatus.PENDING.value,
            )
            .with_for_update(skip_locked=True)
        )
        row = result.fetchone()
        return OutboxEvent.model_validate(dict(row._mapping)) if row else None

    async def _load_details(self, session: AsyncSession, appointment_id: UUID) -> Row[Any]:
        result = await session.execute(
            select(
                appointments,
                patients.c.name.label("patient_name"),
                patients.c.email.label("patient_email"),
                patients.c.phone.label("patient_phone"),
                services.c.name.label("service_name"),
            )
            .join(patients, patients.c.id == appointments.c.patient_id)
            .join(services, services.c.id == appointments.c.service_id)
            .where(appointments.c.id == appointment_id)
        )
        row = result.fetchone()
        if row is None:
            raise NotFoundException("Appointment not found")
        return row

    def _notice(self, row: Row[Any], **links: str) -> AppointmentNotice:
        mapping = dict(row._mapping)
        local_start = ensure_utc(row.appointment_at).astimezone(self.settings.clinic_tz)
        return AppointmentNotice(
            appointment=AppointmentResponse.model_validate(mapping),
            patient_name=row.patient_name,
            patient_email=row.patient_email,
            patient_phone=row.patient_phone,
            service_name=row.service_name,
            local_start=local_start.strftime("%a %d %b %Y, %H:%M"),
            **links,
        )

    def _action_url(self, action: ActionType, token: str) -> str:
        return f"{self.settings.frontend_url.rstrip('/')}/appointment/{action.value}?token={token}"

    async def _prepare(
        self,
        session: AsyncSession,
        event: OutboxEvent,
    ) -> tuple[AppointmentNotice, list[UUID]]:
        details = await self._load_details(session, event.appointment_id)
        if AppointmentStatus(event.event_type) != AppointmentStatus.CONFIRMED:
            return self._notice(details), []

        token_service = ActionTokenService(session, self.settings)
        cancel = await token_service.issue(event.appointment_id, ActionType.CANCEL)
        reschedule = await token_service.issue(event.appointment_id, ActionType.RESCHEDULE)
        notice = self._notice(
            details,
            cancel_url=self._action_url(ActionType.CANCEL, cancel.token),
            reschedule_url=self._action_url(ActionType.RESCHEDULE, reschedule.token),
        )
        return notice, [cancel.id, reschedule.id]

    async def _send(self, event: OutboxEvent, notice: AppointmentNotice) -> None:
        status = AppointmentStatus(event.event_type)

        if status == AppointmentStatus.PENDING:
            await self.notifier.notify_requested(notice)
        elif status == AppointmentStatus.CONFIRMED:
            await self.notifier.notify_confirmed(notice)
        elif status == AppointmentStatus.CANCELLED:
            await self.notifier.notify_cancelled(notice, event.reason)
        # Completed visits are recorded but not announced

    async def _record_failure(
        self,
        session: AsyncSession,
        event: OutboxEvent,
        error: str,
        result: DrainResult,
        issued: list[UUID] | None = None,
    ) -> None:
        attempts = event.attempts + 1
        exhausted = attempts >= self.settings.outbox_max_attempts

        # Links that never reached the patient are withdrawn
        if issued:
            await session.execute(delete(action_tokens).where(action_tokens.c.id.in_(issued)))
        await session.execute(
            update(notification_outbox)
            .where(notification_outbox.c.id == event.id)
            .values(
                status=(OutboxStatus.FAILED if exhausted else OutboxStatus.PENDING).value,
                attempts=attempts,
                last_error=error,
                processed_at=datetime.now(UTC) if exhausted else None,
            )
        )
        await session.commit()

        if exhausted:
            result.failed += 1
        else:
            result.retrying += 1
        logger.warning(
            "notification_failed",
            event_id=str(event.id),
            appointment_id=str(event.appointment_id),
            event_type=event.event_type,
            attempts=attempts,
            error=error,
        )

    async def _process(self, event_id: UUID, result: DrainResult) -> None:
        async with self.session_factory() as session:
            event = await self._claim(session, event_id)
            if event is None:
                return

            # Issued links and the sent mark are stored before the notifier runs
            try:
                notice, issued = await self._prepare(session, event)
                await session.execute(
                    update(notification_outbox)
                    .where(notification_outbox.c.id == event.id)
                    .values(
                        status=OutboxStatus.SENT.value,
                        attempts=event.attempts + 1,
                        last_error=None,
                        processed_at=datetime.now(UTC),
                    )
                )
                await session.commit()
            except Exception as e:
                await session.rollback()
                await self._record_failure(session, event, str(e) or type(e).__name__, result)
                return

            try:
                await self._send(event, notice)
            except Exception as e:
                await self._record_failure(
                    session, event, str(e) or type(e).__name__, result, issued
                )
                return

            result.sent += 1

    async def drain(self, limit: int | None = None) -> DrainResult:
        """
        Deliver pending events, oldest first.

        Args:
            limit: Maximum number of events; defaults to ``outbox_batch_size``

        Returns:
            Counts of sent, retrying and failed events
        """
        result = DrainResult()
        for event_id in await self._pending_ids(limit or self.settings.outbox_batch_size):
            await self._process(event_id, result)

        if result.sent or result.retrying or result.failed:
            logger.info("outbox_drained", **result.model_dump())
        return result


async def drain_outbox(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
) -> DrainResult:
    """Drain the outbox once; used as a FastAPI background task."""
    return await NotificationDispatcher(session_factory, notifier).drain()
