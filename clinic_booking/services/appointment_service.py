"""Appointment booking and lifecycle business logic."""

from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.config import Settings, settings as default_settings
from clinic_booking.core.calendar import clinic_today, day_bounds, ensure_utc, local_date, local_datetime
from clinic_booking.core.exceptions import ConflictException, NotFoundException, ValidationException
from clinic_booking.models.appointments import appointments
from clinic_booking.schemas.action_tokens import (
    ActionType,
    CancelByTokenResponse,
    RescheduleByTokenResponse,
)
from clinic_booking.schemas.appointments import (
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentUpdate,
    BookedPatient,
    BookingRequest,
    PublicAppointmentCreate,
    PublicBookingResponse,
    Shift,
    ShiftBooking,
    SlotBooking,
)
from clinic_booking.services.action_token_service import ActionTokenService
from clinic_booking.services.outbox import NotificationOutbox
from clinic_booking.services.overlap_guard import OverlapGuard
from clinic_booking.services.patient_service import PatientService
from clinic_booking.services.schedule_service import ScheduleService
from clinic_booking.services.service_catalog import ServiceCatalog
from clinic_booking.services.token_allocator import TokenAllocator

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.COMPLETED: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.CANCELLED: frozenset({AppointmentStatus.CANCELLED}),
}

TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})

CANCELLED_BY_PATIENT = "Cancelled by patient via email"


def ensure_transition_allowed(current: AppointmentStatus, new: AppointmentStatus) -> None:
    """
    Check a status change against the transition table.

    Raises:
        ConflictException: If the change is not allowed
    """
    if new not in ALLOWED_TRANSITIONS[current]:
        raise ConflictException(
            f"Cannot change appointment status from {current.value} to {new.value}"
        )


class AppointmentService:
    """Service for booking appointments and moving them through their lifecycle."""

    def __init__(self, db: AsyncSession, app_settings: Settings | None = None):
        """Initialize service with database session."""
        self.db = db
        self.settings = app_settings or default_settings
        self.tz = self.settings.clinic_tz
        self.catalog = ServiceCatalog(db)
        self.guard = OverlapGuard(db)
        self.tokens = TokenAllocator(db, self.tz)
        self.outbox = NotificationOutbox(db)
        self.schedule = ScheduleService(db, self.settings)
        self.patients = PatientService(db)
        self.action_tokens = ActionTokenService(db, self.settings)

    def _to_utc(self, value: datetime) -> datetime:
        # Naive input is a clinic wall-clock time
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz).astimezone(UTC)
        return value.astimezone(UTC)

    def _ensure_bookable_day(self, day: date) -> None:
        if day < clinic_today(self.tz):
            raise ValidationException("Appointments cannot be booked in the past")

    async def _insert_appointment(
        self,
        patient_id: UUID,
        service_id: UUID,
        start: datetime,
        end: datetime,
        shift: Shift | None,
        notes: str | None,
    ) -> Row[Any]:
        result = await self.db.execute(
            insert(appointments)
            .values(
                patient_id=patient_id,
                service_id=service_id,
                appointment_at=start,
                end_time=end,
                status=AppointmentStatus.PENDING.value,
                shift=shift.value if shift else None,
                notes=notes,
            )
            .returning(appointments)
        )
        row = result.fetchone()
        await self.outbox.enqueue(row.id, AppointmentStatus.PENDING)
        return row

    async def _book_slot(
        self,
        patient_id: UUID,
        service_id: UUID,
        start_time: datetime,
        notes: str | None,
    ) -> Row[Any]:
        start = self._to_utc(start_time)
        self._ensure_bookable_day(local_date(start, self.tz))

        await self.patients.get_patient(patient_id)
        service = await self.guard.lock_service(service_id)
        end = start + timedelta(minutes=service.duration)
        await self.guard.ensure_free(service_id, start, end)
        return await self._insert_appointment(patient_id, service_id, start, end, None, notes)

    async def _shift_start(self, day: date, shift: Shift) -> datetime:
        availability = await self.schedule.resolve(day)
        if not availability.is_open(shift):
            raise ConflictException(
                f"The {shift.value} shift is closed on {day.isoformat()}"
            )
        return local_datetime(day, availability.window(shift).start, self.tz)

    async def _book_shift(
        self,
        patient_id: UUID,
        service_id: UUID,
        day: date,
        shift: Shift,
        notes: str | None,
    ) -> Row[Any]:
        self._ensure_bookable_day(day)

        await self.patients.get_patient(patient_id)
        service = await self.catalog.get_service(service_id)
        start = await self._shift_start(day, shift)
        end = start + timedelta(minutes=service.duration)
        return await self._insert_appointment(patient_id, service_id, start, end, shift, notes)

    async def _book(
        self,
        patient_id: UUID,
        service_id: UUID,
        booking: SlotBooking | ShiftBooking,
        notes: str | None,
    ) -> Row[Any]:
        if isinstance(booking, SlotBooking):
            return await self._book_slot(patient_id, service_id, booking.appointment_at, notes)
        return await self._book_shift(patient_id, service_id, booking.date, booking.shift, notes)

    def _log_booked(self, row: Row[Any]) -> None:
        logger.info(
            "appointment_booked",
            appointment_id=str(row.id),
            service_id=str(row.service_id),
            mode="slot" if row.shift is None else "shift",
            appointment_at=ensure_utc(row.appointment_at).isoformat(),
        )

    async def book_slot_mode(
        self,
        patient_id: UUID,
        service_id: UUID,
        start_time: datetime,
        notes: str | None = None,
    ) -> AppointmentResponse:
        """
        Book an exact start time for a service.

        The service row stays locked from the overlap check until commit, so
        of two concurrent bookings for the same window only the first to
        commit succeeds.

        Args:
            patient_id: Patient ID
            service_id: Service ID
            start_time: Start; naive values are read as clinic wall-clock time
            notes: Optional notes

        Returns:
            Created appointment in pending status

        Raises:
            ValidationException: If the start lies before today
            NotFoundException: If the patient or service does not exist
            ConflictException: If the window overlaps an existing appointment
        """
        try:
            row = await self._book_slot(patient_id, service_id, start_time, notes)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        self._log_booked(row)
        return AppointmentResponse.model_validate(dict(row._mapping))

    async def book_shift_mode(
        self,
        patient_id: UUID,
        service_id: UUID,
        day: date,
        shift: Shift,
        notes: str | None = None,
    ) -> AppointmentResponse:
        """
        Book a named shift on a clinic calendar date.

        The appointment starts at the effective shift start; no per-slot
        capacity applies and the queue token is issued on confirmation.

        Args:
            patient_id: Patient ID
            service_id: Service ID
            day: Clinic calendar date
            shift: Shift to join
            notes: Optional notes

        Returns:
            Created appointment in pending status

        Raises:
            ValidationException: If the date lies before today
            NotFoundException: If the patient or service does not exist
            ConflictException: If the shift is closed on that date
        """
        try:
            row = await self._book_shift(patient_id, service_id, day, shift, notes)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        self._log_booked(row)
        return AppointmentResponse.model_validate(dict(row._mapping))

    async def create_appointment(
        self,
        patient_id: UUID,
        service_id: UUID,
        booking: BookingRequest,
        notes: str | None = None,
    ) -> AppointmentResponse:
        """Book in whichever mode the request carries."""
        if isinstance(booking, SlotBooking):
            return await self.book_slot_mode(patient_id, service_id, booking.appointment_at, notes)
        return await self.book_shift_mode(patient_id, service_id, booking.date, booking.shift, notes)

    async def book_public(self, data: PublicAppointmentCreate) -> PublicBookingResponse:
        """
        Book on behalf of a member of the public.

        The patient is found by email or registered in the same transaction
        as the appointment.

        Args:
            data: Patient details and booking

        Returns:
            Booking summary
        """
        try:
            patient, name_note = await self.patients.find_or_create(data.patient)
            notes = "\n".join(n for n in (name_note, data.notes) if n) or None
            row = await self._book(patient.id, data.service_id, data.booking, notes)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        self._log_booked(row)
        return PublicBookingResponse(
            appointment_id=row.id,
            patient=BookedPatient(
                id=patient.id,
                name=patient.name,
                email=patient.email,
                phone=patient.phone,
            ),
            scheduled_for=row.appointment_at,
            shift=row.shift,
            status=AppointmentStatus(row.status),
        )

    async def get_appointment(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
        """
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.fetchone()
        if not row:
            raise NotFoundException("Appointment not found")
        return AppointmentResponse.model_validate(dict(row._mapping))

    async def list_appointments(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Date filters select whole clinic calendar days.

        Args:
            filters: Filter and pagination parameters

        Returns:
            Paginated list of appointments, earliest first
        """
        conditions = []

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.shift:
            conditions.append(appointments.c.shift == filters.shift.value)

        if filters.from_date:
            start, _ = day_bounds(filters.from_date, self.tz)
            conditions.append(appointments.c.appointment_at >= start)

        if filters.to_date:
            _, end = day_bounds(filters.to_date, self.tz)
            conditions.append(appointments.c.appointment_at < end)

        count_stmt = select(func.count()).select_from(appointments).where(*conditions)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            select(appointments)
            .where(*conditions)
            .order_by(appointments.c.appointment_at.asc(), appointments.c.token_number.asc())
            .limit(filters.page_size)
            .offset(offset)
        )
        rows = (await self.db.execute(stmt)).fetchall()

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=[AppointmentResponse.model_validate(dict(row._mapping)) for row in rows],
        )

    async def lock_appointment(self, appointment_id: UUID) -> Row[Any]:
        """
        Lock and return an appointment row for the rest of the transaction.

        Raises:
            NotFoundException: If appointment not found
        """
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id).with_for_update()
        )
        row = result.fetchone()
        if not row:
            raise NotFoundException("Appointment not found")
        return row

    async def apply_status_change(
        self,
        row: Row[Any],
        new_status: AppointmentStatus,
        reason: str | None = None,
    ) -> Row[Any]:
        """
        Write a status change and its side effects without committing.

        Entering ``confirmed`` allocates a queue token for a shift-mode
        appointment that has none. Completing a visit retires its outstanding
        action tokens. One outbox event is recorded.

        Args:
            row: Locked appointment row whose status differs from ``new_status``
            new_status: Status to enter
            reason: Optional reason passed on to the notification

        Returns:
            Updated appointment row
        """
        now = datetime.now(UTC)
        values: dict[str, Any] = {"status": new_status.value, "updated_at": now}

        if (
            new_status == AppointmentStatus.CONFIRMED
            and row.shift is not None
            and row.token_number is None
        ):
            day = local_date(row.appointment_at, self.tz)
            values["token_number"] = await self.tokens.next_token(day, Shift(row.shift))

        if new_status == AppointmentStatus.CANCELLED:
            values["cancelled_at"] = now

        result = await self.db.execute(
            update(appointments)
            .where(appointments.c.id == row.id)
            .values(**values)
            .returning(appointments)
        )
        updated = result.fetchone()

        if new_status == AppointmentStatus.COMPLETED:
            await self.action_tokens.invalidate_for_appointment(row.id)
        await self.outbox.enqueue(row.id, new_status, reason)

        logger.info(
            "appointment_status_changed",
            appointment_id=str(row.id),
            old_status=row.status,
            new_status=new_status.value,
            token_number=updated.token_number,
        )
        return updated

    async def set_status(
        self,
        appointment_id: UUID,
        new_status: AppointmentStatus,
        reason: str | None = None,
    ) -> AppointmentResponse:
        """
        Move an appointment to a new status.

        Writing the current status again is a no-op: nothing is updated,
        allocated or notified.

        Args:
            appointment_id: Appointment ID
            new_status: Requested status
            reason: Optional reason passed on to the notification

        Returns:
            Appointment after the change

        Raises:
            NotFoundException: If appointment not found
            ConflictException: If the transition is not allowed
        """
        try:
            row = await self.lock_appointment(appointment_id)
            current = AppointmentStatus(row.status)
            ensure_transition_allowed(current, new_status)
            if current != new_status:
                row = await self.apply_status_change(row, new_status, reason)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return AppointmentResponse.model_validate(dict(row._mapping))

    async def cancel_appointment(
        self,
        appointment_id: UUID,
        reason: str | None = None,
    ) -> AppointmentResponse:
        """Cancel an appointment; the row is kept for history."""
        return await self.set_status(appointment_id, AppointmentStatus.CANCELLED, reason)

    async def _move_slot(
        self,
        row: Row[Any],
        service_id: UUID,
        target: SlotBooking | ShiftBooking | None,
    ) -> dict[str, Any]:
        if isinstance(target, ShiftBooking):
            raise ValidationException("A slot-mode appointment is moved to a new start time")

        start = ensure_utc(row.appointment_at)
        if target is not None:
            start = self._to_utc(target.appointment_at)
            self._ensure_bookable_day(local_date(start, self.tz))

        service = await self.guard.lock_service(service_id)
        end = start + timedelta(minutes=service.duration)
        await self.guard.ensure_free(service_id, start, end, exclude_appointment_id=row.id)
        return {"service_id": service_id, "appointment_at": start, "end_time": end}

    async def _move_shift(
        self,
        row: Row[Any],
        service_id: UUID,
        target: SlotBooking | ShiftBooking | None,
    ) -> dict[str, Any]:
        if isinstance(target, SlotBooking):
            raise ValidationException("A shift-mode appointment is moved to a date and shift")

        values: dict[str, Any] = {"service_id": service_id}
        start = ensure_utc(row.appointment_at)
        if target is not None:
            # Queue numbers are unique per (date, shift)
            same_queue = (
                target.date == local_date(row.appointment_at, self.tz)
                and target.shift.value == row.shift
            )
            if row.token_number is not None and not same_queue:
                raise ConflictException(
                    f"Queue token {row.token_number} belongs to the {row.shift} shift on "
                    f"{local_date(row.appointment_at, self.tz).isoformat()}; "
                    "cancel and book again to change the date or shift"
                )
            self._ensure_bookable_day(target.date)
            start = await self._shift_start(target.date, target.shift)
            values["shift"] = target.shift.value

        service = await self.catalog.get_service(service_id)
        values.update(appointment_at=start, end_time=start + timedelta(minutes=service.duration))
        return values

    async def _move(
        self,
        row: Row[Any],
        service_id: UUID,
        target: SlotBooking | ShiftBooking | None,
    ) -> dict[str, Any]:
        """Values for a new service and/or place in the day, in the appointment's own mode."""
        if row.shift is None:
            return await self._move_slot(row, service_id, target)
        return await self._move_shift(row, service_id, target)

    async def update_appointment(
        self,
        appointment_id: UUID,
        data: AppointmentUpdate,
    ) -> AppointmentResponse:
        """
        Update an existing appointment.

        A new booking must use the appointment's own mode. Changing the start
        or the service recomputes the end time and, in slot mode, re-checks
        overlaps excluding the appointment itself. A shift move lands on the
        effective shift start; a shift appointment holding a queue token keeps
        it and so cannot leave its date and shift. Completed and cancelled
        appointments cannot be modified.

        Args:
            appointment_id: Appointment ID
            data: Update data

        Returns:
            Updated appointment

        Raises:
            NotFoundException: If appointment or service not found
            ConflictException: If the appointment is terminal, the status
                change is not allowed, the new window is taken, the shift is
                closed or a queue token would change queue
            ValidationException: If the new date lies before today or the
                booking mode does not match
        """
        try:
            row = await self.lock_appointment(appointment_id)
            current = AppointmentStatus(row.status)
            if data.status is not None:
                ensure_transition_allowed(current, data.status)

            values: dict[str, Any] = {}
            moving = data.booking is not None or (
                data.service_id is not None and data.service_id != row.service_id
            )
            if current in TERMINAL_STATUSES and (moving or "notes" in data.model_fields_set):
                raise ConflictException(f"A {current.value} appointment cannot be modified")

            if moving:
                values.update(
                    await self._move(row, data.service_id or row.service_id, data.booking)
                )

            if "notes" in data.model_fields_set:
                values["notes"] = data.notes

            if values:
                values["updated_at"] = datetime.now(UTC)
                result = await self.db.execute(
                    update(appointments)
                    .where(appointments.c.id == row.id)
                    .values(**values)
                    .returning(appointments)
                )
                row = result.fetchone()

            if data.status is not None and data.status != current:
                row = await self.apply_status_change(row, data.status)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("appointment_updated", appointment_id=str(appointment_id), moved=moving)
        return AppointmentResponse.model_validate(dict(row._mapping))

    async def apply_reschedule(
        self,
        row: Row[Any],
        target: SlotBooking | ShiftBooking,
    ) -> Row[Any]:
        """
        Move an appointment and send it back for confirmation, without committing.

        The appointment moves within its own mode (with an overlap check in
        slot mode, onto an open shift in shift mode), the status returns to
        ``pending`` and any queue token is kept.

        Args:
            row: Locked, non-terminal appointment row
            target: New start time or new date and shift

        Returns:
            Updated appointment row
        """
        values = await self._move(row, row.service_id, target)
        values.update(status=AppointmentStatus.PENDING.value, updated_at=datetime.now(UTC))

        result = await self.db.execute(
            update(appointments)
            .where(appointments.c.id == row.id)
            .values(**values)
            .returning(appointments)
        )
        updated = result.fetchone()
        # Always a reschedule request, even when the status was already pending
        await self.outbox.enqueue(row.id, AppointmentStatus.PENDING, "Reschedule requested")

        logger.info(
            "appointment_rescheduled",
            appointment_id=str(row.id),
            old_start=ensure_utc(row.appointment_at).isoformat(),
            new_start=values["appointment_at"].isoformat(),
        )
        return updated

    async def redeem_cancel_token(self, token: str) -> CancelByTokenResponse:
        """
        Cancel the appointment a cancel link points to.

        The cancellation and the token's use commit together.

        Raises:
            NotFoundException: If the token does not exist
            ActionTokenException: If the token cannot be used for cancelling
        """
        try:
            validation = await self.action_tokens.require(token, ActionType.CANCEL, for_update=True)
            row = await self.lock_appointment(validation.appointment.id)
            ensure_transition_allowed(AppointmentStatus(row.status), AppointmentStatus.CANCELLED)
            await self.action_tokens.consume(token)
            row = await self.apply_status_change(row, AppointmentStatus.CANCELLED, CANCELLED_BY_PATIENT)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return CancelByTokenResponse(appointment_id=row.id, cancelled_at=row.cancelled_at)

    async def redeem_reschedule_token(
        self,
        token: str,
        target: SlotBooking | ShiftBooking,
    ) -> RescheduleByTokenResponse:
        """
        Move the appointment a reschedule link points to.

        Raises:
            NotFoundException: If the token does not exist
            ActionTokenException: If the token cannot be used for rescheduling
            ConflictException: If the appointment is completed, the new window
                is taken, the shift is closed or a queue token would change queue
            ValidationException: If the new date lies before today or the
                booking mode does not match
        """
        try:
            validation = await self.action_tokens.require(
                token, ActionType.RESCHEDULE, for_update=True
            )
            row = await self.lock_appointment(validation.appointment.id)
            if AppointmentStatus(row.status) in TERMINAL_STATUSES:
                raise ConflictException(f"A {row.status} appointment cannot be rescheduled")
            await self.action_tokens.consume(token)
            row = await self.apply_reschedule(row, target)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return RescheduleByTokenResponse(
            appointment=AppointmentResponse.model_validate(dict(row._mapping))
        )
