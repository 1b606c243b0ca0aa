"""Tests for cancel and reschedule links."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from clinic_booking.config import settings
from clinic_booking.core.calendar import ensure_utc, local_date
from clinic_booking.core.exceptions import (
    ActionTokenException,
    ActionTokenReason,
    ConflictException,
    NotFoundException,
    ValidationException,
)
from clinic_booking.models import action_tokens, notification_outbox
from clinic_booking.schemas.action_tokens import ActionTokenRecord, ActionType
from clinic_booking.schemas.appointments import AppointmentStatus, Shift, ShiftBooking, SlotBooking
from clinic_booking.schemas.schedule import ScheduleExceptionUpsert
from clinic_booking.services.action_token_service import ActionTokenService, token_refusal
from clinic_booking.services.appointment_service import CANCELLED_BY_PATIENT, AppointmentService
from clinic_booking.services.schedule_service import ScheduleService
from tests.conftest import BOOKING_DAY, clinic_time

NOW = datetime(2031, 6, 1, 12, 0, tzinfo=UTC)


def slot_at(hour) -> SlotBooking:
    return SlotBooking(appointment_at=clinic_time(BOOKING_DAY, hour))


def make_record(used_at=None, expires_at=NOW + timedelta(hours=1)) -> ActionTokenRecord:
    return ActionTokenRecord(
        id=uuid4(),
        token="opaque",
        appointment_id=uuid4(),
        action_type=ActionType.CANCEL,
        expires_at=expires_at,
        used_at=used_at,
    )


def test_refusal_priority():
    """Used beats expired, expired beats a cancelled appointment."""
    used_and_expired = make_record(used_at=NOW, expires_at=NOW - timedelta(hours=1))
    expired = make_record(expires_at=NOW - timedelta(seconds=1))

    assert token_refusal(used_and_expired, AppointmentStatus.CANCELLED, NOW) == (
        ActionTokenReason.TOKEN_ALREADY_USED
    )
    assert token_refusal(expired, AppointmentStatus.CANCELLED, NOW) == ActionTokenReason.TOKEN_EXPIRED
    assert token_refusal(make_record(), AppointmentStatus.CANCELLED, NOW) == (
        ActionTokenReason.APPOINTMENT_CANCELLED
    )
    assert token_refusal(make_record(), AppointmentStatus.CONFIRMED, NOW) is None


async def confirmed_appointment(db_session, service_id, patient_id, hour=10):
    service = AppointmentService(db_session)
    appointment = await service.book_slot_mode(patient_id, service_id, clinic_time(BOOKING_DAY, hour))
    return await service.set_status(appointment.id, AppointmentStatus.CONFIRMED)


async def issue(db_session, appointment_id, action_type) -> str:
    record = await ActionTokenService(db_session).issue(appointment_id, action_type)
    await db_session.commit()
    return record.token


async def expire(db_session, token, hours_ago=1) -> None:
    await db_session.execute(
        update(action_tokens)
        .where(action_tokens.c.token == token)
        .values(expires_at=datetime.now(UTC) - timedelta(hours=hours_ago))
    )
    await db_session.commit()


@pytest.mark.asyncio
async def test_issue_sets_expiry(db_session, consultation, patient):
    """New tokens are unused, long and expire a day later."""
    appointment = await confirmed_appointment(db_session, consultation, patient)

    record = await ActionTokenService(db_session).issue(appointment.id, ActionType.CANCEL)
    await db_session.commit()

    assert record.used_at is None
    assert len(record.token) >= 32
    lifetime = ensure_utc(record.expires_at) - datetime.now(UTC)
    assert timedelta(hours=23) < lifetime <= timedelta(hours=24)


@pytest.mark.asyncio
async def test_tokens_are_unique(db_session, consultation, patient):
    """Two issues never produce the same token."""
    appointment = await confirmed_appointment(db_session, consultation, patient)

    first = await issue(db_session, appointment.id, ActionType.CANCEL)
    second = await issue(db_session, appointment.id, ActionType.CANCEL)

    assert first != second


@pytest.mark.asyncio
async def test_cancel_by_token(db_session, consultation, patient):
    """Redeeming a cancel link cancels once; the link then reads as used."""
    appointment = await confirmed_appointment(db_session, consultation, patient)
    token = await issue(db_session, appointment.id, ActionType.CANCEL)
    service = AppointmentService(db_session)

    result = await service.redeem_cancel_token(token)

    assert result.appointment_id == appointment.id
    assert (await service.get_appointment(appointment.id)).status == AppointmentStatus.CANCELLED

    with pytest.raises(ActionTokenException) as exc_info:
        await service.redeem_cancel_token(token)
    assert exc_info.value.reason == ActionTokenReason.TOKEN_ALREADY_USED


@pytest.mark.asyncio
async def test_cancel_by_token_records_reason(db_session, consultation, patient):
    """The cancellation event carries the patient reason."""
    appointment = await confirmed_appointment(db_session, consultation, patient)
    token = await issue(db_session, appointment.id, ActionType.CANCEL)

    await AppointmentService(db_session).redeem_cancel_token(token)

    result = await db_session.execute(
        select(notification_outbox.c.reason).where(
            notification_outbox.c.appointment_id == appointment.id,
            notification_outbox.c.event_type == "cancelled",
        )
    )
    assert result.scalar_one() == CANCELLED_BY_PATIENT


@pytest.mark.asyncio
async def test_expired_token(db_session, consultation, patient):
    """Expired links are refused and change nothing."""
    appointment = await confirmed_appointment(db_session, consultation, patient)
    token = await issue(db_session, appointment.id, ActionType.CANCEL)
    await expire(db_session, token)
    service = AppointmentService(db_session)

    with pytest.raises(ActionTokenException) as exc_info:
        await service.redeem_cancel_token(token)

    assert exc_info.value.reason == ActionTokenReason.TOKEN_EXPIRED
    assert (await service.get_appointment(appointment.id)).status == AppointmentStatus.CONFIRMED


@pytest.mark.asyncio
async def test_token_for_staff_cancelled_appointment(db_session, consultation, patient):
    """A link to an appointment the clinic already cancelled says so."""
    appointment = await confirmed_appointment(db_session, consultation, patient)
    token = await issue(db_session, appointment.id, ActionType.RESCHEDULE)
    service = AppointmentService(db_session)
    await service.cancel_appointment(appointment.id, reason="Clinic closed")

    validation = await ActionTokenService(db_session).validate(token)
    assert validation.valid is False
    assert validation.reason == ActionTokenReason.APPOINTMENT_CANCELLED

    with pytest.raises(ActionTokenException) as exc_info:
        await service.redeem_reschedule_token(token, slot_at(15))
    assert exc_info.value.reason == ActionTokenReason.APPOINTMENT_CANCELLED


@pytest.mark.asyncio
async def test_completion_retires_tokens(db_session, consultation, patient):
    """Links stop working once the visit is completed."""
    appointment = await confirmed_appointment(db_session, consultation, patient)
    token = await issue(db_session, appointment.id, ActionType.CANCEL)
    service = AppointmentService(db_session)
    await service.set_status(appointment.id, AppointmentStatus.COMPLETED)

    with pytest.raises(ActionTokenException) as exc_info:
        await service.redeem_cancel_token(token)

    assert exc_info.value.reason == ActionTokenReason.TOKEN_ALREADY_USED


@pytest.mark.asyncio
async def test_wrong_action_type(db_session, consultation, patient):
    """A cancel link cannot reschedule and a reschedule link cannot cancel."""
    appointment = await confirmed_appointment(db_session, consultation, patient)
    cancel_token = await issue(db_session, appointment.id, ActionType.CANCEL)
    reschedule_token = await issue(db_session, appointment.id, ActionType.RESCHEDULE)
    service = AppointmentService(db_session)

    with pytest.raises(ActionTokenException) as exc_info:
        await service.redeem_reschedule_token(cancel_token, slot_at(15))
    assert exc_info.value.reason == ActionTokenReason.WRONG_ACTION_TYPE

    with pytest.raises(ActionTokenException) as exc_info:
        await service.redeem_cancel_token(reschedule_token)
    assert exc_info.value.reason == ActionTokenReason.WRONG_ACTION_TYPE

    validation = await ActionTokenService(db_session).validate(cancel_token)
    assert validation.valid is True


@pytest.mark.asyncio
async def test_unknown_token(db_session):
    """Tokens that were never issued are not found."""
    with pytest.raises(NotFoundException):
        await AppointmentService(db_session).redeem_cancel_token("no-such-token")


@pytest.mark.asyncio
async def test_reschedule_by_token(db_session, consultation, patient):
    """Rescheduling moves the visit and sends it back for confirmation."""
    appointment = await confirmed_appointment(db_session, consultation, patient)
    token = await issue(db_session, appointment.id, ActionType.RESCHEDULE)
    new_start = clinic_time(BOOKING_DAY + timedelta(days=1), 15)

    result = await AppointmentService(db_session).redeem_reschedule_token(
        token, SlotBooking(appointment_at=new_start)
    )

    moved = result.appointment
    assert moved.status == AppointmentStatus.PENDING
    assert ensure_utc(moved.appointment_at) == new_start.astimezone(UTC)
    assert ensure_utc(moved.end_time) == (new_start + timedelta(minutes=30)).astimezone(UTC)

    validation = await ActionTokenService(db_session).validate(token)
    assert validation.reason == ActionTokenReason.TOKEN_ALREADY_USED


@pytest.mark.asyncio
async def test_reschedule_keeps_queue_token(db_session, consultation, patient):
    """A shift appointment keeps its queue number when it stays in its queue."""
    service = AppointmentService(db_session)
    appointment = await service.book_shift_mode(patient, consultation, BOOKING_DAY, Shift.MORNING)
    confirmed = await service.set_status(appointment.id, AppointmentStatus.CONFIRMED)
    token = await issue(db_session, appointment.id, ActionType.RESCHEDULE)

    result = await service.redeem_reschedule_token(
        token, ShiftBooking(date=BOOKING_DAY, shift=Shift.MORNING)
    )

    assert confirmed.token_number == 1
    assert result.appointment.token_number == 1
    assert result.appointment.status == AppointmentStatus.PENDING
    assert ensure_utc(result.appointment.appointment_at) == clinic_time(BOOKING_DAY, 9).astimezone(UTC)


@pytest.mark.asyncio
async def test_reschedule_token_holder_to_another_day(db_session, consultation, patient):
    """A numbered shift appointment cannot carry its number into another day's queue."""
    service = AppointmentService(db_session)
    next_day = BOOKING_DAY + timedelta(days=1)
    first = await service.book_shift_mode(patient, consultation, BOOKING_DAY, Shift.MORNING)
    await service.set_status(first.id, AppointmentStatus.CONFIRMED)
    other = await service.book_shift_mode(patient, consultation, next_day, Shift.MORNING)
    other = await service.set_status(other.id, AppointmentStatus.CONFIRMED)
    token = await issue(db_session, first.id, ActionType.RESCHEDULE)

    with pytest.raises(ConflictException):
        await service.redeem_reschedule_token(token, ShiftBooking(date=next_day, shift=Shift.MORNING))
    with pytest.raises(ConflictException):
        await service.redeem_reschedule_token(
            token, ShiftBooking(date=BOOKING_DAY, shift=Shift.EVENING)
        )

    stored = await service.get_appointment(first.id)
    assert stored.token_number == 1
    assert stored.status == AppointmentStatus.CONFIRMED
    assert local_date(stored.appointment_at, settings.clinic_tz) == BOOKING_DAY
    assert other.token_number == 1
    assert (await ActionTokenService(db_session).validate(token)).valid is True


@pytest.mark.asyncio
async def test_reschedule_shift_needs_date_and_shift(db_session, consultation, patient):
    """A shift appointment cannot be moved to an exact time."""
    service = AppointmentService(db_session)
    appointment = await service.book_shift_mode(patient, consultation, BOOKING_DAY, Shift.MORNING)
    token = await issue(db_session, appointment.id, ActionType.RESCHEDULE)

    with pytest.raises(ValidationException):
        await service.redeem_reschedule_token(
            token, SlotBooking(appointment_at=clinic_time(BOOKING_DAY + timedelta(days=1), 23, 30))
        )

    stored = await service.get_appointment(appointment.id)
    assert ensure_utc(stored.appointment_at) == ensure_utc(appointment.appointment_at)


@pytest.mark.asyncio
async def test_reschedule_pending_shift_to_new_queue(db_session, consultation, patient):
    """An unnumbered shift appointment moves to the new shift's start and queues there."""
    service = AppointmentService(db_session)
    next_day = BOOKING_DAY + timedelta(days=1)
    waiting = await service.book_shift_mode(patient, consultation, BOOKING_DAY, Shift.MORNING)
    ahead = await service.book_shift_mode(patient, consultation, next_day, Shift.EVENING)
    await service.set_status(ahead.id, AppointmentStatus.CONFIRMED)
    token = await issue(db_session, waiting.id, ActionType.RESCHEDULE)

    result = await service.redeem_reschedule_token(
        token, ShiftBooking(date=next_day, shift=Shift.EVENING)
    )
    moved = result.appointment
    assert moved.shift == Shift.EVENING
    assert ensure_utc(moved.appointment_at) == clinic_time(next_day, 17).astimezone(UTC)
    assert ensure_utc(moved.end_time) == clinic_time(next_day, 17, 30).astimezone(UTC)

    confirmed = await service.set_status(waiting.id, AppointmentStatus.CONFIRMED)
    assert confirmed.token_number == 2


@pytest.mark.asyncio
async def test_reschedule_into_closed_shift(db_session, consultation, patient):
    """A shift closed by an exception cannot be rescheduled into."""
    service = AppointmentService(db_session)
    appointment = await service.book_shift_mode(patient, consultation, BOOKING_DAY, Shift.MORNING)
    token = await issue(db_session, appointment.id, ActionType.RESCHEDULE)
    await ScheduleService(db_session).upsert_exception(
        ScheduleExceptionUpsert(date=BOOKING_DAY, is_evening_open=False, reason="Staff training")
    )

    with pytest.raises(ConflictException):
        await service.redeem_reschedule_token(
            token, ShiftBooking(date=BOOKING_DAY, shift=Shift.EVENING)
        )

    assert (await ActionTokenService(db_session).validate(token)).valid is True



@pytest.mark.asyncio
async def test_reschedule_conflict_keeps_token(db_session, consultation, patient):
    """A refused move leaves the link usable."""
    await confirmed_appointment(db_session, consultation, patient, hour=10)
    second = await confirmed_appointment(db_session, consultation, patient, hour=12)
    token = await issue(db_session, second.id, ActionType.RESCHEDULE)
    service = AppointmentService(db_session)

    with pytest.raises(ConflictException):
        await service.redeem_reschedule_token(token, slot_at(10))

    validation = await ActionTokenService(db_session).validate(token)
    assert validation.valid is True
    stored = await service.get_appointment(second.id)
    assert stored.status == AppointmentStatus.CONFIRMED


@pytest.mark.asyncio
async def test_cleanup_expired(db_session, consultation, patient):
    """Only tokens expired longer than the grace period are purged."""
    appointment = await confirmed_appointment(db_session, consultation, patient)
    stale = await issue(db_session, appointment.id, ActionType.CANCEL)
    recent = await issue(db_session, appointment.id, ActionType.CANCEL)
    fresh = await issue(db_session, appointment.id, ActionType.RESCHEDULE)
    await expire(db_session, stale, hours_ago=72)
    await expire(db_session, recent, hours_ago=1)

    purged = await ActionTokenService(db_session).cleanup_expired()

    assert purged == 1
    with pytest.raises(NotFoundException):
        await ActionTokenService(db_session).validate(stale)
    assert (await ActionTokenService(db_session).validate(recent)).reason == (
        ActionTokenReason.TOKEN_EXPIRED
    )
    assert (await ActionTokenService(db_session).validate(fresh)).valid is True
