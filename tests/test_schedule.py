"""Tests for shift configuration, date exceptions and resolution."""

from datetime import UTC, date, datetime, time
from uuid import uuid4

import pytest
from pydantic import ValidationError

from clinic_booking.config import settings
from clinic_booking.core.exceptions import NotFoundException
from clinic_booking.schemas.appointments import Shift
from clinic_booking.schemas.schedule import (
    ScheduleConfigData,
    ScheduleConfigUpdate,
    ScheduleExceptionResponse,
    ScheduleExceptionUpsert,
    ShiftWindow,
)
from clinic_booking.services.schedule_service import (
    ScheduleService,
    default_config,
    resolve_shift_availability,
)

MORNING = ShiftWindow(start=time(9, 0), end=time(13, 0))
EVENING = ShiftWindow(start=time(17, 0), end=time(21, 0))


def make_config(morning_enabled: bool = True, evening_enabled: bool = True) -> ScheduleConfigData:
    return ScheduleConfigData(
        morning_enabled=morning_enabled,
        morning_window=MORNING,
        evening_enabled=evening_enabled,
        evening_window=EVENING,
    )


def make_exception(day: date, **values) -> ScheduleExceptionResponse:
    now = datetime.now(UTC)
    return ScheduleExceptionResponse(id=uuid4(), date=day, created_at=now, updated_at=now, **values)


def test_exception_opens_shift_disabled_globally():
    """A date exception overrides the global configuration."""
    day = date(2025, 6, 1)
    config = make_config(morning_enabled=False)
    exception = make_exception(day, is_morning_open=True)

    resolved = resolve_shift_availability(day, config, exception)

    assert resolved.morning_open is True
    assert resolved.evening_open is True


def test_no_exception_uses_global_configuration():
    """Without an exception the global flags and windows apply."""
    day = date(2031, 6, 2)
    resolved = resolve_shift_availability(day, make_config(evening_enabled=False), None)

    assert resolved.is_open(Shift.MORNING) is True
    assert resolved.is_open(Shift.EVENING) is False
    assert resolved.window(Shift.MORNING) == MORNING
    assert resolved.exception_reason is None


def test_exception_without_flag_keeps_global_setting():
    """An unset flag inherits, only the set one overrides."""
    day = date(2031, 12, 25)
    exception = make_exception(day, is_evening_open=False, reason="Christmas")

    resolved = resolve_shift_availability(day, make_config(), exception)

    assert resolved.morning_open is True
    assert resolved.evening_open is False
    assert resolved.exception_reason == "Christmas"


def test_exception_custom_window():
    """Custom hours replace the default window of that shift only."""
    day = date(2031, 6, 3)
    exception = make_exception(
        day,
        morning_start_time=time(10, 0),
        morning_end_time=time(12, 0),
    )

    resolved = resolve_shift_availability(day, make_config(), exception)

    assert resolved.morning_window == ShiftWindow(start=time(10, 0), end=time(12, 0))
    assert resolved.evening_window == EVENING


def test_shift_window_must_open_before_closing():
    """Inverted windows are rejected."""
    with pytest.raises(ValidationError):
        ShiftWindow(start=time(13, 0), end=time(9, 0))


def test_exception_upsert_requires_both_window_ends():
    """A custom window needs a start and an end."""
    with pytest.raises(ValidationError):
        ScheduleExceptionUpsert(date=date(2031, 6, 3), evening_start_time=time(18, 0))


@pytest.mark.asyncio
async def test_load_config_defaults(db_session):
    """Settings defaults apply until a configuration is saved."""
    config = await ScheduleService(db_session).load_config()

    assert config == default_config(settings)


@pytest.mark.asyncio
async def test_update_config(db_session):
    """Saving twice keeps a single configuration row."""
    service = ScheduleService(db_session)
    update = ScheduleConfigUpdate(
        morning_shift_enabled=False,
        morning_start_time=time(8, 0),
        morning_end_time=time(12, 0),
        evening_shift_enabled=True,
        evening_start_time=time(16, 0),
        evening_end_time=time(20, 0),
    )

    await service.update_config(update)
    await service.update_config(update.model_copy(update={"morning_shift_enabled": True}))
    config = await service.load_config()

    assert config.morning_enabled is True
    assert config.morning_window.start == time(8, 0)
    assert config.evening_window.end == time(20, 0)


@pytest.mark.asyncio
async def test_upsert_exception_replaces_by_date(db_session):
    """Upserting the same date updates the existing exception."""
    service = ScheduleService(db_session)
    day = date(2031, 8, 15)

    first = await service.upsert_exception(
        ScheduleExceptionUpsert(date=day, is_morning_open=False, reason="Holiday")
    )
    second = await service.upsert_exception(
        ScheduleExceptionUpsert(date=day, is_morning_open=False, is_evening_open=False)
    )

    assert second.id == first.id
    assert second.is_evening_open is False
    assert second.reason is None

    exceptions = await service.list_exceptions(from_date=date(2031, 1, 1))
    assert [e.date for e in exceptions] == [day]


@pytest.mark.asyncio
async def test_resolve_reads_stored_exception(db_session):
    """Resolution combines the stored configuration and exception."""
    service = ScheduleService(db_session)
    day = date(2031, 8, 15)
    await service.upsert_exception(
        ScheduleExceptionUpsert(
            date=day,
            is_evening_open=True,
            evening_start_time=time(18, 0),
            evening_end_time=time(20, 0),
        )
    )

    resolved = await service.resolve(day)

    assert resolved.morning_open is True
    assert resolved.evening_window.start == time(18, 0)


@pytest.mark.asyncio
async def test_list_exceptions_skips_earlier_dates(db_session):
    """Only exceptions on or after the start date are listed, in order."""
    service = ScheduleService(db_session)
    for day in (date(2031, 3, 1), date(2031, 1, 1), date(2031, 2, 1)):
        await service.upsert_exception(ScheduleExceptionUpsert(date=day, is_morning_open=False))

    exceptions = await service.list_exceptions(from_date=date(2031, 1, 15))

    assert [e.date for e in exceptions] == [date(2031, 2, 1), date(2031, 3, 1)]


@pytest.mark.asyncio
async def test_delete_exception(db_session):
    """Deleting removes the exception; a second delete is not found."""
    service = ScheduleService(db_session)
    stored = await service.upsert_exception(
        ScheduleExceptionUpsert(date=date(2031, 9, 1), is_morning_open=False)
    )

    await service.delete_exception(stored.id)

    assert await service.get_exception_by_date(date(2031, 9, 1)) is None
    with pytest.raises(NotFoundException):
        await service.delete_exception(stored.id)
