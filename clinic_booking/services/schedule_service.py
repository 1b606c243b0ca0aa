"""Clinic schedule configuration, date exceptions and shift resolution."""

from datetime import UTC, date, datetime
from uuid import UUID

import structlog
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.config import Settings, settings as default_settings
from clinic_booking.core.calendar import clinic_today
from clinic_booking.core.exceptions import ConflictException, NotFoundException
from clinic_booking.models.schedule import SCHEDULE_CONFIG_ID, schedule_config, schedule_exceptions
from clinic_booking.schemas.appointments import Shift
from clinic_booking.schemas.schedule import (
    ScheduleConfigData,
    ScheduleConfigUpdate,
    ScheduleExceptionResponse,
    ScheduleExceptionUpsert,
    ShiftAvailability,
    ShiftWindow,
)

logger = structlog.get_logger(__name__)


def default_config(app_settings: Settings) -> ScheduleConfigData:
    """Configuration used until the clinic saves its own."""
    return ScheduleConfigData(
        morning_enabled=True,
        morning_window=ShiftWindow(
            start=app_settings.default_morning_start,
            end=app_settings.default_morning_end,
        ),
        evening_enabled=True,
        evening_window=ShiftWindow(
            start=app_settings.default_evening_start,
            end=app_settings.default_evening_end,
        ),
    )


def resolve_shift_availability(
    day: date,
    config: ScheduleConfigData,
    exception: ScheduleExceptionResponse | None,
) -> ShiftAvailability:
    """
    Resolve the effective opening rule of a date.

    For each shift an exception's open flag and custom window take precedence
    over the global configuration; a missing exception, flag or window falls
    back to the global value.

    Args:
        day: Clinic calendar date
        config: Global shift configuration
        exception: Exception stored for ``day``, if any

    Returns:
        Open flags and windows for both shifts
    """
    resolved: dict[str, object] = {}
    for shift in Shift:
        is_open = config.is_enabled(shift)
        window = config.window(shift)
        if exception is not None:
            flag = exception.open_flag(shift)
            if flag is not None:
                is_open = flag
            window = exception.custom_window(shift) or window
        resolved[f"{shift.value}_open"] = is_open
        resolved[f"{shift.value}_window"] = window

    return ShiftAvailability(
        date=day,
        exception_reason=exception.reason if exception else None,
        **resolved,  # type: ignore[arg-type]
    )


class ScheduleService:
    """Service for the clinic's opening configuration."""

    def __init__(self, db: AsyncSession, app_settings: Settings | None = None):
        """Initialize service with database session."""
        self.db = db
        self.settings = app_settings or default_settings

    async def load_config(self) -> ScheduleConfigData:
        """
        Load the global shift configuration.

        Returns:
            Stored configuration, or the settings defaults when none is stored
        """
        result = await self.db.execute(
            select(schedule_config).where(schedule_config.c.id == SCHEDULE_CONFIG_ID)
        )
        row = result.fetchone()
        if row is None:
            return default_config(self.settings)

        return ScheduleConfigData(
            morning_enabled=row.morning_enabled,
            morning_window=ShiftWindow(start=row.morning_start_time, end=row.morning_end_time),
            evening_enabled=row.evening_enabled,
            evening_window=ShiftWindow(start=row.evening_start_time, end=row.evening_end_time),
        )

    async def update_config(self, data: ScheduleConfigUpdate) -> ScheduleConfigData:
        """
        Replace the global shift configuration.

        Args:
            data: New shift flags and windows

        Returns:
            Saved configuration
        """
        config = data.to_config()
        values = {
            "morning_enabled": config.morning_enabled,
            "morning_start_time": config.morning_window.start,
            "morning_end_time": config.morning_window.end,
            "evening_enabled": config.evening_enabled,
            "evening_start_time": config.evening_window.start,
            "evening_end_time": config.evening_window.end,
            "updated_at": datetime.now(UTC),
        }

        try:
            result = await self.db.execute(
                update(schedule_config)
                .where(schedule_config.c.id == SCHEDULE_CONFIG_ID)
                .values(**values)
            )
            if result.rowcount == 0:
                await self.db.execute(
                    insert(schedule_config).values(id=SCHEDULE_CONFIG_ID, **values)
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "schedule_config_updated",
            morning_enabled=config.morning_enabled,
            evening_enabled=config.evening_enabled,
        )
        return config

    async def get_exception_by_date(self, day: date) -> ScheduleExceptionResponse | None:
        """Get the exception stored for a date, if any."""
        result = await self.db.execute(
            select(schedule_exceptions).where(schedule_exceptions.c.date == day)
        )
        row = result.fetchone()
        if row is None:
            return None
        return ScheduleExceptionResponse.model_validate(dict(row._mapping))

    async def list_exceptions(self, from_date: date | None = None) -> list[ScheduleExceptionResponse]:
        """
        List exceptions from a date onwards.

        Args:
            from_date: First date to include; defaults to today on the clinic calendar

        Returns:
            Exceptions ordered by date
        """
        start = from_date or clinic_today(self.settings.clinic_tz)
        result = await self.db.execute(
            select(schedule_exceptions)
            .where(schedule_exceptions.c.date >= start)
            .order_by(schedule_exceptions.c.date.asc())
        )
        return [ScheduleExceptionResponse.model_validate(dict(row._mapping)) for row in result]

    async def upsert_exception(self, data: ScheduleExceptionUpsert) -> ScheduleExceptionResponse:
        """
        Create or replace the exception of a date.

        Args:
            data: Exception values keyed by date

        Returns:
            Stored exception

        Raises:
            ConflictException: If a concurrent write created the same date first
        """
        values = data.model_dump(exclude={"date"})
        values["updated_at"] = datetime.now(UTC)

        try:
            result = await self.db.execute(
                update(schedule_exceptions)
                .where(schedule_exceptions.c.date == data.date)
                .values(**values)
                .returning(schedule_exceptions)
            )
            row = result.fetchone()
            if row is None:
                result = await self.db.execute(
                    insert(schedule_exceptions)
                    .values(date=data.date, **values)
                    .returning(schedule_exceptions)
                )
                row = result.fetchone()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictException("Schedule exception for this date was modified concurrently") from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info("schedule_exception_saved", date=data.date.isoformat(), reason=data.reason)
        return ScheduleExceptionResponse.model_validate(dict(row._mapping))

    async def delete_exception(self, exception_id: UUID) -> None:
        """
        Delete an exception by ID.

        Raises:
            NotFoundException: If the exception does not exist
        """
        try:
            result = await self.db.execute(
                delete(schedule_exceptions).where(schedule_exceptions.c.id == exception_id)
            )
            if result.rowcount == 0:
                raise NotFoundException("Schedule exception not found")
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("schedule_exception_deleted", exception_id=str(exception_id))

    async def resolve(
        self,
        day: date,
        config: ScheduleConfigData | None = None,
    ) -> ShiftAvailability:
        """
        Resolve the opening rule of a date.

        Args:
            day: Clinic calendar date
            config: Configuration already loaded for this request, if any

        Returns:
            Effective shift availability
        """
        if config is None:
            config = await self.load_config()
        exception = await self.get_exception_by_date(day)
        return resolve_shift_availability(day, config, exception)
