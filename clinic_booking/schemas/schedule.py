"""Schedule configuration and exception schemas."""

from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from clinic_booking.schemas.appointments import Shift


class ShiftWindow(BaseModel):
    """Wall-clock opening window of a shift."""

    model_config = {"frozen": True}

    start: time
    end: time

    @model_validator(mode="after")
    def validate_order(self) -> "ShiftWindow":
        """Validate that the window opens before it closes."""
        if self.start >= self.end:
            raise ValueError("Shift start time must be before end time")
        return self


class ScheduleConfigData(BaseModel):
    """Global weekly shift configuration, loaded once and passed explicitly."""

    model_config = {"frozen": True}

    morning_enabled: bool
    morning_window: ShiftWindow
    evening_enabled: bool
    evening_window: ShiftWindow

    def is_enabled(self, shift: Shift) -> bool:
        """Whether the shift is open by default."""
        return self.morning_enabled if shift == Shift.MORNING else self.evening_enabled

    def window(self, shift: Shift) -> ShiftWindow:
        """Default window of the shift."""
        return self.morning_window if shift == Shift.MORNING else self.evening_window


class ScheduleConfigUpdate(BaseModel):
    """Schema for replacing the global shift configuration."""

    morning_shift_enabled: bool
    morning_start_time: time
    morning_end_time: time
    evening_shift_enabled: bool
    evening_start_time: time
    evening_end_time: time

    def to_config(self) -> ScheduleConfigData:
        """Build the validated configuration object."""
        return ScheduleConfigData(
            morning_enabled=self.morning_shift_enabled,
            morning_window=ShiftWindow(start=self.morning_start_time, end=self.morning_end_time),
            evening_enabled=self.evening_shift_enabled,
            evening_window=ShiftWindow(start=self.evening_start_time, end=self.evening_end_time),
        )


class ScheduleExceptionUpsert(BaseModel):
    """Schema for creating or replacing the exception of a date."""

    date: date
    is_morning_open: bool | None = None
    is_evening_open: bool | None = None
    morning_start_time: time | None = None
    morning_end_time: time | None = None
    evening_start_time: time | None = None
    evening_end_time: time | None = None
    reason: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_windows(self) -> "ScheduleExceptionUpsert":
        """Custom windows need both ends, in order."""
        for shift in Shift:
            start = getattr(self, f"{shift.value}_start_time")
            end = getattr(self, f"{shift.value}_end_time")
            if (start is None) != (end is None):
                raise ValueError(f"Both {shift.value} start and end times are required")
            if start is not None and start >= end:
                raise ValueError(f"{shift.value.capitalize()} start time must be before end time")
        return self


class ScheduleExceptionResponse(BaseModel):
    """Schema for schedule exception response."""

    id: UUID
    date: date
    is_morning_open: bool | None = None
    is_evening_open: bool | None = None
    morning_start_time: time | None = None
    morning_end_time: time | None = None
    evening_start_time: time | None = None
    evening_end_time: time | None = None
    reason: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    def custom_window(self, shift: Shift) -> ShiftWindow | None:
        """Custom window for the shift, if the exception sets one."""
        start = getattr(self, f"{shift.value}_start_time")
        end = getattr(self, f"{shift.value}_end_time")
        if start is None or end is None:
            return None
        return ShiftWindow(start=start, end=end)

    def open_flag(self, shift: Shift) -> bool | None:
        """Override flag for the shift; None keeps the global setting."""
        return self.is_morning_open if shift == Shift.MORNING else self.is_evening_open


class ShiftAvailability(BaseModel):
    """Effective opening rule of a date."""

    date: date
    morning_open: bool
    evening_open: bool
    morning_window: ShiftWindow
    evening_window: ShiftWindow
    exception_reason: str | None = None

    def is_open(self, shift: Shift) -> bool:
        """Whether the shift can be booked on this date."""
        return self.morning_open if shift == Shift.MORNING else self.evening_open

    def window(self, shift: Shift) -> ShiftWindow:
        """Effective window of the shift on this date."""
        return self.morning_window if shift == Shift.MORNING else self.evening_window


class ScheduleConfigResponse(BaseModel):
    """Schema for the global configuration response."""

    morning_shift_enabled: bool
    morning_start_time: time
    morning_end_time: time
    evening_shift_enabled: bool
    evening_start_time: time
    evening_end_time: time

    @classmethod
    def from_config(cls, config: ScheduleConfigData) -> "ScheduleConfigResponse":
        """Flatten a configuration object for the API."""
        return cls(
            morning_shift_enabled=config.morning_enabled,
            morning_start_time=config.morning_window.start,
            morning_end_time=config.morning_window.end,
            evening_shift_enabled=config.evening_enabled,
            evening_start_time=config.evening_window.start,
            evening_end_time=config.evening_window.end,
        )
