"""Appointment schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, computed_field, field_validator


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Shift(str, Enum):
    """Named half-day booking window."""

    MORNING = "morning"
    EVENING = "evening"


class BookingMode(str, Enum):
    """How an appointment holds its place in the day."""

    SLOT = "slot"
    SHIFT = "shift"


class SlotBooking(BaseModel):
    """Book an exact start time; the service duration decides the end."""

    mode: Literal["slot"] = "slot"
    appointment_at: datetime


class ShiftBooking(BaseModel):
    """Book a named shift on a clinic calendar date; a queue token is issued on confirmation."""

    mode: Literal["shift"] = "shift"
    date: date
    shift: Shift


BookingRequest = Annotated[SlotBooking | ShiftBooking, Field(discriminator="mode")]


def _validate_phone(v: str) -> str:
    # Remove common separators
    cleaned = (
        v.replace("-", "").replace(" ", "").replace("(", "").replace(")", "").replace("+", "")
    )
    if not cleaned.isdigit():
        raise ValueError("Phone number must contain only digits and separators")
    if not 10 <= len(cleaned) <= 15:
        raise ValueError("Phone number must be 10-15 digits")
    return v


class PatientDetails(BaseModel):
    """Patient details supplied with a public booking."""

    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: str = Field(..., min_length=10, max_length=20)
    date_of_birth: date | None = None
    gender: str | None = Field(None, max_length=20)
    notes: str | None = Field(None, max_length=1000)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Validate phone number format."""
        return _validate_phone(v)


class AppointmentCreate(BaseModel):
    """Schema for booking on behalf of an existing patient."""

    patient_id: UUID
    service_id: UUID
    booking: BookingRequest
    notes: str | None = Field(None, max_length=1000)


class PublicAppointmentCreate(BaseModel):
    """Schema for a self-service booking; always starts as pending."""

    patient: PatientDetails
    service_id: UUID
    booking: BookingRequest
    notes: str | None = Field(None, max_length=1000)


class AppointmentUpdate(BaseModel):
    """Schema for updating an existing appointment."""

    service_id: UUID | None = None
    booking: BookingRequest | None = None
    status: AppointmentStatus | None = None
    notes: str | None = Field(None, max_length=1000)


class AppointmentStatusUpdate(BaseModel):
    """Schema for updating appointment status."""

    status: AppointmentStatus
    reason: str | None = Field(None, max_length=500)


class RescheduleRequest(BaseModel):
    """Body of a reschedule-by-link request, in the appointment's own booking mode."""

    booking: BookingRequest


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    service_id: UUID
    appointment_at: datetime
    end_time: datetime
    status: AppointmentStatus
    shift: Shift | None = None
    token_number: int | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None

    model_config = {"from_attributes": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def booking_mode(self) -> BookingMode:
        """Slot mode when no shift is set, shift mode otherwise."""
        return BookingMode.SLOT if self.shift is None else BookingMode.SHIFT


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering.

    ``from_date`` and ``to_date`` are clinic calendar dates, both inclusive.
    """

    status: AppointmentStatus | None = None
    shift: Shift | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class BookedPatient(BaseModel):
    """Patient summary echoed back from a public booking."""

    id: UUID
    name: str
    email: str
    phone: str


class PublicBookingResponse(BaseModel):
    """Result of a self-service booking."""

    appointment_id: UUID
    patient: BookedPatient
    scheduled_for: datetime
    shift: Shift | None = None
    status: AppointmentStatus
