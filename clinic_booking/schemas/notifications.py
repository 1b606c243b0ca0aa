"""Appointment notification schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel

from clinic_booking.schemas.appointments import AppointmentResponse


class OutboxStatus(str, Enum):
    """Delivery state of an outbox event."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class OutboxEvent(BaseModel):
    """Stored outbox event."""

    id: UUID
    appointment_id: UUID
    event_type: str
    reason: str | None = None
    status: OutboxStatus
    attempts: int
    last_error: str | None = None
    created_at: datetime
    processed_at: datetime | None = None

    model_config = {"from_attributes": True}


class AppointmentNotice(BaseModel):
    """Everything a notifier needs to tell a patient about their appointment."""

    appointment: AppointmentResponse
    patient_name: str
    patient_email: str
    patient_phone: str
    service_name: str
    # Clinic wall-clock start, e.g. "Mon 02 Jun 2031, 10:30"
    local_start: str
    cancel_url: str | None = None
    reschedule_url: str | None = None


class DrainResult(BaseModel):
    """Outcome of one outbox drain."""

    sent: int = 0
    retrying: int = 0
    failed: int = 0
