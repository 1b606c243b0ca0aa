"""Self-service action token schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel

from clinic_booking.core.exceptions import ActionTokenReason
from clinic_booking.schemas.appointments import AppointmentResponse


class ActionType(str, Enum):
    """What a token lets its holder do."""

    CANCEL = "cancel"
    RESCHEDULE = "reschedule"


class ActionTokenRecord(BaseModel):
    """Stored action token."""

    id: UUID
    token: str
    appointment_id: UUID
    action_type: ActionType
    expires_at: datetime
    used_at: datetime | None = None

    model_config = {"from_attributes": True}


class TokenValidation(BaseModel):
    """Outcome of checking a token, with the appointment it refers to."""

    valid: bool
    reason: ActionTokenReason | None = None
    action_type: ActionType
    appointment: AppointmentResponse


class TokenVerifyResponse(BaseModel):
    """Public answer to a verify-token request."""

    action_type: ActionType
    appointment: AppointmentResponse


class CancelByTokenResponse(BaseModel):
    """Result of cancelling through a link."""

    appointment_id: UUID
    cancelled_at: datetime
    message: str = "Your appointment has been cancelled successfully."


class RescheduleByTokenResponse(BaseModel):
    """Result of rescheduling through a link."""

    appointment: AppointmentResponse
    message: str = "Your reschedule request has been submitted and awaits confirmation."
