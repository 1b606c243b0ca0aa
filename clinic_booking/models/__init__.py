"""Database models."""

from clinic_booking.models.action_tokens import action_tokens
from clinic_booking.models.appointments import appointments, token_counters
from clinic_booking.models.base import metadata
from clinic_booking.models.notification_outbox import notification_outbox
from clinic_booking.models.patients import patients
from clinic_booking.models.schedule import schedule_config, schedule_exceptions
from clinic_booking.models.services import services

__all__ = [
    "action_tokens",
    "appointments",
    "metadata",
    "notification_outbox",
    "patients",
    "schedule_config",
    "schedule_exceptions",
    "services",
    "token_counters",
]
