"""Slot availability schemas."""

from datetime import date
from uuid import UUID

from pydantic import BaseModel


class DayAvailability(BaseModel):
    """Bookable and unbookable grid slots of one clinic day, as ``HH:MM`` strings."""

    is_fully_booked: bool
    booked_slots: list[str]
    available_slots: list[str]


class AvailabilityResponse(BaseModel):
    """Availability map keyed by clinic calendar date."""

    service_id: UUID
    duration: int
    days: dict[date, DayAvailability]
