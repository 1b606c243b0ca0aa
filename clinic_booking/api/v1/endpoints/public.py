"""Public self-service booking endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from clinic_booking.dependencies import DatabaseSession, OutboxDrain, PublicRateLimit
from clinic_booking.schemas.action_tokens import (
    CancelByTokenResponse,
    RescheduleByTokenResponse,
    TokenVerifyResponse,
)
from clinic_booking.schemas.appointments import (
    PublicAppointmentCreate,
    PublicBookingResponse,
    RescheduleRequest,
)
from clinic_booking.schemas.availability import AvailabilityResponse
from clinic_booking.schemas.schedule import ScheduleExceptionResponse, ShiftAvailability
from clinic_booking.schemas.services import ServiceResponse
from clinic_booking.services.action_token_service import ActionTokenService
from clinic_booking.services.appointment_service import AppointmentService
from clinic_booking.services.availability_service import AvailabilityService
from clinic_booking.services.schedule_service import ScheduleService
from clinic_booking.services.service_catalog import ServiceCatalog

router = APIRouter()


@router.get(
    "/services",
    response_model=list[ServiceResponse],
    status_code=status.HTTP_200_OK,
    summary="List bookable services",
)
async def list_services(db: DatabaseSession) -> list[ServiceResponse]:
    """List active services."""
    return await ServiceCatalog(db).list_services()


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="Slot availability for a date range",
)
async def get_availability(
    db: DatabaseSession,
    service_id: UUID = Query(...),
    start: date = Query(..., description="First clinic calendar date"),
    end: date = Query(..., description="Last clinic calendar date, inclusive"),
) -> AvailabilityResponse:
    """
    Compute available and booked 30-minute slots per date.

    Args:
        db: Database session
        service_id: Service whose duration must fit
        start: First date
        end: Last date

    Returns:
        Availability keyed by date
    """
    return await AvailabilityService(db).compute_availability(start, end, service_id)


@router.get(
    "/schedule",
    response_model=ShiftAvailability,
    status_code=status.HTTP_200_OK,
    summary="Open shifts on a date",
)
async def get_schedule(
    db: DatabaseSession,
    day: date = Query(..., alias="date"),
) -> ShiftAvailability:
    """Resolve which shifts can be booked on a date."""
    return await ScheduleService(db).resolve(day)


@router.get(
    "/schedule-exceptions",
    response_model=list[ScheduleExceptionResponse],
    status_code=status.HTTP_200_OK,
    summary="Upcoming schedule exceptions",
)
async def list_schedule_exceptions(db: DatabaseSession) -> list[ScheduleExceptionResponse]:
    """List closures and changed hours from today onwards."""
    return await ScheduleService(db).list_exceptions()


@router.post(
    "/appointments",
    response_model=PublicBookingResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[PublicRateLimit],
    summary="Request an appointment",
)
async def create_public_appointment(
    data: PublicAppointmentCreate,
    db: DatabaseSession,
    drain_outbox: OutboxDrain,
) -> PublicBookingResponse:
    """
    Request an appointment as a member of the public.

    The appointment starts as pending until the clinic confirms it.

    Args:
        data: Patient details and slot or shift booking
        db: Database session
        drain_outbox: Schedules notification delivery

    Returns:
        Booking summary
    """
    booking = await AppointmentService(db).book_public(data)
    drain_outbox()
    return booking


@router.get(
    "/appointment/verify-token",
    response_model=TokenVerifyResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[PublicRateLimit],
    summary="Check an action link",
)
async def verify_token(
    db: DatabaseSession,
    token: str = Query(..., min_length=1),
) -> TokenVerifyResponse:
    """
    Check an action link before showing the cancel or reschedule page.

    Args:
        db: Database session
        token: Opaque token from the link

    Returns:
        Action type and appointment details
    """
    validation = await ActionTokenService(db).require(token)
    return TokenVerifyResponse(
        action_type=validation.action_type,
        appointment=validation.appointment,
    )


@router.post(
    "/appointment/cancel",
    response_model=CancelByTokenResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[PublicRateLimit],
    summary="Cancel through an action link",
)
async def cancel_by_token(
    db: DatabaseSession,
    drain_outbox: OutboxDrain,
    token: str = Query(..., min_length=1),
) -> CancelByTokenResponse:
    """Cancel the appointment a cancel link was issued for."""
    result = await AppointmentService(db).redeem_cancel_token(token)
    drain_outbox()
    return result


@router.post(
    "/appointment/reschedule",
    response_model=RescheduleByTokenResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[PublicRateLimit],
    summary="Reschedule through an action link",
)
async def reschedule_by_token(
    data: RescheduleRequest,
    db: DatabaseSession,
    drain_outbox: OutboxDrain,
    token: str = Query(..., min_length=1),
) -> RescheduleByTokenResponse:
    """
    Move the appointment a reschedule link was issued for.

    The appointment returns to pending until the clinic confirms the new time.

    Args:
        data: New start time, or new date and shift
        db: Database session
        drain_outbox: Schedules notification delivery
        token: Opaque token from the link

    Returns:
        Rescheduled appointment
    """
    result = await AppointmentService(db).redeem_reschedule_token(token, data.booking)
    drain_outbox()
    return result
