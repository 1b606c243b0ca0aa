"""Staff appointment endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from clinic_booking.dependencies import DatabaseSession, OutboxDrain
from clinic_booking.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
    AppointmentUpdate,
    Shift,
)
from clinic_booking.services.appointment_service import AppointmentService

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Create new appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    db: DatabaseSession,
    drain_outbox: OutboxDrain,
) -> AppointmentResponse:
    """
    Book an appointment for an existing patient.

    Args:
        data: Patient, service and slot or shift booking
        db: Database session
        drain_outbox: Schedules notification delivery

    Returns:
        Created appointment
    """
    service = AppointmentService(db)
    appointment = await service.create_appointment(
        data.patient_id, data.service_id, data.booking, data.notes
    )
    drain_outbox()
    return appointment


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    db: DatabaseSession,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    shift: Shift | None = Query(None),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering.

    Args:
        db: Database session
        status_filter: Filter by status
        shift: Filter by shift
        from_date: First clinic calendar date
        to_date: Last clinic calendar date
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        shift=shift,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )

    service = AppointmentService(db)
    return await service.list_appointments(filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    db: DatabaseSession,
) -> AppointmentResponse:
    """Get a specific appointment by ID."""
    service = AppointmentService(db)
    return await service.get_appointment(appointment_id)


@router.put(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdate,
    db: DatabaseSession,
    drain_outbox: OutboxDrain,
) -> AppointmentResponse:
    """
    Update an existing appointment.

    Args:
        appointment_id: Appointment ID
        data: Update data
        db: Database session
        drain_outbox: Schedules notification delivery

    Returns:
        Updated appointment
    """
    service = AppointmentService(db)
    appointment = await service.update_appointment(appointment_id, data)
    drain_outbox()
    return appointment


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment status",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    db: DatabaseSession,
    drain_outbox: OutboxDrain,
) -> AppointmentResponse:
    """
    Confirm, complete or cancel an appointment.

    Args:
        appointment_id: Appointment ID
        data: Status update data
        db: Database session
        drain_outbox: Schedules notification delivery

    Returns:
        Updated appointment
    """
    service = AppointmentService(db)
    appointment = await service.set_status(appointment_id, data.status, data.reason)
    drain_outbox()
    return appointment


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def delete_appointment(
    appointment_id: UUID,
    db: DatabaseSession,
    drain_outbox: OutboxDrain,
) -> None:
    """
    Cancel an appointment. The record is kept for history.

    Args:
        appointment_id: Appointment ID
        db: Database session
        drain_outbox: Schedules notification delivery
    """
    service = AppointmentService(db)
    await service.cancel_appointment(appointment_id)
    drain_outbox()
