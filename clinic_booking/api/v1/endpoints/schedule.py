"""Staff schedule configuration endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from clinic_booking.dependencies import DatabaseSession
from clinic_booking.schemas.schedule import (
    ScheduleConfigResponse,
    ScheduleConfigUpdate,
    ScheduleExceptionResponse,
    ScheduleExceptionUpsert,
    ShiftAvailability,
)
from clinic_booking.services.schedule_service import ScheduleService

router = APIRouter()


@router.get(
    "/config",
    response_model=ScheduleConfigResponse,
    status_code=status.HTTP_200_OK,
    summary="Get shift configuration",
)
async def get_config(db: DatabaseSession) -> ScheduleConfigResponse:
    """Get the global morning and evening shift configuration."""
    config = await ScheduleService(db).load_config()
    return ScheduleConfigResponse.from_config(config)


@router.put(
    "/config",
    response_model=ScheduleConfigResponse,
    status_code=status.HTTP_200_OK,
    summary="Update shift configuration",
)
async def update_config(
    data: ScheduleConfigUpdate,
    db: DatabaseSession,
) -> ScheduleConfigResponse:
    """
    Replace the global shift configuration.

    Args:
        data: Shift flags and windows
        db: Database session

    Returns:
        Saved configuration
    """
    config = await ScheduleService(db).update_config(data)
    return ScheduleConfigResponse.from_config(config)


@router.get(
    "/exceptions",
    response_model=list[ScheduleExceptionResponse],
    status_code=status.HTTP_200_OK,
    summary="List schedule exceptions",
)
async def list_exceptions(
    db: DatabaseSession,
    from_date: date | None = Query(None, description="Defaults to today"),
) -> list[ScheduleExceptionResponse]:
    """List date exceptions from a date onwards."""
    return await ScheduleService(db).list_exceptions(from_date)


@router.put(
    "/exceptions",
    response_model=ScheduleExceptionResponse,
    status_code=status.HTTP_200_OK,
    summary="Create or replace a schedule exception",
)
async def upsert_exception(
    data: ScheduleExceptionUpsert,
    db: DatabaseSession,
) -> ScheduleExceptionResponse:
    """
    Create or replace the exception of a date.

    Args:
        data: Exception values keyed by date
        db: Database session

    Returns:
        Stored exception
    """
    return await ScheduleService(db).upsert_exception(data)


@router.delete(
    "/exceptions/{exception_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a schedule exception",
)
async def delete_exception(exception_id: UUID, db: DatabaseSession) -> None:
    """Delete a date exception."""
    await ScheduleService(db).delete_exception(exception_id)


@router.get(
    "/resolve",
    response_model=ShiftAvailability,
    status_code=status.HTTP_200_OK,
    summary="Resolve the opening rule of a date",
)
async def resolve_date(
    db: DatabaseSession,
    day: date = Query(..., alias="date"),
) -> ShiftAvailability:
    """Resolve which shifts are open on a date and their windows."""
    return await ScheduleService(db).resolve(day)
