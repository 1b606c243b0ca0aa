"""API v1 router configuration."""

from fastapi import APIRouter

from clinic_booking.api.v1.endpoints import appointments, health, public, schedule

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(public.router, prefix="/public", tags=["Public"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(schedule.router, prefix="/schedule", tags=["Schedule"])
