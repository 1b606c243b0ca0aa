"""Patient lookup and registration for bookings."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import insert, select
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.exceptions import NotFoundException
from clinic_booking.models.patients import patients
from clinic_booking.schemas.appointments import PatientDetails

logger = structlog.get_logger(__name__)


class PatientService:
    """Service for the patients referenced by appointments."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def get_patient(self, patient_id: UUID) -> Row[Any]:
        """
        Get a patient row by ID.

        Raises:
            NotFoundException: If patient not found
        """
        result = await self.db.execute(select(patients).where(patients.c.id == patient_id))
        row = result.fetchone()
        if row is None:
            raise NotFoundException("Patient not found")
        return row

    async def get_by_email(self, email: str) -> Row[Any] | None:
        """Get a patient by email, case-insensitively."""
        result = await self.db.execute(select(patients).where(patients.c.email == email.lower()))
        return result.fetchone()

    async def find_or_create(self, details: PatientDetails) -> tuple[Row[Any], str | None]:
        """
        Find the patient registered under an email, or register a new one.

        Runs inside the caller's transaction and does not commit. A stored
        patient is never overwritten by booking details; when the supplied
        name differs, a note is returned for the appointment instead.

        Args:
            details: Patient details from the booking form

        Returns:
            Tuple of patient row and an optional appointment note
        """
        existing = await self.get_by_email(details.email)
        if existing is None:
            try:
                async with self.db.begin_nested():
                    result = await self.db.execute(
                        insert(patients)
                        .values(
                            name=details.name,
                            email=details.email.lower(),
                            phone=details.phone,
                            date_of_birth=details.date_of_birth,
                            gender=details.gender,
                            notes=details.notes,
                        )
                        .returning(patients)
                    )
                    row = result.fetchone()
                logger.info("patient_registered", patient_id=str(row.id))
                return row, None
            except IntegrityError:
                # Registered by a concurrent booking with the same email
                existing = await self.get_by_email(details.email)
                if existing is None:
                    raise

        note = None
        if existing.name.strip().lower() != details.name.strip().lower():
            note = f"Booked as: {details.name}"
        return existing, note
