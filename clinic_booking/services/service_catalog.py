"""Read access to the service catalogue."""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.exceptions import NotFoundException
from clinic_booking.models.services import services
from clinic_booking.schemas.services import ServiceResponse


class ServiceCatalog:
    """Lookups of bookable services. Services are never modified by booking."""

    def __init__(self, db: AsyncSession):
        """Initialize catalogue with database session."""
        self.db = db

    async def get_service(self, service_id: UUID, for_update: bool = False) -> Row[Any]:
        """
        Get an active service row.

        Args:
            service_id: Service ID
            for_update: Lock the row until the surrounding transaction ends

        Returns:
            Service row

        Raises:
            NotFoundException: If the service does not exist or is inactive
        """
        stmt = select(services).where(
            services.c.id == service_id,
            services.c.is_active.is_(True),
        )
        if for_update:
            stmt = stmt.with_for_update()

        result = await self.db.execute(stmt)
        row = result.fetchone()
        if row is None:
            raise NotFoundException("Service not found or invalid")
        return row

    async def list_services(self) -> list[ServiceResponse]:
        """List active services ordered by name."""
        result = await self.db.execute(
            select(services).where(services.c.is_active.is_(True)).order_by(services.c.name)
        )
        return [ServiceResponse.model_validate(dict(row._mapping)) for row in result]
