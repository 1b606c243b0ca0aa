"""Service catalogue schemas."""

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class ServiceResponse(BaseModel):
    """Public view of a bookable service."""

    id: UUID
    name: str
    description: str | None = None
    duration: int = Field(..., gt=0)
    price: Decimal

    model_config = {"from_attributes": True}
