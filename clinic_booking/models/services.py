"""Service catalogue table using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    Numeric,
    Table,
    Text,
    Uuid,
    func,
    true,
)

from clinic_booking.models.base import metadata

services = Table(
    "services",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    Column("description", Text, nullable=True),
    # Minutes; used to derive appointment end times
    Column("duration", Integer, nullable=False),
    Column("price", Numeric(10, 2), nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("duration > 0", name="services_duration_positive"),
    CheckConstraint("price >= 0", name="services_price_non_negative"),
)
