"""Patient table using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    String,
    Table,
    Text,
    Uuid,
    func,
)

from clinic_booking.models.base import metadata

patients = Table(
    "patients",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    Column("email", String(255), nullable=False, unique=True, index=True),
    Column("phone", String(20), nullable=False),
    Column("date_of_birth", Date, nullable=True),
    Column("gender", String(20), nullable=True),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
