"""Clinic schedule tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Integer,
    Table,
    Text,
    Time,
    Uuid,
    func,
    true,
)

from clinic_booking.models.base import metadata

SCHEDULE_CONFIG_ID = 1

# Single row holding the default weekly shift windows
schedule_config = Table(
    "schedule_config",
    metadata,
    Column("id", Integer, primary_key=True, default=SCHEDULE_CONFIG_ID),
    Column("morning_enabled", Boolean, nullable=False, server_default=true()),
    Column("morning_start_time", Time, nullable=False),
    Column("morning_end_time", Time, nullable=False),
    Column("evening_enabled", Boolean, nullable=False, server_default=true()),
    Column("evening_start_time", Time, nullable=False),
    Column("evening_end_time", Time, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("id = 1", name="schedule_config_singleton"),
)

schedule_exceptions = Table(
    "schedule_exceptions",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("date", Date, nullable=False, unique=True),
    # NULL flag keeps the global setting for that shift
    Column("is_morning_open", Boolean, nullable=True),
    Column("is_evening_open", Boolean, nullable=True),
    Column("morning_start_time", Time, nullable=True),
    Column("morning_end_time", Time, nullable=True),
    Column("evening_start_time", Time, nullable=True),
    Column("evening_end_time", Time, nullable=True),
    Column("reason", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
