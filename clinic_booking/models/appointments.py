"""Appointments and token counter tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    Uuid,
    func,
)

from clinic_booking.models.base import metadata

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # References
    Column("patient_id", Uuid, ForeignKey("patients.id"), nullable=False),
    Column("service_id", Uuid, ForeignKey("services.id"), nullable=False),
    # Timing, stored in UTC
    Column("appointment_at", DateTime(timezone=True), nullable=False),
    Column("end_time", DateTime(timezone=True), nullable=False),
    # Status management
    Column("status", String(20), nullable=False, server_default="pending"),
    # NULL shift means slot mode
    Column("shift", String(20), nullable=True),
    Column("token_number", Integer, nullable=True),
    Column("notes", Text, nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'completed', 'cancelled')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "shift IS NULL OR shift IN ('morning', 'evening')",
        name="appointments_shift_check",
    ),
    CheckConstraint(
        "token_number IS NULL OR (token_number > 0 AND shift IS NOT NULL)",
        name="appointments_token_requires_shift",
    ),
    CheckConstraint("end_time > appointment_at", name="appointments_end_after_start"),
    Index("ix_appointments_service_window", "service_id", "appointment_at", "end_time"),
    Index("ix_appointments_shift_day", "shift", "appointment_at"),
    Index("ix_appointments_status", "status"),
)

# One row per clinic-local day and shift; the row lock serialises token allocation
token_counters = Table(
    "token_counters",
    metadata,
    Column("appointment_date", Date, nullable=False),
    Column("shift", String(20), nullable=False),
    Column("last_token", Integer, nullable=False, server_default="0"),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    PrimaryKeyConstraint("appointment_date", "shift", name="token_counters_pkey"),
    CheckConstraint("shift IN ('morning', 'evening')", name="token_counters_shift_check"),
)
