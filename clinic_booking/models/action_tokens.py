"""Self-service action token table using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Uuid,
    func,
)

from clinic_booking.models.base import metadata

action_tokens = Table(
    "appointment_action_tokens",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("token", String(128), nullable=False, unique=True),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("action_type", String(20), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("used_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint(
        "action_type IN ('cancel', 'reschedule')",
        name="action_tokens_type_check",
    ),
    Index("ix_action_tokens_appointment_id", "appointment_id"),
    Index("ix_action_tokens_expires_at", "expires_at"),
)
