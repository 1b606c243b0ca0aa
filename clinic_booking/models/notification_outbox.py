"""Notification outbox table using SQLAlchemy Core.

Rows are written in the same transaction as the status change they describe
and delivered after commit.
"""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
    func,
)

from clinic_booking.models.base import metadata

notification_outbox = Table(
    "notification_outbox",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
    ),
    # Status the appointment entered
    Column("event_type", String(20), nullable=False),
    Column("reason", Text, nullable=True),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("last_error", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("processed_at", DateTime(timezone=True), nullable=True),
    CheckConstraint(
        "event_type IN ('pending', 'confirmed', 'completed', 'cancelled')",
        name="notification_outbox_event_check",
    ),
    CheckConstraint(
        "status IN ('pending', 'sent', 'failed')",
        name="notification_outbox_status_check",
    ),
    Index("ix_notification_outbox_status", "status", "created_at"),
)
