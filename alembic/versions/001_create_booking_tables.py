"""Create booking tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.TIMESTAMP(timezone=True),
        server_default=None if nullable else sa.text("NOW()"),
        nullable=nullable,
    )


def upgrade() -> None:
    """Upgrade database schema."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "services",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), server_default="0", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _timestamp("created_at"),
        sa.CheckConstraint("duration > 0", name="services_duration_positive"),
        sa.CheckConstraint("price >= 0", name="services_price_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "patients",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.VARCHAR(length=255), nullable=False),
        sa.Column("phone", sa.VARCHAR(length=20), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("gender", sa.VARCHAR(length=20), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_patients_email", "patients", ["email"], unique=True)

    op.create_table(
        "appointments",
        _id_column(),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("service_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("appointment_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("end_time", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", sa.VARCHAR(length=20), server_default="pending", nullable=False),
        sa.Column("shift", sa.VARCHAR(length=20), nullable=True),
        sa.Column("token_number", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("cancelled_at", nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'completed', 'cancelled')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint(
            "shift IS NULL OR shift IN ('morning', 'evening')",
            name="appointments_shift_check",
        ),
        sa.CheckConstraint(
            "token_number IS NULL OR (token_number > 0 AND shift IS NOT NULL)",
            name="appointments_token_requires_shift",
        ),
        sa.CheckConstraint("end_time > appointment_at", name="appointments_end_after_start"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"]),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_appointments_service_window",
        "appointments",
        ["service_id", "appointment_at", "end_time"],
    )
    op.create_index("ix_appointments_shift_day", "appointments", ["shift", "appointment_at"])
    op.create_index("ix_appointments_status", "appointments", ["status"])

    op.create_table(
        "token_counters",
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("shift", sa.VARCHAR(length=20), nullable=False),
        sa.Column("last_token", sa.Integer(), server_default="0", nullable=False),
        _timestamp("updated_at"),
        sa.CheckConstraint("shift IN ('morning', 'evening')", name="token_counters_shift_check"),
        sa.PrimaryKeyConstraint("appointment_date", "shift", name="token_counters_pkey"),
    )

    op.create_table(
        "schedule_config",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("morning_enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("morning_start_time", sa.Time(), nullable=False),
        sa.Column("morning_end_time", sa.Time(), nullable=False),
        sa.Column("evening_enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("evening_start_time", sa.Time(), nullable=False),
        sa.Column("evening_end_time", sa.Time(), nullable=False),
        _timestamp("updated_at"),
        sa.CheckConstraint("id = 1", name="schedule_config_singleton"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "schedule_exceptions",
        _id_column(),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("is_morning_open", sa.Boolean(), nullable=True),
        sa.Column("is_evening_open", sa.Boolean(), nullable=True),
        sa.Column("morning_start_time", sa.Time(), nullable=True),
        sa.Column("morning_end_time", sa.Time(), nullable=True),
        sa.Column("evening_start_time", sa.Time(), nullable=True),
        sa.Column("evening_end_time", sa.Time(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("date", name="schedule_exceptions_date_key"),
    )

    op.create_table(
        "appointment_action_tokens",
        _id_column(),
        sa.Column("token", sa.VARCHAR(length=128), nullable=False),
        sa.Column("appointment_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action_type", sa.VARCHAR(length=20), nullable=False),
        sa.Column("expires_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("used_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "action_type IN ('cancel', 'reschedule')",
            name="action_tokens_type_check",
        ),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token", name="appointment_action_tokens_token_key"),
    )
    op.create_index(
        "ix_action_tokens_appointment_id", "appointment_action_tokens", ["appointment_id"]
    )
    op.create_index("ix_action_tokens_expires_at", "appointment_action_tokens", ["expires_at"])

    op.create_table(
        "notification_outbox",
        _id_column(),
        sa.Column("appointment_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.VARCHAR(length=20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.VARCHAR(length=20), server_default="pending", nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("processed_at", nullable=True),
        sa.CheckConstraint(
            "event_type IN ('pending', 'confirmed', 'completed', 'cancelled')",
            name="notification_outbox_event_check",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'sent', 'failed')",
            name="notification_outbox_status_check",
        ),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_notification_outbox_status", "notification_outbox", ["status", "created_at"]
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("ix_notification_outbox_status", table_name="notification_outbox")
    op.drop_table("notification_outbox")
    op.drop_index("ix_action_tokens_expires_at", table_name="appointment_action_tokens")
    op.drop_index("ix_action_tokens_appointment_id", table_name="appointment_action_tokens")
    op.drop_table("appointment_action_tokens")
    op.drop_table("schedule_exceptions")
    op.drop_table("schedule_config")
    op.drop_table("token_counters")
    op.drop_index("ix_appointments_status", table_name="appointments")
    op.drop_index("ix_appointments_shift_day", table_name="appointments")
    op.drop_index("ix_appointments_service_window", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_patients_email", table_name="patients")
    op.drop_table("patients")
    op.drop_table("services")
