"""Single-use, time-limited action tokens for cancel and reschedule links."""

import secrets
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.config import Settings, settings as default_settings
from clinic_booking.core.calendar import ensure_utc
from clinic_booking.core.exceptions import ActionTokenException, ActionTokenReason, NotFoundException
from clinic_booking.models.action_tokens import action_tokens
from clinic_booking.models.appointments import appointments
from clinic_booking.schemas.action_tokens import ActionTokenRecord, ActionType, TokenValidation
from clinic_booking.schemas.appointments import AppointmentResponse, AppointmentStatus

logger = structlog.get_logger(__name__)

TOKEN_BYTES = 32


def token_refusal(
    token: ActionTokenRecord,
    appointment_status: AppointmentStatus,
    now: datetime,
) -> ActionTokenReason | None:
    """
    Decide why a token cannot be used, checking reasons in priority order.

    Returns:
        The first matching reason, or None if the token is usable
    """
    if token.used_at is not None:
        return ActionTokenReason.TOKEN_ALREADY_USED
    if now > ensure_utc(token.expires_at):
        return ActionTokenReason.TOKEN_EXPIRED
    if appointment_status == AppointmentStatus.CANCELLED:
        return ActionTokenReason.APPOINTMENT_CANCELLED
    return None


class ActionTokenService:
    """Service for issuing and checking self-service action tokens."""

    def __init__(self, db: AsyncSession, app_settings: Settings | None = None):
        """Initialize service with database session."""
        self.db = db
        self.settings = app_settings or default_settings

    async def issue(self, appointment_id: UUID, action_type: ActionType) -> ActionTokenRecord:
        """
        Issue a new token for an appointment.

        The caller commits.

        Args:
            appointment_id: Appointment the token acts on
            action_type: Action the token allows

        Returns:
            Stored token
        """
        expires_at = datetime.now(UTC) + timedelta(hours=self.settings.action_token_ttl_hours)
        result = await self.db.execute(
            insert(action_tokens)
            .values(
                token=secrets.token_urlsafe(TOKEN_BYTES),
                appointment_id=appointment_id,
                action_type=action_type.value,
                expires_at=expires_at,
            )
            .returning(action_tokens)
        )
        record = ActionTokenRecord.model_validate(dict(result.fetchone()._mapping))

        logger.info(
            "action_token_issued",
            appointment_id=str(appointment_id),
            action_type=action_type.value,
        )
        return record

    async def _get_token(self, token: str, for_update: bool = False) -> ActionTokenRecord:
        stmt = select(action_tokens).where(action_tokens.c.token == token)
        if for_update:
            stmt = stmt.with_for_update()

        row = (await self.db.execute(stmt)).fetchone()
        if row is None:
            raise NotFoundException("Action link is invalid")
        return ActionTokenRecord.model_validate(dict(row._mapping))

    async def _get_appointment(self, appointment_id: UUID) -> Row[Any]:
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.fetchone()
        if row is None:
            raise NotFoundException("Appointment not found")
        return row

    async def validate(self, token: str, for_update: bool = False) -> TokenValidation:
        """
        Check a token without using it.

        Args:
            token: Opaque token string
            for_update: Lock the token row until the surrounding transaction ends

        Returns:
            Validity, refusal reason and the referenced appointment

        Raises:
            NotFoundException: If the token does not exist
        """
        record = await self._get_token(token, for_update=for_update)
        row = await self._get_appointment(record.appointment_id)
        appointment = AppointmentResponse.model_validate(dict(row._mapping))

        reason = token_refusal(record, appointment.status, datetime.now(UTC))
        return TokenValidation(
            valid=reason is None,
            reason=reason,
            action_type=record.action_type,
            appointment=appointment,
        )

    async def require(
        self,
        token: str,
        action_type: ActionType | None = None,
        for_update: bool = False,
    ) -> TokenValidation:
        """
        Validate a token for an operation, raising on any refusal.

        Args:
            token: Opaque token string
            action_type: Operation being attempted; None accepts either type
            for_update: Lock the token row until the surrounding transaction ends

        Returns:
            Successful validation

        Raises:
            NotFoundException: If the token does not exist
            ActionTokenException: If the token is used, expired, refers to a
                cancelled appointment or was issued for another action
        """
        validation = await self.validate(token, for_update=for_update)
        if validation.reason is not None:
            logger.info("action_token_refused", reason=validation.reason.value)
            raise ActionTokenException(validation.reason)
        if action_type is not None and validation.action_type != action_type:
            logger.info(
                "action_token_refused",
                reason=ActionTokenReason.WRONG_ACTION_TYPE.value,
                expected=action_type.value,
            )
            raise ActionTokenException(ActionTokenReason.WRONG_ACTION_TYPE)
        return validation

    async def consume(self, token: str) -> None:
        """
        Mark a token used.

        Must run in the same transaction as the action it guards; the caller commits.

        Raises:
            ActionTokenException: If the token was used in the meantime
        """
        result = await self.db.execute(
            update(action_tokens)
            .where(action_tokens.c.token == token, action_tokens.c.used_at.is_(None))
            .values(used_at=datetime.now(UTC))
        )
        if result.rowcount == 0:
            raise ActionTokenException(ActionTokenReason.TOKEN_ALREADY_USED)

    async def invalidate_for_appointment(self, appointment_id: UUID) -> int:
        """Mark every outstanding token of an appointment used. The caller commits."""
        result = await self.db.execute(
            update(action_tokens)
            .where(
                action_tokens.c.appointment_id == appointment_id,
                action_tokens.c.used_at.is_(None),
            )
            .values(used_at=datetime.now(UTC))
        )
        return result.rowcount

    async def cleanup_expired(self, older_than: timedelta | None = None) -> int:
        """
        Delete tokens that expired long enough ago.

        Args:
            older_than: Grace period after expiry; defaults to the configured purge age

        Returns:
            Number of deleted tokens
        """
        if older_than is None:
            older_than = timedelta(hours=self.settings.action_token_purge_after_hours)
        cutoff = datetime.now(UTC) - older_than

        try:
            result = await self.db.execute(
                delete(action_tokens).where(action_tokens.c.expires_at < cutoff)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("action_tokens_purged", count=result.rowcount, cutoff=cutoff.isoformat())
        return result.rowcount
