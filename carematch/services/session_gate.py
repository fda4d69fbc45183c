"""PIN-gated session start and completion.

The family hands the educator a PIN at the start and at the end of the
session. A wrong PIN consumes one attempt of the mode it was entered for;
once ``max_pin_attempts`` is reached the mode stays locked until support
unlocks it with ``unlock_pin_attempts``. There is no timed cooldown.

Completion flips the appointment to ``completed`` together with a pending
capture in one conditional update, then captures the price. If the capture
fails the appointment stays ``completed`` with ``settlement_status ==
'pending'`` and ``retry_settlement`` replays it; the ledger makes the replay
idempotent per appointment. Once the money has moved the invoice collaborator
is called, guarded by ``invoiced_at`` so each appointment is invoiced once.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from carematch.core.config import LifecyclePolicy
from carematch.models.appointment import Appointment
from carematch.models.session_pin_attempt import PIN_MODES, SessionPinAttempt
from carematch.services import financials, notifications, temporal_policy
from carematch.services.errors import (
    ActionResult,
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    LifecycleError,
    ValidationError,
)
from carematch.services.invoices import InvoiceGenerator, LoggingInvoiceGenerator
from carematch.services.payments import CAPTURE, PaymentProcessor
from carematch.services.pins import PIN_LENGTH, normalize_pin, pins_match
from carematch.services.registry import AppointmentRegistry

logger = logging.getLogger(__name__)


class SessionGate:
    def __init__(
        self,
        db: Session,
        registry: AppointmentRegistry | None = None,
        payments: PaymentProcessor | None = None,
        notifier: notifications.Notifier | None = None,
        policy: LifecyclePolicy | None = None,
        clock: Callable[[], datetime] | None = None,
        invoices: InvoiceGenerator | None = None,
    ):
        self.db = db
        self.invoices = invoices or LoggingInvoiceGenerator()
        self.registry = registry or AppointmentRegistry(
            db,
            payments=payments,
            notifier=notifier,
            policy=policy,
            clock=clock,
        )
        self.policy = self.registry.policy
        self.notifier = self.registry.notifier

    def _attempt_row(self, appointment_id: int, mode: str) -> SessionPinAttempt:
        row = self.db.query(SessionPinAttempt).filter(
            SessionPinAttempt.appointment_id == appointment_id,
            SessionPinAttempt.mode == mode,
        ).first()
        if row:
            return row

        row = SessionPinAttempt(
            appointment_id=appointment_id,
            mode=mode,
            attempts=0,
            max_attempts=self.policy.max_pin_attempts,
            locked=False,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except IntegrityError:
            # Another request created the counter first.
            self.db.rollback()
            row = self.db.query(SessionPinAttempt).filter(
                SessionPinAttempt.appointment_id == appointment_id,
                SessionPinAttempt.mode == mode,
            ).one()
        self.db.refresh(row)
        return row

    def _ensure_unlocked(self, row: SessionPinAttempt) -> None:
        if row.locked:
            raise ValidationError(
                'Too many incorrect PIN attempts. Please contact support to unlock this session.',
                attempts_left=0,
            )

    def _register_failure(self, row: SessionPinAttempt, now: datetime) -> int:
        try:
            self.db.execute(
                update(SessionPinAttempt)
                .where(SessionPinAttempt.id == row.id)
                .values(attempts=SessionPinAttempt.attempts + 1)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            self.db.refresh(row)
            if row.attempts >= row.max_attempts and not row.locked:
                row.locked = True
                row.locked_at = now
                self.db.commit()
                logger.warning('PIN %s locked for appointment %s', row.mode, row.appointment_id)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception('Could not record PIN attempt for appointment %s', row.appointment_id)
            raise
        return max(0, row.max_attempts - row.attempts)

    def _check_pin(self, appointment: Appointment, mode: str, pin: str | None, now: datetime) -> None:
        row = self._attempt_row(appointment.id, mode)
        self._ensure_unlocked(row)

        candidate = normalize_pin(pin)
        if candidate is None:
            raise ValidationError(
                f'Invalid PIN ({PIN_LENGTH} digits required).',
                attempts_left=max(0, row.max_attempts - row.attempts),
            )

        if not pins_match(appointment.pin_code, candidate):
            attempts_left = self._register_failure(row, now)
            if attempts_left == 0:
                raise ValidationError(
                    'Incorrect PIN. Maximum attempts reached; please contact support.',
                    attempts_left=0,
                )
            raise ValidationError('Incorrect PIN.', attempts_left=attempts_left)

    def _set_invoiced_at(self, appointment_id: int, value: datetime | None, unclaimed: bool) -> int:
        statement = update(Appointment).where(Appointment.id == appointment_id)
        if unclaimed:
            statement = statement.where(Appointment.invoiced_at.is_(None))
        try:
            result = self.db.execute(
                statement.values(invoiced_at=value).execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception('Could not update invoice state of appointment %s', appointment_id)
            raise
        return result.rowcount

    def _issue_invoice(self, appointment: Appointment, now: datetime) -> Appointment:
        """Invoice a completed, paid appointment exactly once."""
        if (
            appointment.status != 'completed'
            or appointment.settlement_status == 'pending'
            or appointment.invoiced_at is not None
        ):
            return appointment

        if self._set_invoiced_at(appointment.id, now, unclaimed=True) != 1:
            self.db.refresh(appointment)
            return appointment

        self.db.refresh(appointment)
        try:
            self.invoices.generate(appointment)
        except ExternalServiceError:
            logger.warning('Invoice for appointment %s failed; retry_settlement will reissue it', appointment.id)
            self._set_invoiced_at(appointment.id, None, unclaimed=False)
            self.db.refresh(appointment)
        return appointment

    def start_session(
        self,
        appointment_id: int,
        pin: str | None,
        actor_id: int,
        now: datetime | None = None,
    ) -> ActionResult:
        try:
            appointment = self.registry.get(appointment_id)
            if appointment.educator_id != actor_id:
                raise AuthorizationError('Only the assigned educator can start this session.')
            if appointment.status != 'accepted':
                raise ConflictError('The appointment must be accepted before the session starts.', status=appointment.status)
            if appointment.started_at is not None:
                raise ConflictError('The session has already been started.', status=appointment.status)

            current_time = self.registry.now(now)
            decision = temporal_policy.can_start_session(appointment, current_time, self.policy)
            if not decision.allowed:
                raise ValidationError(decision.reason)

            self._check_pin(appointment, 'start', pin, current_time)

            appointment = self.registry.transition(
                appointment_id,
                'accepted',
                {'started_at': current_time},
                started=False,
            )
        except LifecycleError as exc:
            return ActionResult.failure(exc)

        notifications.dispatch(
            self.notifier,
            notifications.SESSION_STARTED,
            appointment,
            started_at=appointment.started_at.isoformat(),
        )
        return ActionResult.ok(appointment_id=appointment.id, status=appointment.status)

    def complete_session(
        self,
        appointment_id: int,
        pin: str | None,
        actor_id: int,
        now: datetime | None = None,
    ) -> ActionResult:
        try:
            appointment = self.registry.get(appointment_id)
            if appointment.educator_id != actor_id:
                raise AuthorizationError('Only the assigned educator can complete this session.')
            if appointment.status != 'accepted' or appointment.started_at is None:
                raise ConflictError('Only a started session can be completed.', status=appointment.status)

            current_time = self.registry.now(now)
            decision = temporal_policy.can_complete_session(appointment, current_time, self.policy)
            if not decision.allowed:
                raise ValidationError(
                    decision.reason,
                    minutes_remaining=decision.minutes_remaining,
                    seconds_remaining=decision.seconds_remaining,
                )

            self._check_pin(appointment, 'complete', pin, current_time)

            outcome = financials.completion_outcome(appointment.price, self.policy)
            appointment = self.registry.transition(
                appointment_id,
                'accepted',
                {
                    'status': 'completed',
                    'completed_at': current_time,
                    'family_charge_amount': outcome.family_charge_amount,
                    'compensation_amount': outcome.provider_payout_amount,
                    'settlement_action': CAPTURE,
                    'settlement_amount': outcome.family_charge_amount,
                    'settlement_status': 'pending' if outcome.family_charge_amount else 'not_required',
                },
                started=True,
            )
        except LifecycleError as exc:
            return ActionResult.failure(exc)

        try:
            appointment = self.registry.settle(appointment)
        except ExternalServiceError:
            logger.warning('Capture for appointment %s failed; settlement left pending', appointment.id)
            self.db.refresh(appointment)
            notifications.dispatch(self.notifier, notifications.SESSION_SETTLEMENT_PENDING, appointment)
        else:
            appointment = self._issue_invoice(appointment, current_time)
            notifications.dispatch(
                self.notifier,
                notifications.SESSION_COMPLETED,
                appointment,
                family_charge_amount=appointment.family_charge_amount,
            )

        return ActionResult.ok(
            appointment_id=appointment.id,
            status=appointment.status,
            family_charge_amount=appointment.family_charge_amount,
            settlement_status=appointment.settlement_status,
            settlement_pending=appointment.settlement_status == 'pending',
        )

    def retry_settlement(self, appointment_id: int) -> ActionResult:
        try:
            appointment = self.registry.get(appointment_id)
            was_pending = appointment.settlement_status == 'pending'
            if was_pending:
                appointment = self.registry.settle(appointment)
        except LifecycleError as exc:
            return ActionResult.failure(exc)

        appointment = self._issue_invoice(appointment, self.registry.now())

        if was_pending and appointment.status == 'completed':
            notifications.dispatch(self.notifier, notifications.SESSION_COMPLETED, appointment)
        return ActionResult.ok(
            appointment_id=appointment.id,
            status=appointment.status,
            settlement_status=appointment.settlement_status,
        )

    def unlock_pin_attempts(self, appointment_id: int, mode: str, actor_role: str) -> ActionResult:
        try:
            if actor_role != 'admin':
                raise AuthorizationError('Only support staff can unlock PIN attempts.')
            if mode not in PIN_MODES:
                raise ValidationError("Mode must be 'start' or 'complete'.")

            self.registry.get(appointment_id)
            row = self._attempt_row(appointment_id, mode)
            try:
                row.attempts = 0
                row.locked = False
                row.locked_at = None
                self.db.commit()
            except SQLAlchemyError:
                self.db.rollback()
                logger.exception('Could not unlock PIN %s for appointment %s', mode, appointment_id)
                raise
        except LifecycleError as exc:
            return ActionResult.failure(exc)

        logger.info('PIN %s unlocked for appointment %s', mode, appointment_id)
        return ActionResult.ok(appointment_id=appointment_id, attempts_left=row.max_attempts)
