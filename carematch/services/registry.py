"""Canonical appointment state and its transitions.

Every status change is a single conditional ``UPDATE`` keyed on the status
(and, where it matters, on ``started_at``) the caller observed. When two
requests race on one appointment the database lets exactly one of them
match; the other sees a rowcount of zero and gets a ``ConflictError``.

Allowed edges::

    pending  --accept-->          accepted
    pending  --reject-->          rejected
    accepted --start-->           accepted (started_at set)
    accepted(started) --complete--> completed
    accepted(not started) --cancel-->   cancelled
    accepted(not started) --no_show-->  no_show
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, time
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carematch.core.config import LifecyclePolicy, load_policy
from carematch.models.appointment import LOCATION_TYPES, Appointment
from carematch.services import financials, notifications, temporal_policy
from carematch.services.errors import (
    ActionResult,
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from carematch.services.payments import NO_SHOW_CHARGE, REFUND, LedgerPaymentProcessor, PaymentProcessor
from carematch.services.pins import generate_pin

logger = logging.getLogger(__name__)

RESPONSE_DECISIONS = {'accept': 'accepted', 'reject': 'rejected'}
MAX_REJECTION_REASON_LENGTH = 600


class AppointmentRegistry:
    def __init__(
        self,
        db: Session,
        payments: PaymentProcessor | None = None,
        notifier: notifications.Notifier | None = None,
        policy: LifecyclePolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.payments = payments or LedgerPaymentProcessor(db)
        self.notifier = notifier or notifications.LoggingNotifier()
        self.policy = policy or load_policy()
        self.clock = clock or (lambda: temporal_policy.local_now(self.policy))

    def now(self, override: datetime | None = None) -> datetime:
        return temporal_policy.to_wall_clock(override or self.clock(), self.policy)

    def get(self, appointment_id: int) -> Appointment:
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.', appointment_id=appointment_id)
        return appointment

    def transition(
        self,
        appointment_id: int,
        expected_status: str,
        values: dict[str, Any],
        started: bool | None = None,
    ) -> Appointment:
        """Apply ``values`` only if the row still matches the expected state."""
        statement = update(Appointment).where(
            Appointment.id == appointment_id,
            Appointment.status == expected_status,
        )
        if started is True:
            statement = statement.where(Appointment.started_at.is_not(None))
        elif started is False:
            statement = statement.where(Appointment.started_at.is_(None))

        try:
            result = self.db.execute(
                statement.values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                current = self.db.get(Appointment, appointment_id)
                if current is None:
                    raise NotFoundError('Appointment not found.', appointment_id=appointment_id)
                self.db.refresh(current)
                raise ConflictError(
                    'The appointment was changed by another action; please reload it.',
                    appointment_id=appointment_id,
                    status=current.status,
                )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception('Transition of appointment %s from %s failed', appointment_id, expected_status)
            raise

        appointment = self.get(appointment_id)
        self.db.refresh(appointment)
        return appointment

    def settle(self, appointment: Appointment) -> Appointment:
        """Run the pending money movement of a terminal transition, once."""
        if appointment.settlement_status != 'pending':
            return appointment

        amount = appointment.settlement_amount or 0
        if appointment.settlement_action == REFUND:
            self.payments.refund(amount, appointment.id)
        else:
            self.payments.capture(amount, appointment.id, appointment.settlement_action)

        try:
            self.db.execute(
                update(Appointment)
                .where(Appointment.id == appointment.id, Appointment.settlement_status == 'pending')
                .values(settlement_status='settled')
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception('Could not mark appointment %s as settled', appointment.id)
            raise

        self.db.refresh(appointment)
        return appointment

    def _settle_or_defer(self, appointment: Appointment) -> Appointment:
        try:
            return self.settle(appointment)
        except ExternalServiceError:
            logger.warning(
                'Settlement %s of appointment %s deferred',
                appointment.settlement_action,
                appointment.id,
            )
            self.db.refresh(appointment)
            return appointment

    def create_appointment(
        self,
        family_id: int,
        educator_id: int,
        appointment_date: date,
        start_time: time,
        end_time: time,
        price: int,
        location_type: str = 'home',
        child_id: int | None = None,
        address: str | None = None,
        notes: str | None = None,
    ) -> Appointment:
        if end_time <= start_time:
            raise ValidationError('The appointment must end after it starts.')
        if isinstance(price, bool) or not isinstance(price, int) or price < 0:
            raise ValidationError('Price must be a non-negative amount in cents.')
        if family_id == educator_id:
            raise ValidationError('Family and educator must be different users.')
        if location_type not in LOCATION_TYPES:
            raise ValidationError('Invalid location type.')

        appointment = Appointment(
            family_id=family_id,
            educator_id=educator_id,
            child_id=child_id,
            date=appointment_date,
            start_time=start_time,
            end_time=end_time,
            location_type=location_type,
            address=address,
            notes=notes,
            price=price,
            status='pending',
            settlement_status='not_required',
        )
        try:
            self.db.add(appointment)
            self.db.commit()
            self.db.refresh(appointment)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception('Could not create appointment for family %s', family_id)
            raise
        return appointment

    def respond_to_appointment(
        self,
        appointment_id: int,
        decision: str,
        actor_id: int,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> ActionResult:
        try:
            appointment = self.get(appointment_id)
            if appointment.educator_id != actor_id:
                raise AuthorizationError('Only the assigned educator can respond to this appointment.')

            target_status = RESPONSE_DECISIONS.get((decision or '').strip().lower())
            if target_status is None:
                raise ValidationError("Decision must be 'accept' or 'reject'.")

            if appointment.status != 'pending':
                raise ConflictError(
                    'This appointment can no longer be accepted or rejected.',
                    status=appointment.status,
                )

            values: dict[str, Any] = {'status': target_status, 'responded_at': self.now(now)}
            pin_code = None
            if target_status == 'accepted':
                pin_code = generate_pin()
                values['pin_code'] = pin_code
            else:
                reason = (reason or '').strip() or None
                if reason and len(reason) > MAX_REJECTION_REASON_LENGTH:
                    raise ValidationError(
                        f'Rejection reason must be {MAX_REJECTION_REASON_LENGTH} characters or fewer.'
                    )
                values['rejection_reason'] = reason

            appointment = self.transition(appointment_id, 'pending', values)
        except LifecycleError as exc:
            return ActionResult.failure(exc)

        if target_status == 'accepted':
            # The PIN only travels to the family, never back to the educator.
            notifications.dispatch(
                self.notifier,
                notifications.APPOINTMENT_ACCEPTED,
                appointment,
                family_id=appointment.family_id,
                pin_code=pin_code,
            )
        else:
            notifications.dispatch(
                self.notifier,
                notifications.APPOINTMENT_REJECTED,
                appointment,
                reason=appointment.rejection_reason,
            )

        return ActionResult.ok(appointment_id=appointment.id, status=appointment.status)

    def cancel_appointment(self, appointment_id: int, actor_id: int, now: datetime | None = None) -> ActionResult:
        try:
            appointment = self.get(appointment_id)
            if actor_id == appointment.family_id:
                cancelled_by = 'family'
            elif actor_id == appointment.educator_id:
                cancelled_by = 'educator'
            else:
                raise AuthorizationError('Only the family or the educator of this appointment can cancel it.')

            if appointment.status != 'accepted':
                raise ConflictError('This appointment can no longer be cancelled.', status=appointment.status)
            if appointment.started_at is not None:
                raise ConflictError('The session has already started and cannot be cancelled.', status=appointment.status)

            current_time = self.now(now)
            decision = temporal_policy.can_cancel(appointment, current_time, self.policy)
            if not decision.allowed:
                raise ValidationError(decision.reason, hours_remaining=decision.hours_remaining)

            outcome = financials.cancellation_outcome(appointment.price, self.policy)
            appointment = self.transition(
                appointment_id,
                'accepted',
                {
                    'status': 'cancelled',
                    'cancelled_at': current_time,
                    'cancelled_by': cancelled_by,
                    'refund_amount': outcome.refund_amount,
                    'compensation_amount': outcome.compensation_amount,
                    'settlement_action': REFUND,
                    'settlement_amount': outcome.refund_amount,
                    'settlement_status': 'pending' if outcome.refund_amount else 'not_required',
                },
                started=False,
            )
        except LifecycleError as exc:
            return ActionResult.failure(exc)

        appointment = self._settle_or_defer(appointment)
        notifications.dispatch(
            self.notifier,
            notifications.APPOINTMENT_CANCELLED,
            appointment,
            cancelled_by=appointment.cancelled_by,
            refund_amount=appointment.refund_amount,
        )
        return ActionResult.ok(
            appointment_id=appointment.id,
            status=appointment.status,
            refund_amount=appointment.refund_amount,
            settlement_status=appointment.settlement_status,
            settlement_pending=appointment.settlement_status == 'pending',
        )

    def report_no_show(self, appointment_id: int, actor_id: int, now: datetime | None = None) -> ActionResult:
        try:
            appointment = self.get(appointment_id)
            if appointment.educator_id != actor_id:
                raise AuthorizationError('Only the assigned educator can report an absence.')

            if appointment.status != 'accepted':
                raise ConflictError('This appointment cannot be marked as a no-show.', status=appointment.status)
            if appointment.started_at is not None:
                raise ConflictError('The session has already started.', status=appointment.status)

            current_time = self.now(now)
            decision = temporal_policy.can_report_no_show(appointment, current_time, self.policy)
            if not decision.allowed:
                raise ValidationError(decision.reason, minutes_remaining=decision.minutes_remaining)

            outcome = financials.no_show_outcome(appointment.price, self.policy)
            appointment = self.transition(
                appointment_id,
                'accepted',
                {
                    'status': 'no_show',
                    'no_show_reported_at': current_time,
                    'family_charge_amount': outcome.family_charge_amount,
                    'compensation_amount': outcome.compensation_amount,
                    'refund_amount': appointment.price - outcome.family_charge_amount,
                    'settlement_action': NO_SHOW_CHARGE,
                    'settlement_amount': outcome.family_charge_amount,
                    'settlement_status': 'pending' if outcome.family_charge_amount else 'not_required',
                },
                started=False,
            )
        except LifecycleError as exc:
            return ActionResult.failure(exc)

        appointment = self._settle_or_defer(appointment)
        notifications.dispatch(
            self.notifier,
            notifications.APPOINTMENT_NO_SHOW,
            appointment,
            family_charge_amount=appointment.family_charge_amount,
            compensation_amount=appointment.compensation_amount,
        )
        return ActionResult.ok(
            appointment_id=appointment.id,
            status=appointment.status,
            compensation_amount=appointment.compensation_amount,
            family_charge_amount=appointment.family_charge_amount,
            settlement_status=appointment.settlement_status,
            settlement_pending=appointment.settlement_status == 'pending',
        )
