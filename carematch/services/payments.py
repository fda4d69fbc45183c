"""Payment collaborator contract and the ledger-backed default implementation."""

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from carematch.models.payment_record import PaymentRecord
from carematch.services.errors import ExternalServiceError

logger = logging.getLogger(__name__)

CAPTURE = 'capture'
REFUND = 'refund'
NO_SHOW_CHARGE = 'no_show'


class PaymentProcessor(Protocol):
    def capture(self, amount: int, appointment_id: int, action: str = CAPTURE) -> PaymentRecord: ...

    def refund(self, amount: int, appointment_id: int) -> PaymentRecord: ...


class LedgerPaymentProcessor:
    """Records money movements once per appointment and action.

    Replaying a capture or refund for the same appointment returns the record
    written the first time instead of moving money twice.
    """

    def __init__(self, db: Session):
        self.db = db

    def capture(self, amount: int, appointment_id: int, action: str = CAPTURE) -> PaymentRecord:
        return self._record(amount, appointment_id, action)

    def refund(self, amount: int, appointment_id: int) -> PaymentRecord:
        return self._record(amount, appointment_id, REFUND)

    def _find(self, appointment_id: int, action: str) -> PaymentRecord | None:
        return self.db.query(PaymentRecord).filter(
            PaymentRecord.appointment_id == appointment_id,
            PaymentRecord.action == action,
        ).first()

    def _record(self, amount: int, appointment_id: int, action: str) -> PaymentRecord:
        if amount < 0:
            raise ExternalServiceError('Payment amounts cannot be negative.', appointment_id=appointment_id)

        try:
            existing = self._find(appointment_id, action)
            if existing:
                logger.info('Payment %s for appointment %s already recorded', action, appointment_id)
                return existing

            record = PaymentRecord(
                appointment_id=appointment_id,
                action=action,
                amount=amount,
                created_at=datetime.now(),
            )
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
            return record
        except IntegrityError:
            self.db.rollback()
            existing = self._find(appointment_id, action)
            if existing:
                return existing
            raise ExternalServiceError('Payment could not be recorded.', appointment_id=appointment_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Payment %s failed for appointment %s', action, appointment_id)
            raise ExternalServiceError('Payment processor unavailable.', appointment_id=appointment_id) from exc
