import pytest

from carematch.models.payment_record import PaymentRecord
from carematch.services.errors import ExternalServiceError
from carematch.services.payments import LedgerPaymentProcessor


def test_capture_is_recorded_once_per_appointment(db, make_appointment) -> None:
    appointment = make_appointment(status='completed')
    processor = LedgerPaymentProcessor(db)

    first = processor.capture(10000, appointment.id)
    replay = processor.capture(10000, appointment.id)

    assert first.id == replay.id
    assert db.query(PaymentRecord).count() == 1


def test_refund_and_capture_are_separate_entries(db, make_appointment) -> None:
    appointment = make_appointment(status='cancelled')
    processor = LedgerPaymentProcessor(db)

    refund = processor.refund(10000, appointment.id)
    charge = processor.capture(5000, appointment.id, 'no_show')

    assert (refund.action, refund.amount) == ('refund', 10000)
    assert (charge.action, charge.amount) == ('no_show', 5000)


def test_negative_amount_is_refused(db, make_appointment) -> None:
    appointment = make_appointment(status='completed')

    with pytest.raises(ExternalServiceError):
        LedgerPaymentProcessor(db).capture(-1, appointment.id)
