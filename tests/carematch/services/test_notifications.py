import logging
from types import SimpleNamespace

from carematch.services import notifications
from carematch.services.registry import AppointmentRegistry


class BrokenNotifier:
    def notify(self, event, appointment, **payload):
        raise RuntimeError('mail server down')


def test_logging_notifier_never_logs_the_session_pin(db, users, make_appointment, caplog) -> None:
    appointment = make_appointment(status='pending')
    registry = AppointmentRegistry(db)

    with caplog.at_level(logging.INFO, logger='carematch.services.notifications'):
        result = registry.respond_to_appointment(appointment.id, 'accept', actor_id=users['educator'].id)

    pin_code = registry.get(appointment.id).pin_code
    assert result.success is True
    assert 'appointment.accepted' in caplog.text
    assert pin_code not in caplog.text
    assert 'pin_code' not in caplog.text


def test_logging_notifier_keeps_other_payload_fields(caplog) -> None:
    with caplog.at_level(logging.INFO, logger='carematch.services.notifications'):
        notifications.LoggingNotifier().notify(
            notifications.APPOINTMENT_CANCELLED,
            SimpleNamespace(id=7),
            cancelled_by='family',
            refund_amount=10000,
        )

    assert "appointment.cancelled appointment=7 payload={'cancelled_by': 'family', 'refund_amount': 10000}" in caplog.text


def test_dispatch_swallows_notifier_failures(caplog) -> None:
    with caplog.at_level(logging.ERROR, logger='carematch.services.notifications'):
        notifications.dispatch(BrokenNotifier(), notifications.SESSION_STARTED, SimpleNamespace(id=3))

    assert 'Notification session.started failed for appointment 3' in caplog.text
