"""Lifecycle event notifications."""

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

APPOINTMENT_ACCEPTED = 'appointment.accepted'
APPOINTMENT_REJECTED = 'appointment.rejected'
APPOINTMENT_CANCELLED = 'appointment.cancelled'
APPOINTMENT_NO_SHOW = 'appointment.no_show'
SESSION_STARTED = 'session.started'
SESSION_COMPLETED = 'session.completed'
SESSION_SETTLEMENT_PENDING = 'session.settlement_pending'

# Delivered to the recipient only, never written to the application log.
SECRET_PAYLOAD_KEYS = frozenset({'pin_code'})


class Notifier(Protocol):
    def notify(self, event: str, appointment: Any, **payload: Any) -> None: ...


class LoggingNotifier:
    def notify(self, event: str, appointment: Any, **payload: Any) -> None:
        loggable = {key: value for key, value in payload.items() if key not in SECRET_PAYLOAD_KEYS}
        logger.info('%s appointment=%s payload=%s', event, appointment.id, loggable)


def dispatch(notifier: Notifier, event: str, appointment: Any, **payload: Any) -> None:
    """Fire-and-forget: a failing notifier never undoes a committed transition."""
    try:
        notifier.notify(event, appointment, **payload)
    except Exception:
        logger.exception('Notification %s failed for appointment %s', event, appointment.id)
