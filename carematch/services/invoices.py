"""Invoice collaborator contract and the logging default."""

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class InvoiceGenerator(Protocol):
    def generate(self, appointment: Any) -> None: ...


class LoggingInvoiceGenerator:
    """Records that an invoice is due; document rendering lives elsewhere."""

    def generate(self, appointment: Any) -> None:
        logger.info(
            'Invoice issued for appointment %s family=%s amount=%s',
            appointment.id,
            appointment.family_id,
            appointment.family_charge_amount,
        )
