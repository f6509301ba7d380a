"""
Payment capability.

The booking engine only needs to know whether a charge succeeded. The real
provider is out of scope; SimulatedPaymentGateway stands in for it and the
gateway class is picked with the PAYMENT_GATEWAY_CLASS setting.
"""

import logging
import uuid
from dataclasses import dataclass

from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    reason: str = ''
    reference: str = ''


class SimulatedPaymentGateway:
    """Accepts card and cash charges for positive amounts."""

    SUPPORTED_METHODS = ('card', 'cash')

    def charge(self, amount: int, method: str) -> PaymentResult:
        if method not in self.SUPPORTED_METHODS:
            logger.warning(f"Rejected charge with unsupported method '{method}'")
            return PaymentResult(success=False, reason="Unsupported payment method")
        if amount is None or amount <= 0:
            return PaymentResult(success=False, reason="Amount must be positive")

        reference = f"pay_{uuid.uuid4().hex[:16]}"
        logger.info(f"Charged {amount} by {method} ({reference})")
        return PaymentResult(success=True, reference=reference)


def get_payment_gateway():
    """Instantiate the configured payment gateway."""
    return import_string(settings.PAYMENT_GATEWAY_CLASS)()
