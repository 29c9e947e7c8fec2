"""Payment gateway service.

Selects the gateway adapter the settlement services charge and refund through.
No business logic here - only gateway coordination.
"""

from functools import lru_cache

from rentalpay.config import settings
from rentalpay.gateways.base import PaymentGateway
from rentalpay.gateways.manual import ManualGateway
from rentalpay.gateways.stripe_gateway import StripeGateway


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """Stripe when a secret key is configured, otherwise offline collection."""
    if settings.stripe_secret_key:
        return StripeGateway()
    return ManualGateway()
