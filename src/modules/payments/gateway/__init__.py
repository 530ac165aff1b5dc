"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- StripeGateway for production (``PAYMENT_GATEWAY=stripe``)
- FakeGateway for development and testing (``PAYMENT_GATEWAY=fake``)
"""

from __future__ import annotations

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from modules.payments.gateway.fake_adapter import FakeGateway
from modules.payments.gateway.port import PaymentGateway
from modules.payments.gateway.stripe_adapter import StripeGateway

_current_gateway: PaymentGateway | None = None


def _build_gateway() -> PaymentGateway:
    name = settings.PAYMENT_GATEWAY
    if name == "fake":
        return FakeGateway()
    if name == "stripe":
        return StripeGateway(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            currency=settings.PAYMENT_CURRENCY,
        )
    raise ImproperlyConfigured(f"Unknown PAYMENT_GATEWAY {name!r}.")


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway, built from settings on first use."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = _build_gateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to the configured gateway."""
    global _current_gateway
    _current_gateway = None
