"""Payment gateway exceptions."""

from __future__ import annotations


class PaymentProviderError(Exception):
    """The payment provider could not open a checkout session.

    Raised after the order is already persisted; the order stays
    ``pending`` and payment can be retried.
    """


class InvalidWebhookSignature(Exception):
    """A webhook payload failed signature verification or could not be parsed."""
