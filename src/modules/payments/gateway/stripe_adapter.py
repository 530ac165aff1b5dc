"""Stripe payment gateway adapter.

Uses the stripe-python SDK to open hosted Checkout Sessions and to
verify webhook signatures with the endpoint's signing secret.  The API
key is passed per request so no module-level SDK state is touched.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

import stripe
import structlog

from modules.payments.exceptions import InvalidWebhookSignature, PaymentProviderError
from modules.payments.gateway.port import (
    CheckoutLineItem,
    CheckoutSession,
    PaymentEvent,
    PaymentGateway,
)

logger = structlog.get_logger(__name__)


class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter."""

    def __init__(self, api_key: str, webhook_secret: str, currency: str = "usd") -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def create_checkout_session(
        self,
        line_items: Sequence[CheckoutLineItem],
        customer_email: str,
        metadata: Mapping[str, str],
        success_url: str,
        cancel_url: str,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {"name": item.name},
                        "unit_amount": item.unit_amount,
                    },
                    "quantity": item.quantity,
                }
                for item in line_items
            ],
            "customer_email": customer_email or None,
            "metadata": dict(metadata),
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            logger.warning(
                "stripe.checkout_session_failed",
                error=exc.user_message or str(exc),
                http_status=exc.http_status,
            )
            raise PaymentProviderError(exc.user_message or str(exc)) from exc

        return CheckoutSession(id=session.id, url=session.url or "")

    def parse_webhook_event(self, payload: bytes, signature: str) -> PaymentEvent:
        try:
            event = stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            raise InvalidWebhookSignature("Invalid webhook signature.") from exc
        except ValueError as exc:
            raise InvalidWebhookSignature("Malformed webhook payload.") from exc

        return PaymentEvent.from_provider_object(
            event["type"], event["data"]["object"], event_id=event["id"]
        )
