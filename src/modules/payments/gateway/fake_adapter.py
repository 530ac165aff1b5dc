"""Configurable fake payment gateway for development and testing.

Simulates hosted checkout sessions without any external calls.  It can
be configured at runtime to succeed or fail, and records every call so
tests can assert on what would have been sent to the provider.

Webhooks are plain JSON in the provider's event shape, signed with the
literal ``test-signature``.
"""

from __future__ import annotations

import json
from typing import Mapping, Optional, Sequence
from uuid import uuid4

from modules.payments.exceptions import InvalidWebhookSignature, PaymentProviderError
from modules.payments.gateway.port import (
    CheckoutLineItem,
    CheckoutSession,
    PaymentEvent,
    PaymentGateway,
)

FAKE_SIGNATURE = "test-signature"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Payment provider unavailable"
        self.calls: list[dict] = []

    def configure(
        self, should_succeed: bool, failure_reason: str = "Payment provider unavailable"
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def create_checkout_session(
        self,
        line_items: Sequence[CheckoutLineItem],
        customer_email: str,
        metadata: Mapping[str, str],
        success_url: str,
        cancel_url: str,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        self.calls.append(
            {
                "method": "create_checkout_session",
                "line_items": list(line_items),
                "customer_email": customer_email,
                "metadata": dict(metadata),
                "success_url": success_url,
                "cancel_url": cancel_url,
                "idempotency_key": idempotency_key,
            }
        )

        if not self.should_succeed:
            raise PaymentProviderError(self.failure_reason)

        session_id = f"cs_test_fake_{uuid4().hex[:16]}"
        return CheckoutSession(
            id=session_id,
            url=f"https://checkout.fake.local/pay/{session_id}",
        )

    def parse_webhook_event(self, payload: bytes, signature: str) -> PaymentEvent:
        if signature != FAKE_SIGNATURE:
            raise InvalidWebhookSignature("Invalid webhook signature.")
        try:
            body = json.loads(payload)
            obj = body["data"]["object"]
            return PaymentEvent.from_provider_object(
                body["type"], obj, event_id=body.get("id", "")
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise InvalidWebhookSignature("Malformed webhook payload.") from exc
