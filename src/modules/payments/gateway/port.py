"""Payment gateway port (abstract interface).

Defines the contract that all payment gateway adapters must implement.
This enables swapping between FakeGateway (dev/test) and StripeGateway
(production) without changing any domain or application code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_EXPIRED = "checkout.session.expired"
CHARGE_REFUNDED = "charge.refunded"


@dataclass(frozen=True)
class CheckoutLineItem:
    """One cart line as shown on the hosted checkout page."""

    name: str
    unit_amount: int  # minor units (cents)
    quantity: int


@dataclass(frozen=True)
class CheckoutSession:
    """A hosted checkout session the buyer is redirected to."""

    id: str
    url: str


@dataclass(frozen=True)
class PaymentEvent:
    """Provider notification reduced to what the order workflow needs."""

    type: str
    event_id: str = ""
    session_id: str = ""
    payment_intent_id: str = ""
    order_id: str = ""
    fully_refunded: bool = False
    amount_refunded: int = 0

    @classmethod
    def from_provider_object(
        cls, event_type: str, obj: Mapping[str, Any], event_id: str = ""
    ) -> PaymentEvent:
        """Build an event from the ``data.object`` of a provider notification.

        Checkout sessions carry their own id and the ``order_id`` metadata;
        charges only reference the payment intent.  A charge counts as fully
        refunded only when the provider sets its ``refunded`` flag; partial
        refunds just raise ``amount_refunded``.
        """
        metadata = obj.get("metadata") or {}
        is_session = event_type.startswith("checkout.session.")
        return cls(
            type=event_type,
            event_id=event_id or "",
            session_id=(obj.get("id") or "") if is_session else "",
            payment_intent_id=obj.get("payment_intent") or "",
            order_id=metadata.get("order_id") or "",
            fully_refunded=bool(obj.get("refunded")),
            amount_refunded=int(obj.get("amount_refunded") or 0),
        )


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_checkout_session(
        self,
        line_items: Sequence[CheckoutLineItem],
        customer_email: str,
        metadata: Mapping[str, str],
        success_url: str,
        cancel_url: str,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        """Open a hosted checkout session.

        Raises:
            PaymentProviderError: the provider rejected or could not be reached.
        """

    @abstractmethod
    def parse_webhook_event(self, payload: bytes, signature: str) -> PaymentEvent:
        """Verify and decode a webhook notification.

        Raises:
            InvalidWebhookSignature: the payload is not authentic.
        """
