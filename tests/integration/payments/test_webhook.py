"""Integration tests for the payment provider webhook.

Covers:
- Signature verification (400 on a bad signature or malformed body).
- checkout.session.completed marks the order paid and confirmed.
- checkout.session.expired cancels the order and releases stock.
- Expiry of a session replaced by a payment retry is ignored.
- charge.refunded found through the payment intent; partial refunds ignored.
- Unknown orders and unhandled event types are acknowledged.
- The endpoint needs no user authentication and is not throttled.
"""

from __future__ import annotations

import json

import pytest

from modules.orders.constants import OrderStatus, PaymentStatus
from modules.orders.models import Order
from modules.payments.gateway.fake_adapter import FAKE_SIGNATURE

pytestmark = pytest.mark.integration

URL = "/api/v1/payments/webhook/"


@pytest.fixture()
def product(make_product):
    return make_product(stock_quantity=10)


@pytest.fixture()
def placed_order(auth_client, product, fake_gateway):
    response = auth_client.post(
        "/api/v1/orders/",
        {
            "items": [{"productId": str(product.id), "quantity": 3}],
            "shippingAddress": {"name": "Jane Doe", "city": "Springfield"},
        },
        format="json",
    )
    return Order.objects.get(pk=response.json()["data"]["orderId"])


def _send(client, event_type, obj, signature=FAKE_SIGNATURE, event_id="evt_1"):
    body = json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})
    return client.post(
        URL, data=body, content_type="application/json", HTTP_STRIPE_SIGNATURE=signature
    )


def _session(order: Order, **extra) -> dict:
    return {
        "id": order.payment_session_id,
        "metadata": {"order_id": str(order.id), "order_number": order.order_number},
        **extra,
    }


class TestWebhookSignature:
    def test_bad_signature_is_rejected(self, api_client, placed_order):
        response = _send(
            api_client, "checkout.session.completed", _session(placed_order), "forged"
        )

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "message": "Invalid webhook signature.",
        }
        placed_order.refresh_from_db()
        assert placed_order.payment_status == PaymentStatus.PENDING

    def test_malformed_body_is_rejected(self, api_client, fake_gateway):
        response = api_client.post(
            URL,
            data="not json",
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=FAKE_SIGNATURE,
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Malformed webhook payload."


class TestCheckoutCompleted:
    def test_marks_order_paid(self, api_client, placed_order):
        response = _send(
            api_client,
            "checkout.session.completed",
            _session(placed_order, payment_intent="pi_123"),
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
        placed_order.refresh_from_db()
        assert placed_order.payment_status == PaymentStatus.PAID
        assert placed_order.status == OrderStatus.CONFIRMED
        assert placed_order.payment_intent_id == "pi_123"

    def test_replay_is_acknowledged(self, api_client, placed_order):
        for _ in range(2):
            response = _send(
                api_client, "checkout.session.completed", _session(placed_order)
            )
            assert response.status_code == 200

        assert placed_order.status_history.filter(notes="Payment received").count() == 1

    def test_matched_by_session_id_without_metadata(self, api_client, placed_order):
        _send(
            api_client,
            "checkout.session.completed",
            {"id": placed_order.payment_session_id},
        )

        placed_order.refresh_from_db()
        assert placed_order.payment_status == PaymentStatus.PAID

    def test_webhook_ignores_session_authentication(self, auth_client, placed_order):
        response = _send(auth_client, "checkout.session.completed", _session(placed_order))
        assert response.status_code == 200


class TestCheckoutExpired:
    def test_cancels_and_releases_stock(self, api_client, placed_order, product):
        product.refresh_from_db()
        assert product.stock_quantity == 7

        _send(api_client, "checkout.session.expired", _session(placed_order))

        placed_order.refresh_from_db()
        product.refresh_from_db()
        assert placed_order.status == OrderStatus.CANCELLED
        assert placed_order.payment_status == PaymentStatus.FAILED
        assert product.stock_quantity == 10

    def test_superseded_session_is_ignored(
        self, auth_client, api_client, placed_order, product
    ):
        stale = _session(placed_order)
        response = auth_client.post(f"/api/v1/orders/{placed_order.id}/pay/")
        assert response.status_code == 200

        _send(api_client, "checkout.session.expired", stale)

        placed_order.refresh_from_db()
        product.refresh_from_db()
        assert placed_order.status == OrderStatus.PENDING
        assert placed_order.payment_status == PaymentStatus.PENDING
        current = response.json()["data"]["stripeSessionId"]
        assert placed_order.payment_session_id == current
        assert product.stock_quantity == 7


class TestChargeRefunded:
    def test_refund_found_by_payment_intent(self, api_client, placed_order):
        _send(
            api_client,
            "checkout.session.completed",
            _session(placed_order, payment_intent="pi_refund"),
        )

        response = _send(
            api_client,
            "charge.refunded",
            {
                "id": "ch_1",
                "payment_intent": "pi_refund",
                "refunded": True,
                "amount_refunded": 3000,
            },
            event_id="evt_2",
        )

        assert response.status_code == 200
        placed_order.refresh_from_db()
        assert placed_order.payment_status == PaymentStatus.REFUNDED
        assert placed_order.status == OrderStatus.CANCELLED

    def test_partial_refund_keeps_order(self, api_client, placed_order, product):
        _send(
            api_client,
            "checkout.session.completed",
            _session(placed_order, payment_intent="pi_partial"),
        )

        response = _send(
            api_client,
            "charge.refunded",
            {
                "id": "ch_2",
                "payment_intent": "pi_partial",
                "refunded": False,
                "amount_refunded": 500,
            },
            event_id="evt_3",
        )

        assert response.status_code == 200
        placed_order.refresh_from_db()
        product.refresh_from_db()
        assert placed_order.payment_status == PaymentStatus.PAID
        assert placed_order.status == OrderStatus.CONFIRMED
        assert product.stock_quantity == 7


class TestUnmatchedEvents:
    def test_unknown_order_is_acknowledged(self, api_client, fake_gateway):
        response = _send(api_client, "checkout.session.completed", {"id": "cs_unknown"})

        assert response.status_code == 200
        assert response.json() == {"received": True}

    def test_unhandled_type_is_acknowledged(self, api_client, placed_order):
        response = _send(api_client, "customer.created", {"id": "cus_1"})

        assert response.status_code == 200
        placed_order.refresh_from_db()
        assert placed_order.payment_status == PaymentStatus.PENDING
