"""Unit tests for Orders event handlers and in-memory bus."""

from __future__ import annotations

import logging
from uuid import uuid4

import pytest

from modules.orders.events import (
    OrderCancelled,
    OrderCreated,
    OrderPaymentStatusChanged,
    OrderStatusChanged,
)
from modules.orders.handlers import (
    OrderCancelledHandler,
    OrderCreatedHandler,
    OrderPaymentStatusChangedHandler,
    OrderStatusChangedHandler,
    order_created_handler,
)
from shared.infrastructure.bus import InMemoryEventBus, event_bus

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("handler", "event", "expected"),
    [
        (
            OrderCreatedHandler(),
            OrderCreated(aggregate_id=uuid4(), order_number="ORD-20260101-ABCDEF"),
            "order.created_event_handled",
        ),
        (
            OrderCancelledHandler(),
            OrderCancelled(aggregate_id=uuid4(), reason="Checkout session expired"),
            "order.cancelled_event_handled",
        ),
        (
            OrderStatusChangedHandler(),
            OrderStatusChanged(
                aggregate_id=uuid4(), old_status="pending", new_status="confirmed"
            ),
            "order.status_changed_event_handled",
        ),
        (
            OrderPaymentStatusChangedHandler(),
            OrderPaymentStatusChanged(aggregate_id=uuid4(), payment_status="paid"),
            "order.payment_status_event_handled",
        ),
    ],
)
def test_handler_logs_event(caplog, handler, event, expected):
    with caplog.at_level(logging.INFO, logger="modules.orders.handlers"):
        handler.handle(event)

    messages = [record.getMessage() for record in caplog.records]
    assert any(expected in m and str(event.aggregate_id) in m for m in messages)


def test_in_memory_event_bus_routes_events():
    bus = InMemoryEventBus()
    handled = []

    class CapturingHandler:
        def handle(self, event) -> None:
            handled.append(event)

    handler = CapturingHandler()
    created = OrderCreated(aggregate_id=uuid4())
    cancelled = OrderCancelled(aggregate_id=uuid4())

    bus.subscribe(OrderCreated, handler)
    bus.publish_all([created, cancelled])

    assert handled == [created]


def test_subscribing_twice_registers_once():
    bus = InMemoryEventBus()
    calls = []

    class CountingHandler:
        def handle(self, event) -> None:
            calls.append(event)

    handler = CountingHandler()
    bus.subscribe(OrderCreated, handler)
    bus.subscribe(OrderCreated, handler)
    bus.publish(OrderCreated(aggregate_id=uuid4()))

    assert len(calls) == 1


def test_app_ready_subscribes_handlers():
    assert order_created_handler in event_bus._handlers[OrderCreated]
