"""Event handlers for Orders domain events."""

from __future__ import annotations

import structlog

from modules.orders.events import (
    OrderCancelled,
    OrderCreated,
    OrderPaymentStatusChanged,
    OrderStatusChanged,
)
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class OrderCreatedHandler(IEventHandler[OrderCreated]):
    def handle(self, event: OrderCreated) -> None:
        logger.info(
            "order.created_event_handled",
            order_id=str(event.aggregate_id),
            order_number=event.order_number,
        )


class OrderCancelledHandler(IEventHandler[OrderCancelled]):
    def handle(self, event: OrderCancelled) -> None:
        logger.info(
            "order.cancelled_event_handled",
            order_id=str(event.aggregate_id),
            reason=event.reason,
        )


class OrderStatusChangedHandler(IEventHandler[OrderStatusChanged]):
    def handle(self, event: OrderStatusChanged) -> None:
        logger.info(
            "order.status_changed_event_handled",
            order_id=str(event.aggregate_id),
            old_status=event.old_status,
            new_status=event.new_status,
        )


class OrderPaymentStatusChangedHandler(IEventHandler[OrderPaymentStatusChanged]):
    def handle(self, event: OrderPaymentStatusChanged) -> None:
        logger.info(
            "order.payment_status_event_handled",
            order_id=str(event.aggregate_id),
            payment_status=event.payment_status,
        )


order_created_handler = OrderCreatedHandler()
order_cancelled_handler = OrderCancelledHandler()
order_status_changed_handler = OrderStatusChangedHandler()
order_payment_status_changed_handler = OrderPaymentStatusChangedHandler()
