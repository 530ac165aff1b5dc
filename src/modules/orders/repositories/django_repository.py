"""Django ORM implementation of the Order repository.

Satisfies ``IOrderRepository`` using Django's QuerySet API.
All write operations are wrapped in ``transaction.atomic()`` so the
Order aggregate (Order + OrderItems) is persisted atomically, and
domain events collected on the aggregate are written to the outbox in
the same transaction.

Concurrency control on status updates uses ``select_for_update()``.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from modules.core.models import OutboxEvent
from modules.orders.models import Order, OrderItem, OrderStatusHistory
from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)

_SHIPPING_FIELDS = (
    "shipping_name",
    "shipping_email",
    "shipping_phone",
    "shipping_address",
    "shipping_city",
    "shipping_postal_code",
    "shipping_instructions",
)


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create (aggregate root + children)
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> Order:
        order = Order(
            customer_id=data.get("customer_id"),
            customer_email=data.get("customer_email", ""),
            idempotency_key=data.get("idempotency_key"),
            pharmacy_id=data.get("pharmacy_id"),
            prescription_images=list(data.get("prescription_images") or []),
            notes=data.get("notes", ""),
            **{name: data.get(name, "") for name in _SHIPPING_FIELDS},
        )
        if data.get("payment_method"):
            order.payment_method = data["payment_method"]
        order.save()

        total = Decimal("0.00")
        items = data.get("items", [])
        for item_data in items:
            item = OrderItem(
                order=order,
                product_id=item_data["product_id"],
                product_name=item_data.get("product_name", ""),
                quantity=item_data["quantity"],
                unit_price=item_data["unit_price"],
                requires_prescription=item_data.get("requires_prescription", False),
            )
            item.save()
            total += item.subtotal

        order.total_amount = total
        order.save(update_fields=["total_amount"])

        logger.info(
            "order.persisted",
            order_id=str(order.id),
            order_number=order.order_number,
            item_count=len(items),
        )
        return order

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with eager-loaded relations.

        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return (
                Order.objects.select_related("customer", "pharmacy")
                .prefetch_related("items", "status_history")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Order]:
        queryset = Order.objects.prefetch_related("items")
        if filters:
            queryset = queryset.filter(**filters)
        return list(queryset)

    def list_for_customer(self, customer_id: Any, offset: int, limit: int) -> List[Order]:
        queryset = (
            Order.objects.filter(customer_id=customer_id)
            .prefetch_related("items")
            .order_by("-created_at", "-id")
        )
        return list(queryset[offset : offset + limit])

    def count_for_customer(self, customer_id: Any) -> int:
        return Order.objects.filter(customer_id=customer_id).count()

    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock (SELECT FOR UPDATE).

        Eager-loads items so the caller can iterate over them while the
        row is locked.  Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return (
                Order.objects.select_for_update()
                .prefetch_related("items")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        return (
            Order.objects.prefetch_related("items", "status_history")
            .filter(idempotency_key=key)
            .first()
        )

    def get_by_payment_session_id(self, session_id: str) -> Optional[Order]:
        if not session_id:
            return None
        return (
            Order.objects.select_for_update()
            .prefetch_related("items")
            .filter(payment_session_id=session_id)
            .first()
        )

    def get_by_payment_intent_id(self, payment_intent_id: str) -> Optional[Order]:
        if not payment_intent_id:
            return None
        return (
            Order.objects.select_for_update()
            .prefetch_related("items")
            .filter(payment_intent_id=payment_intent_id)
            .first()
        )

    # ------------------------------------------------------------------
    # Save (IRepository contract)
    # ------------------------------------------------------------------

    @transaction.atomic
    def save(
        self, entity: Order, update_fields: Optional[List[str]] = None
    ) -> Order:
        """Persist an order and flush its domain events to the outbox."""
        entity.save(update_fields=update_fields)

        events = entity.domain_events
        for event in events:
            OutboxEvent.objects.create(
                event_type=event.event_name,
                aggregate_id=str(event.aggregate_id),
                payload=_serialize_event_payload(event),
                topic=event.topic,
            )
        entity.clear_domain_events()

        logger.info("order.saved", order_id=str(entity.id), event_count=len(events))
        return entity

    @transaction.atomic
    def add_history(
        self,
        order_id: Any,
        status: str,
        notes: str = "",
        old_status: Optional[str] = None,
        user: Any = None,
    ) -> OrderStatusHistory:
        """Record a status change in the order's audit trail."""
        history = OrderStatusHistory(
            order_id=order_id,
            old_status=old_status,
            new_status=status,
            notes=notes,
            user=user if getattr(user, "is_authenticated", False) else None,
        )
        history.save()

        logger.info(
            "order.history_added",
            order_id=str(order_id),
            old_status=old_status,
            new_status=status,
        )
        return history

    def mark_prescriptions_verified(self, order_id: Any) -> int:
        updated = OrderItem.objects.filter(
            order_id=order_id,
            requires_prescription=True,
            prescription_verified=False,
        ).update(prescription_verified=True, updated_at=timezone.now())
        logger.info(
            "order.prescriptions_verified", order_id=str(order_id), lines=updated
        )
        return updated


def _serialize_event_payload(event: Any) -> Dict[str, Any]:
    data = asdict(event)
    normalized = _normalize_for_json(data)
    return json.loads(json.dumps(normalized))


def _normalize_for_json(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, list):
        return [_normalize_for_json(item) for item in value]
    if isinstance(value, dict):
        return {key: _normalize_for_json(val) for key, val in value.items()}
    return value
