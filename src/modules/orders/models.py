"""Order, OrderItem, and OrderStatusHistory models.

Business rules implemented:
- Invalid status transitions are rejected (enforced at service layer).
- Each status change generates a history record.
- Order number auto-generated as human-readable identifier.
- Prices and totals are computed server-side; ``unit_price`` and
  ``product_name`` are snapshots taken when the order is placed.
- OrderItem subtotal is always ``quantity * unit_price`` (calculated on save).
- Guest orders have no ``customer``; ``customer_email`` identifies them.
- Idempotency via ``idempotency_key`` unique constraint.
- Order lines snapshot the product's prescription flag; a pharmacist
  marks them verified against the uploaded ``prescription_images``.
- An order is fulfilled by one ``pharmacy``: the one chosen at checkout,
  or else the pharmacy of the first product in the cart.
"""

from __future__ import annotations

import secrets
from decimal import Decimal
from typing import Any

import structlog
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel
from modules.orders.constants import (
    ORDER_NUMBER_MAX_RETRIES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from shared.domain.events import DomainEventMixin

logger = structlog.get_logger(__name__)


class Order(DomainEventMixin, BaseModel):
    """Order aggregate root.

    ``order_number`` is a human-readable identifier auto-generated on first
    save (format: ``ORD-YYYYMMDD-XXXXXX``).  The UUIDv7 ``id`` is used for
    all internal references and API lookups.

    ``status`` tracks fulfilment while ``payment_status`` tracks money;
    both start as ``pending``.  ``payment_session_id`` / ``payment_url`` are
    filled once a hosted checkout session exists and stay empty when the
    payment provider could not be reached.
    """

    order_number: models.CharField = models.CharField(
        max_length=20, unique=True, editable=False
    )
    customer: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders",
        null=True,
        blank=True,
    )
    customer_email: models.EmailField = models.EmailField(blank=True, default="")
    pharmacy: models.ForeignKey = models.ForeignKey(
        "products.Pharmacy",
        on_delete=models.PROTECT,
        related_name="orders",
        null=True,
        blank=True,
    )
    status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
    )
    payment_status: models.CharField = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    payment_method: models.CharField = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.CARD,
    )
    total_amount: models.DecimalField = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
    )

    # Shipping address (flat; an order ships to exactly one place)
    shipping_name: models.CharField = models.CharField(max_length=100)
    shipping_email: models.EmailField = models.EmailField()
    shipping_phone: models.CharField = models.CharField(max_length=15)
    shipping_address: models.CharField = models.CharField(max_length=200)
    shipping_city: models.CharField = models.CharField(max_length=100)
    shipping_postal_code: models.CharField = models.CharField(max_length=10)
    shipping_instructions: models.TextField = models.TextField(
        blank=True, default=""
    )

    payment_session_id: models.CharField = models.CharField(
        max_length=255, blank=True, default="", db_index=True
    )
    payment_url: models.URLField = models.URLField(
        max_length=1000, blank=True, default=""
    )
    payment_intent_id: models.CharField = models.CharField(
        max_length=255, blank=True, default="", db_index=True
    )
    payment_attempts: models.PositiveIntegerField = models.PositiveIntegerField(
        default=0
    )
    prescription_images: models.JSONField = models.JSONField(
        default=list, blank=True
    )

    notes: models.TextField = models.TextField(blank=True, default="")
    idempotency_key: models.CharField = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "orders"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(
                fields=["customer", "-created_at"],
                name="orders_customer_created_idx",
            ),
        ]

    # ------------------------------------------------------------------
    # State Machine helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` if the order is in a terminal state."""
        return self.status in TERMINAL_STATES

    @property
    def is_guest(self) -> bool:
        return self.customer_id is None

    @property
    def awaits_payment(self) -> bool:
        """``True`` while a (new) checkout session may still be opened."""
        return (
            self.status == OrderStatus.PENDING
            and self.payment_status == PaymentStatus.PENDING
        )

    @property
    def requires_prescription(self) -> bool:
        return any(item.requires_prescription for item in self.items.all())

    @property
    def prescription_verified(self) -> bool:
        """``True`` once every prescription-only line has been checked."""
        return all(
            item.prescription_verified
            for item in self.items.all()
            if item.requires_prescription
        )

    def can_transition_to(self, new_status: str) -> bool:
        """Check whether transitioning to *new_status* is valid."""
        allowed = VALID_TRANSITIONS.get(self.status, set())
        return new_status in allowed

    # ------------------------------------------------------------------
    # Order number generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_order_number() -> str:
        """Generate a human-readable order number: ``ORD-YYYYMMDD-XXXXXX``."""
        now = timezone.now()
        suffix = secrets.token_hex(3).upper()
        return f"ORD-{now:%Y%m%d}-{suffix}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.order_number:
            for _ in range(ORDER_NUMBER_MAX_RETRIES):
                candidate = self.generate_order_number()
                if not Order.objects.filter(order_number=candidate).exists():
                    self.order_number = candidate
                    break
            else:
                raise RuntimeError(
                    f"Failed to generate unique order_number after "
                    f"{ORDER_NUMBER_MAX_RETRIES} attempts"
                )
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.order_number} ({self.status}/{self.payment_status})"


class OrderItem(BaseModel):
    """Line item linking an Order to a Product.

    ``unit_price`` and ``product_name`` are copied from the catalog when
    the order is placed and never change afterwards.
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product: models.ForeignKey = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="order_items",
    )
    product_name: models.CharField = models.CharField(max_length=255)
    quantity: models.PositiveIntegerField = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)],
    )
    unit_price: models.DecimalField = models.DecimalField(
        max_digits=10,
        decimal_places=2,
    )
    subtotal: models.DecimalField = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        editable=False,
    )
    requires_prescription: models.BooleanField = models.BooleanField(default=False)
    prescription_verified: models.BooleanField = models.BooleanField(default=False)

    class Meta:
        db_table = "order_items"
        ordering = ["created_at", "id"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name="order_items_quantity_positive",
            ),
        ]

    def clean(self) -> None:
        super().clean()
        if self.quantity is not None and self.quantity < 1:
            raise ValidationError({"quantity": "Quantity must be at least 1."})

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.unit_price:
            unit_price = getattr(self.product, "price", None)
            if unit_price is None:
                raise ValidationError({"unit_price": "Product price is required."})
            self.unit_price = unit_price
        if not self.product_name:
            self.product_name = getattr(self.product, "name", "")
        self.subtotal = self.quantity * self.unit_price
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.product_name} x{self.quantity} (${self.subtotal})"


class OrderStatusHistory(BaseModel):
    """Append-only audit trail for order status transitions.

    ``user`` is nullable: ``None`` means the change was performed by the
    system (payment webhook, guest checkout).
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    old_status: models.CharField = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
    )
    user: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    notes: models.TextField = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_status_history"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["order", "-created_at"],
                name="osh_order_created_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.order} : {self.old_status} -> {self.new_status}"
