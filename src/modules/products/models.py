"""Product catalog model read by the checkout workflow.

Business rules implemented:
- SKU is unique and normalised to uppercase.
- Price must be greater than zero.
- Stock quantity cannot be negative.
- A product with ``in_stock=False`` or ``status=inactive`` cannot be sold.
- Soft delete via ``deleted_at`` (placed orders keep referencing the row).
- Prescription-only products are flagged with ``requires_prescription``;
  the flag is copied onto order lines for pharmacist verification.
"""

from __future__ import annotations

from decimal import Decimal

import structlog
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from modules.core.models import BaseModel, SoftDeleteModel

logger = structlog.get_logger(__name__)


class ProductStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"


class Pharmacy(BaseModel):
    """A pharmacy that stocks catalog products and fulfils their orders."""

    name = models.CharField(max_length=255, unique=True)
    address = models.CharField(max_length=255, blank=True, default="")
    phone = models.CharField(max_length=20, blank=True, default="")

    class Meta:
        db_table = "pharmacies"
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class Product(SoftDeleteModel):
    """Catalog entry for an item sold by the pharmacy shop.

    ``price`` and ``stock_quantity`` are the authoritative values used when
    an order is placed; prices sent by the client are never trusted.
    """

    sku = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    stock_quantity = models.PositiveIntegerField(default=0)
    in_stock = models.BooleanField(default=True)
    status = models.CharField(
        max_length=20,
        choices=ProductStatus.choices,
        default=ProductStatus.ACTIVE,
    )
    image_url = models.URLField(max_length=500, blank=True, default="")
    requires_prescription = models.BooleanField(default=False, db_index=True)
    pharmacy = models.ForeignKey(
        Pharmacy,
        on_delete=models.PROTECT,
        related_name="products",
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "products"
        ordering = ["name"]
        indexes = [
            models.Index(fields=["status"], name="products_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gt=0),
                name="products_price_positive",
            ),
        ]

    @property
    def is_sellable(self) -> bool:
        """``True`` when the product may appear on a new order at all."""
        return (
            self.status == ProductStatus.ACTIVE
            and self.in_stock
            and not self.is_deleted
        )

    def has_stock_for(self, quantity: int) -> bool:
        return self.is_sellable and self.stock_quantity >= quantity

    def clean(self) -> None:
        super().clean()
        if self.sku:
            self.sku = self.sku.strip().upper()
        if self.price is not None and self.price <= 0:
            raise ValidationError({"price": "Price must be greater than zero."})

    def save(self, *args, **kwargs) -> None:
        is_new = self._state.adding
        if self.sku:
            self.sku = self.sku.strip().upper()
        super().save(*args, **kwargs)
        if is_new:
            logger.info(
                "product.created",
                product_id=str(self.id),
                sku=self.sku,
            )

    def __str__(self) -> str:
        return f"{self.sku} - {self.name}"
