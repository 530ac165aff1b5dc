"""Django ORM implementation of the Product repository.

Satisfies ``IProductRepository`` using Django's QuerySet API.
Look-ups return ``None`` (or omit the key) for missing products; the
Service Layer decides how to translate that into a domain error.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction

from modules.products.models import Pharmacy, Product
from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)


class ProductDjangoRepository(IProductRepository):
    """Concrete Product repository backed by Django ORM."""

    def get_by_id(self, id: str) -> Optional[Product]:
        """Retrieve a live product by primary key.

        Returns ``None`` for non-existent, soft-deleted or invalid IDs.
        """
        try:
            return Product.objects.alive().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Product]:
        """List live products with optional Django ORM look-ups.

        Examples of valid filters::

            {"status": "active"}
            {"name__icontains": "ibuprofen"}
        """
        queryset = Product.objects.alive()
        if filters:
            queryset = queryset.filter(**filters)
        return list(queryset)

    def queryset(self):
        """Unevaluated live-product queryset for filter backends and pagination."""
        return Product.objects.alive()

    @transaction.atomic
    def save(self, entity: Product) -> Product:
        entity.save()
        logger.info("product.saved", product_id=str(entity.id), sku=entity.sku)
        return entity

    def get_by_sku(self, sku: str) -> Optional[Product]:
        return Product.objects.alive().filter(sku=sku.strip().upper()).first()

    def get_pharmacy(self, pharmacy_id: Any) -> Optional[Pharmacy]:
        try:
            return Pharmacy.objects.filter(id=pharmacy_id).first()
        except (ValueError, ValidationError):
            return None

    def get_many_for_update(self, ids: Iterable[UUID]) -> Dict[UUID, Product]:
        ordered_ids = sorted({UUID(str(i)) for i in ids}, key=str)
        products = (
            Product.objects.select_for_update()
            .alive()
            .filter(id__in=ordered_ids)
            .order_by("id")
        )
        return {product.id: product for product in products}

    def reserve_stock(self, product: Product, quantity: int) -> Product:
        product.stock_quantity -= quantity
        product.save(update_fields=["stock_quantity"])
        logger.info(
            "product.stock_reserved",
            product_id=str(product.id),
            quantity=quantity,
            remaining=product.stock_quantity,
        )
        return product

    @transaction.atomic
    def release_stock(self, product_id: UUID, quantity: int) -> Optional[Product]:
        product = Product.objects.select_for_update().filter(id=product_id).first()
        if not product:
            logger.warning(
                "product.stock_release_skipped",
                product_id=str(product_id),
                quantity=quantity,
            )
            return None
        product.stock_quantity += quantity
        product.save(update_fields=["stock_quantity"])
        logger.info(
            "product.stock_released",
            product_id=str(product.id),
            quantity=quantity,
            restored_stock=product.stock_quantity,
        )
        return product
