"""Product repository interface.

Extends ``IRepository[Product]`` with the row-locking and stock
mutation look-ups required by the checkout workflow.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.products.models import Pharmacy, Product


class IProductRepository(IRepository["Product"]):
    """Repository contract for the Product catalog."""

    @abstractmethod
    def get_by_sku(self, sku: str) -> Optional[Product]:
        """Retrieve a product by SKU."""

    @abstractmethod
    def get_pharmacy(self, pharmacy_id: Any) -> Optional[Pharmacy]:
        """Retrieve a pharmacy by primary key (``None`` if missing or invalid)."""

    @abstractmethod
    def get_many_for_update(self, ids: Iterable[UUID]) -> Dict[UUID, Product]:
        """Lock and return the products with the given IDs, keyed by ID.

        Rows are locked in ascending ID order to avoid deadlocks between
        concurrent checkouts.  Missing or soft-deleted IDs are absent
        from the result.  Must be called inside a transaction.
        """

    @abstractmethod
    def reserve_stock(self, product: Product, quantity: int) -> Product:
        """Deduct ``quantity`` units from an already-locked product."""

    @abstractmethod
    def release_stock(self, product_id: UUID, quantity: int) -> Optional[Product]:
        """Return ``quantity`` units to stock (cancellation, expiry, refund)."""
