"""Order repository interface.

Extends ``IRepository[Order]`` with methods required by the Order
aggregate: atomic creation with items, status history tracking,
per-customer paging and the look-ups used by payment webhooks.

The Service Layer depends exclusively on this contract (DIP).
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.orders.models import Order, OrderStatusHistory


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root.

    The Order aggregate includes OrderItem children and
    OrderStatusHistory records.  Mutations must be atomic.
    """

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items atomically.

        ``data`` must include ``customer_id`` (``None`` for guests),
        ``customer_email``, the ``shipping_*`` fields and ``items`` (list of
        dicts with ``product_id``, ``product_name``, ``quantity``,
        ``unit_price`` and optionally ``requires_prescription``);
        ``payment_method``, ``notes``, ``idempotency_key``, ``pharmacy_id``
        and ``prescription_images`` are optional.
        """

    @abstractmethod
    def save(self, entity: Order, update_fields: Optional[List[str]] = None) -> Order:
        """Persist an order (optionally only some fields) and its pending events."""

    @abstractmethod
    def add_history(
        self,
        order_id: Any,
        status: str,
        notes: str = "",
        old_status: Optional[str] = None,
        user: Any = None,
    ) -> OrderStatusHistory:
        """Record a status change in the order's audit trail."""

    @abstractmethod
    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock."""

    @abstractmethod
    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        """Retrieve an order by its idempotency key."""

    @abstractmethod
    def list_for_customer(self, customer_id: Any, offset: int, limit: int) -> List[Order]:
        """Return one slice of a customer's orders, newest first."""

    @abstractmethod
    def count_for_customer(self, customer_id: Any) -> int:
        """Count all orders placed by a customer."""

    @abstractmethod
    def get_by_payment_session_id(self, session_id: str) -> Optional[Order]:
        """Lock and return the order a checkout session was opened for."""

    @abstractmethod
    def get_by_payment_intent_id(self, payment_intent_id: str) -> Optional[Order]:
        """Lock and return the order paid through a payment intent."""

    @abstractmethod
    def mark_prescriptions_verified(self, order_id: Any) -> int:
        """Flag every prescription-only line of an order as verified.

        Returns the number of lines that changed.
        """
