"""Order domain exceptions.

Raised by the Service Layer when business rules are violated.
The API layer (Views) catches these and translates them into
appropriate HTTP responses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CheckoutValidationError(Exception):
    """The checkout request is malformed (empty cart, missing address...)."""

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or {}


class OrderNotFound(Exception):
    """The order does not exist or does not belong to the requester."""


class InvalidOrderStatus(Exception):
    """An invalid status transition was attempted."""


class InsufficientStock(Exception):
    """Not enough stock to fulfil one line of the order."""

    def __init__(self, product_name: str, product_id: Any = None) -> None:
        super().__init__(f"Insufficient stock for {product_name}")
        self.product_name = product_name
        self.product_id = str(product_id) if product_id is not None else None


class OrderPersistenceError(Exception):
    """The order could not be written to the database."""


class IdempotencyKeyConflict(Exception):
    """The idempotency key was already used for someone else's order."""
