"""Product domain exceptions.

Raised by the Service Layer; the API layer (Views) catches these and
translates them into HTTP responses.
"""

from __future__ import annotations


class ProductNotFound(Exception):
    """The requested product does not exist or has been soft-deleted."""

    def __init__(self, product_id: object, message: str | None = None) -> None:
        self.product_id = str(product_id)
        super().__init__(message or f"Product {self.product_id} not found.")


class PharmacyNotFound(Exception):
    """The pharmacy chosen at checkout does not exist."""

    def __init__(self, pharmacy_id: object) -> None:
        self.pharmacy_id = str(pharmacy_id)
        super().__init__(f"Pharmacy {self.pharmacy_id} not found.")
