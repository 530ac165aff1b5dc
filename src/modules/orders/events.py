"""Domain events for the Orders bounded context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Raised when an order is placed."""

    order_number: str = ""
    total: str = "0.00"

    topic: ClassVar[str] = "orders"


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    """Raised when an order is cancelled and its stock released."""

    reason: str = ""

    topic: ClassVar[str] = "orders"


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    old_status: str = ""
    new_status: str = ""

    topic: ClassVar[str] = "orders"


@dataclass(frozen=True)
class OrderPaymentStatusChanged(DomainEvent):
    """Raised when the payment provider reports a payment outcome."""

    payment_status: str = ""

    topic: ClassVar[str] = "orders"
