"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.
These are the contracts between the API layer and the Service layer.
DTOs are immutable (``frozen=True``).

- ``ShippingAddressDTO``: where the order ships to.
- ``CreateOrderItemDTO``: input for a single cart line.
- ``CreateOrderDTO``: a validated checkout request.
- ``CallerIdentity``: who is placing / reading the order.
- ``CheckoutResult`` / ``OrderPage``: service results.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional
from uuid import UUID

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from modules.orders.constants import (
    GUEST_CUSTOMER,
    MAX_PRESCRIPTION_IMAGES,
    PaymentMethod,
)
from modules.orders.exceptions import CheckoutValidationError

if TYPE_CHECKING:
    from modules.orders.models import Order
    from modules.payments.gateway.port import CheckoutSession


# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class ShippingAddressDTO(BaseModel):
    """Immutable shipping address.

    Accepts both camelCase (storefront) and snake_case keys.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    email: Optional[str] = None
    phone: str = Field(default="", max_length=15)
    address: str = Field(default="", max_length=200)
    city: str = Field(default="", max_length=100)
    postal_code: str = Field(
        default="",
        max_length=10,
        validation_alias=AliasChoices("postalCode", "postal_code"),
    )
    instructions: str = Field(
        default="",
        max_length=500,
        validation_alias=AliasChoices(
            "deliveryInstructions", "instructions", "delivery_instructions"
        ),
    )

    @field_validator("email")
    @classmethod
    def email_must_be_valid(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        try:
            validate_email(v)
        except DjangoValidationError:
            raise ValueError("Enter a valid email address.") from None
        return v.lower()


class CreateOrderItemDTO(BaseModel):
    """Immutable DTO for a single cart line.

    Only ``productId`` and ``quantity`` are read; any ``price`` the client
    sends is ignored and resolved from the catalog by the Service Layer.
    """

    model_config = ConfigDict(frozen=True)

    product_id: UUID = Field(
        validation_alias=AliasChoices("productId", "product_id", "_id"),
    )
    quantity: int

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v


class CreateOrderDTO(BaseModel):
    """Immutable DTO for checkout requests.

    Validates:
    - ``items`` must contain at least one item.
    - Each item quantity must be positive.
    - A product may appear only once per cart.
    - At most ``MAX_PRESCRIPTION_IMAGES`` non-empty prescription references.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    items: List[CreateOrderItemDTO]
    shipping_address: ShippingAddressDTO = Field(
        validation_alias=AliasChoices("shippingAddress", "shipping_address"),
    )
    payment_method: PaymentMethod = Field(
        default=PaymentMethod.CARD,
        validation_alias=AliasChoices("paymentMethod", "payment_method"),
    )
    notes: str = Field(default="", max_length=1000)
    idempotency_key: Optional[str] = None
    pharmacy_id: Optional[UUID] = Field(
        default=None,
        validation_alias=AliasChoices("pharmacyId", "pharmacy_id"),
    )
    prescription_images: List[str] = Field(
        default_factory=list,
        max_length=MAX_PRESCRIPTION_IMAGES,
        validation_alias=AliasChoices("prescriptionImages", "prescription_images"),
    )

    @field_validator("prescription_images")
    @classmethod
    def images_must_be_references(cls, v: List[str]) -> List[str]:
        images = [image.strip() for image in v]
        if any(not image or len(image) > 500 for image in images):
            raise ValueError("Each prescription image must be a non-empty reference.")
        return images

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(
        cls, v: List[CreateOrderItemDTO]
    ) -> List[CreateOrderItemDTO]:
        if not v:
            raise ValueError("Cart is empty")
        return v

    @model_validator(mode="after")
    def no_duplicate_products(self):
        """Prevent duplicate product IDs in the same order."""
        product_ids = [item.product_id for item in self.items]
        if len(product_ids) != len(set(product_ids)):
            raise ValueError("Duplicate product IDs are not allowed in the same order.")
        return self


def parse_checkout_request(
    data: Mapping[str, Any], idempotency_key: Optional[str] = None
) -> CreateOrderDTO:
    """Validate a raw checkout body into a ``CreateOrderDTO``.

    The two mandatory-section checks run first so their messages stay
    stable whatever else is wrong with the payload.

    Raises:
        CheckoutValidationError: the body is incomplete or malformed.
    """
    if not isinstance(data, Mapping) or not data.get("items"):
        raise CheckoutValidationError("Cart is empty")

    shipping = data.get("shippingAddress", data.get("shipping_address"))
    if not isinstance(shipping, Mapping) or not str(shipping.get("name") or "").strip():
        raise CheckoutValidationError("Shipping address is required")

    try:
        return CreateOrderDTO.model_validate(
            {
                "items": data["items"],
                "shipping_address": shipping,
                "payment_method": data.get(
                    "paymentMethod", data.get("payment_method", PaymentMethod.CARD)
                ),
                "notes": data.get("notes") or "",
                "idempotency_key": idempotency_key,
                "pharmacy_id": data.get("pharmacyId", data.get("pharmacy_id")),
                "prescription_images": data.get(
                    "prescriptionImages", data.get("prescription_images")
                )
                or [],
            }
        )
    except ValidationError as exc:
        errors = _flatten_errors(exc)
        raise CheckoutValidationError(
            next(iter(errors.values()), "Invalid checkout request."),
            errors=errors,
        ) from exc


def _flatten_errors(exc: ValidationError) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "request"
        message = error["msg"].removeprefix("Value error, ")
        errors.setdefault(location, f"{location}: {message}")
    return errors


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CallerIdentity:
    """Resolved identity of whoever is placing or reading an order.

    ``user_id`` is ``None`` for guest checkout; the email then comes from
    the shipping address.
    """

    user_id: Optional[int]
    email: str

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def reference(self) -> str:
        return GUEST_CUSTOMER if self.user_id is None else str(self.user_id)


def resolve_caller(user: Any, shipping_email: Optional[str] = None) -> CallerIdentity:
    """Build a ``CallerIdentity`` from a (possibly anonymous) request user."""
    if user is not None and getattr(user, "is_authenticated", False):
        return CallerIdentity(user_id=user.pk, email=user.email or shipping_email or "")
    if not shipping_email:
        raise CheckoutValidationError("Email is required for guest checkout")
    return CallerIdentity(user_id=None, email=shipping_email)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class CheckoutResult:
    """Outcome of ``OrderService.create_order``.

    ``payment_error`` is set when the order was persisted but no payment
    session could be opened; the client retries payment by order id.
    ``replayed`` is ``True`` when an idempotency key matched an
    existing order.
    """

    order: Order
    payment_session: Optional[CheckoutSession] = None
    payment_error: Optional[str] = None
    replayed: bool = False


@dataclass
class OrderPage:
    orders: List[Order] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 10

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0
