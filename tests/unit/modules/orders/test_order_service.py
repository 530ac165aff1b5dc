"""Unit tests for OrderService with mocked dependencies."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import pytest

from modules.orders.constants import OrderStatus, PaymentMethod, PaymentStatus
from modules.orders.dtos import CallerIdentity, CreateOrderDTO
from modules.orders.exceptions import (
    IdempotencyKeyConflict,
    InsufficientStock,
    OrderNotFound,
)
from modules.orders.services import OrderService
from modules.payments.exceptions import PaymentProviderError
from modules.payments.gateway.port import CheckoutSession
from modules.products.exceptions import PharmacyNotFound, ProductNotFound

pytestmark = pytest.mark.unit


@dataclass
class StubProduct:
    id: UUID
    name: str
    price: Decimal
    stock_quantity: int
    sellable: bool = True
    requires_prescription: bool = False
    pharmacy_id: UUID | None = None

    def has_stock_for(self, quantity: int) -> bool:
        return self.sellable and self.stock_quantity >= quantity


@dataclass
class StubItem:
    product_id: UUID
    product_name: str
    unit_price: Decimal
    quantity: int


class StubItems:
    def __init__(self, items):
        self._items = items

    def all(self):
        return list(self._items)


@dataclass
class StubOrder:
    id: UUID = field(default_factory=uuid4)
    order_number: str = "ORD-20260101-ABCDEF"
    customer_id: int | None = 1
    customer_email: str = "patient@example.com"
    status: str = OrderStatus.PENDING
    payment_status: str = PaymentStatus.PENDING
    payment_method: str = PaymentMethod.CARD
    total_amount: Decimal = Decimal("0.00")
    payment_session_id: str = ""
    payment_url: str = ""
    payment_attempts: int = 0
    lines: list = field(default_factory=list)
    events: list = field(default_factory=list)

    @property
    def items(self) -> StubItems:
        return StubItems(self.lines)

    @property
    def is_guest(self) -> bool:
        return self.customer_id is None

    @property
    def awaits_payment(self) -> bool:
        return (
            self.status == OrderStatus.PENDING
            and self.payment_status == PaymentStatus.PENDING
        )

    def add_domain_event(self, event) -> None:
        self.events.append(event)


CALLER = CallerIdentity(user_id=1, email="patient@example.com")


def _dto(*lines, **extra) -> CreateOrderDTO:
    return CreateOrderDTO.model_validate(
        {
            "items": [{"productId": pid, "quantity": qty} for pid, qty in lines],
            "shippingAddress": {"name": "Jane Doe", "city": "Springfield"},
            **extra,
        }
    )


@pytest.fixture()
def deps():
    order_repo = MagicMock()
    product_repo = MagicMock()
    gateway = MagicMock()
    gateway.create_checkout_session.return_value = CheckoutSession(
        id="cs_test_1", url="https://pay.example.com/cs_test_1"
    )
    order_repo.get_by_idempotency_key.return_value = None
    service = OrderService(
        order_repo, product_repo, gateway, checkout_base_url="https://shop.test"
    )
    return service, order_repo, product_repo, gateway


def _stock(product_repo, *products):
    product_repo.get_many_for_update.return_value = {p.id: p for p in products}


class TestCreateOrder:
    def test_repository_receives_catalog_prices(self, deps):
        service, order_repo, product_repo, _ = deps
        a = StubProduct(uuid4(), "Aspirin", Decimal("3.50"), 10)
        b = StubProduct(uuid4(), "Bandage", Decimal("1.25"), 5)
        _stock(product_repo, a, b)
        order_repo.create.return_value = StubOrder()

        service.create_order(_dto((a.id, 2), (b.id, 1)), CALLER)

        data = order_repo.create.call_args.args[0]
        assert data["customer_id"] == 1
        assert data["customer_email"] == "patient@example.com"
        assert data["shipping_name"] == "Jane Doe"
        assert data["items"] == [
            {
                "product_id": a.id,
                "product_name": "Aspirin",
                "quantity": 2,
                "unit_price": Decimal("3.50"),
                "requires_prescription": False,
            },
            {
                "product_id": b.id,
                "product_name": "Bandage",
                "quantity": 1,
                "unit_price": Decimal("1.25"),
                "requires_prescription": False,
            },
        ]

    def test_stock_reserved_for_each_line(self, deps):
        service, order_repo, product_repo, _ = deps
        a = StubProduct(uuid4(), "Aspirin", Decimal("3.50"), 10)
        _stock(product_repo, a)
        order_repo.create.return_value = StubOrder()

        service.create_order(_dto((a.id, 4)), CALLER)

        product_repo.reserve_stock.assert_called_once_with(a, 4)

    def test_insufficient_stock_reserves_nothing(self, deps):
        service, order_repo, product_repo, _ = deps
        a = StubProduct(uuid4(), "Aspirin", Decimal("3.50"), 10)
        b = StubProduct(uuid4(), "Bandage", Decimal("1.25"), 0)
        _stock(product_repo, a, b)

        with pytest.raises(InsufficientStock) as exc_info:
            service.create_order(_dto((a.id, 1), (b.id, 1)), CALLER)

        assert exc_info.value.product_name == "Bandage"
        product_repo.reserve_stock.assert_not_called()
        order_repo.create.assert_not_called()

    def test_unsellable_product_is_out_of_stock(self, deps):
        service, _, product_repo, _ = deps
        a = StubProduct(uuid4(), "Recalled", Decimal("3.50"), 50, sellable=False)
        _stock(product_repo, a)

        with pytest.raises(InsufficientStock, match="Recalled"):
            service.create_order(_dto((a.id, 1)), CALLER)

    def test_missing_product(self, deps):
        service, order_repo, product_repo, _ = deps
        _stock(product_repo)
        missing = uuid4()

        with pytest.raises(ProductNotFound) as exc_info:
            service.create_order(_dto((missing, 1)), CALLER)

        assert exc_info.value.product_id == str(missing)
        order_repo.create.assert_not_called()

    def test_created_event_and_history(self, deps):
        service, order_repo, product_repo, _ = deps
        a = StubProduct(uuid4(), "Aspirin", Decimal("3.50"), 10)
        _stock(product_repo, a)
        order = StubOrder(total_amount=Decimal("3.50"))
        order_repo.create.return_value = order

        service.create_order(_dto((a.id, 1)), CALLER)

        assert [e.event_name for e in order.events] == ["OrderCreated"]
        assert order.events[0].total == "3.50"
        order_repo.add_history.assert_called_once_with(
            order_id=order.id, status=OrderStatus.PENDING, notes="Order created"
        )

    def test_idempotency_hit_skips_everything(self, deps):
        service, order_repo, product_repo, gateway = deps
        existing = StubOrder()
        order_repo.get_by_idempotency_key.return_value = existing
        dto = _dto((uuid4(), 1), idempotency_key="k-1")

        result = service.create_order(dto, CALLER)

        assert result.order is existing
        assert result.replayed
        product_repo.get_many_for_update.assert_not_called()
        gateway.create_checkout_session.assert_not_called()

    def test_idempotency_key_of_another_customer_conflicts(self, deps):
        service, order_repo, product_repo, gateway = deps
        order_repo.get_by_idempotency_key.return_value = StubOrder(customer_id=2)
        dto = _dto((uuid4(), 1), idempotency_key="k-1")

        with pytest.raises(IdempotencyKeyConflict):
            service.create_order(dto, CALLER)

        product_repo.get_many_for_update.assert_not_called()
        order_repo.create.assert_not_called()
        gateway.create_checkout_session.assert_not_called()

    def test_pharmacy_defaults_to_first_product(self, deps):
        service, order_repo, product_repo, _ = deps
        pharmacy_id = uuid4()
        a = StubProduct(uuid4(), "Aspirin", Decimal("3.50"), 10, pharmacy_id=pharmacy_id)
        b = StubProduct(uuid4(), "Bandage", Decimal("1.25"), 5, pharmacy_id=uuid4())
        _stock(product_repo, a, b)
        order_repo.create.return_value = StubOrder()

        service.create_order(_dto((a.id, 1), (b.id, 1)), CALLER)

        assert order_repo.create.call_args.args[0]["pharmacy_id"] == pharmacy_id
        product_repo.get_pharmacy.assert_not_called()

    def test_requested_pharmacy_is_used(self, deps):
        service, order_repo, product_repo, _ = deps
        chosen = MagicMock(id=uuid4())
        product_repo.get_pharmacy.return_value = chosen
        a = StubProduct(uuid4(), "Aspirin", Decimal("3.50"), 10, pharmacy_id=uuid4())
        _stock(product_repo, a)
        order_repo.create.return_value = StubOrder()

        service.create_order(_dto((a.id, 1), pharmacyId=str(chosen.id)), CALLER)

        product_repo.get_pharmacy.assert_called_once_with(chosen.id)
        assert order_repo.create.call_args.args[0]["pharmacy_id"] == chosen.id

    def test_unknown_pharmacy_reserves_nothing(self, deps):
        service, order_repo, product_repo, _ = deps
        product_repo.get_pharmacy.return_value = None
        missing = uuid4()

        with pytest.raises(PharmacyNotFound) as exc_info:
            service.create_order(_dto((uuid4(), 1), pharmacyId=str(missing)), CALLER)

        assert exc_info.value.pharmacy_id == str(missing)
        product_repo.get_many_for_update.assert_not_called()
        product_repo.reserve_stock.assert_not_called()
        order_repo.create.assert_not_called()

    def test_prescription_flag_and_images_are_passed_on(self, deps):
        service, order_repo, product_repo, _ = deps
        a = StubProduct(
            uuid4(), "Amoxicillin", Decimal("12.40"), 10, requires_prescription=True
        )
        _stock(product_repo, a)
        order_repo.create.return_value = StubOrder()

        service.create_order(
            _dto((a.id, 1), prescriptionImages=["scans/rx-1.jpg"]), CALLER
        )

        data = order_repo.create.call_args.args[0]
        assert data["items"][0]["requires_prescription"] is True
        assert data["prescription_images"] == ["scans/rx-1.jpg"]


class TestPaymentSessionOrchestration:
    def _placed(self, deps, **order_kwargs):
        service, order_repo, product_repo, gateway = deps
        a = StubProduct(uuid4(), "Aspirin", Decimal("3.50"), 10)
        _stock(product_repo, a)
        order = StubOrder(
            lines=[StubItem(a.id, "Aspirin", Decimal("3.50"), 2)], **order_kwargs
        )
        order_repo.create.return_value = order
        return service, order_repo, gateway, a, order

    def test_session_saved_on_order(self, deps):
        service, order_repo, gateway, a, order = self._placed(deps)

        result = service.create_order(_dto((a.id, 2)), CALLER)

        assert result.payment_session.id == "cs_test_1"
        assert order.payment_session_id == "cs_test_1"
        assert order.payment_url == "https://pay.example.com/cs_test_1"
        order_repo.save.assert_called_with(
            order, update_fields=["payment_session_id", "payment_url"]
        )
        kwargs = gateway.create_checkout_session.call_args.kwargs
        assert kwargs["line_items"][0].unit_amount == 350
        assert kwargs["cancel_url"] == f"https://shop.test/checkout/cancel?order_id={order.id}"

    def test_each_attempt_sends_its_own_idempotency_key(self, deps):
        service, order_repo, gateway, a, order = self._placed(deps)
        order_repo.get_by_id.return_value = order

        service.create_order(_dto((a.id, 2)), CALLER)
        service.retry_payment(order.id, CALLER)

        keys = [
            call.kwargs["idempotency_key"]
            for call in gateway.create_checkout_session.call_args_list
        ]
        assert keys == [f"checkout-{order.id}-1", f"checkout-{order.id}-2"]
        assert order.payment_attempts == 2
        order_repo.save.assert_any_call(order, update_fields=["payment_attempts"])

    def test_gateway_error_becomes_payment_error(self, deps):
        service, _, gateway, a, order = self._placed(deps)
        gateway.create_checkout_session.side_effect = PaymentProviderError("timeout")

        result = service.create_order(_dto((a.id, 2)), CALLER)

        assert result.order is order
        assert result.payment_error == "timeout"
        assert order.payment_session_id == ""

    def test_non_card_order_has_no_session(self, deps):
        service, _, gateway, a, _ = self._placed(deps, payment_method=PaymentMethod.CASH)

        result = service.create_order(_dto((a.id, 2), paymentMethod="cash"), CALLER)

        assert result.payment_session is None
        gateway.create_checkout_session.assert_not_called()


class TestGetOrderById:
    def test_owner(self, deps):
        service, order_repo, _, _ = deps
        order = StubOrder(customer_id=1)
        order_repo.get_by_id.return_value = order

        assert service.get_order_by_id(order.id, 1) is order
        order_repo.get_by_id.assert_called_once_with(str(order.id))

    def test_other_customer_sees_not_found(self, deps):
        service, order_repo, _, _ = deps
        order_repo.get_by_id.return_value = StubOrder(customer_id=1)

        with pytest.raises(OrderNotFound):
            service.get_order_by_id(uuid4(), 2)

    def test_missing(self, deps):
        service, order_repo, _, _ = deps
        order_repo.get_by_id.return_value = None

        with pytest.raises(OrderNotFound):
            service.get_order_by_id(uuid4(), 1)


class TestGetCustomerOrders:
    def test_offset_and_limit(self, deps):
        service, order_repo, _, _ = deps
        order_repo.count_for_customer.return_value = 25
        order_repo.list_for_customer.return_value = [StubOrder()] * 10

        page = service.get_customer_orders(1, page=3, page_size=10)

        order_repo.list_for_customer.assert_called_once_with(1, offset=20, limit=10)
        assert page.total == 25
        assert page.pages == 3

    def test_past_the_end_does_not_query_rows(self, deps):
        service, order_repo, _, _ = deps
        order_repo.count_for_customer.return_value = 5

        page = service.get_customer_orders(1, page=2, page_size=10)

        assert page.orders == []
        order_repo.list_for_customer.assert_not_called()

    def test_zero_page_rejected(self, deps):
        service, order_repo, _, _ = deps

        with pytest.raises(ValueError):
            service.get_customer_orders(1, page=0)

        order_repo.count_for_customer.assert_not_called()
