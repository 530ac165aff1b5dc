"""Order service layer (Use Cases).

Orchestrates checkout, order reads, payment retries, cancellation,
fulfilment transitions and payment-provider notifications.  The service
defines the unit-of-work boundary: placing an order (stock check, stock
deduction, aggregate persistence, outbox event) is one transaction, and
the hosted payment session is requested only after it commits.

Business rules enforced:
- Prices and totals come from the catalog, never from the client.
- Stock is checked and deducted under ``SELECT FOR UPDATE``; a single
  short line aborts the whole checkout.
- Orders are readable only by their owner (or an administrative caller);
  a foreign order is reported as missing.
- A failed payment-session request leaves the order ``pending`` and
  payable later through ``retry_payment``.
- Status transitions are validated against the state machine and every
  change is recorded in the order history.
- Orders with prescription-only lines are not processed until a
  pharmacist has verified the prescription.
- Payment notifications for a superseded checkout session or a partial
  refund leave the order untouched.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Optional

import structlog
from django.conf import settings
from django.db import DatabaseError, transaction

from modules.orders.constants import OrderStatus, PaymentMethod, PaymentStatus
from modules.orders.dtos import CheckoutResult, OrderPage
from modules.orders.events import (
    OrderCancelled,
    OrderCreated,
    OrderPaymentStatusChanged,
    OrderStatusChanged,
)
from modules.orders.exceptions import (
    IdempotencyKeyConflict,
    InsufficientStock,
    InvalidOrderStatus,
    OrderNotFound,
    OrderPersistenceError,
)
from modules.payments.exceptions import PaymentProviderError
from modules.payments.gateway.port import (
    CHARGE_REFUNDED,
    CHECKOUT_COMPLETED,
    CHECKOUT_EXPIRED,
    CheckoutLineItem,
    CheckoutSession,
    PaymentEvent,
)
from modules.products.exceptions import PharmacyNotFound, ProductNotFound

if TYPE_CHECKING:
    from modules.orders.dtos import CallerIdentity, CreateOrderDTO
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.payments.gateway.port import PaymentGateway
    from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)

_CENT = Decimal("1")


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to integer cents (half-up)."""
    return int((Decimal(amount) * 100).quantize(_CENT, rounding=ROUND_HALF_UP))


class OrderService:
    """Application service for Order use-cases.

    Receives repositories and the payment gateway via constructor
    injection (DIP).
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        product_repository: IProductRepository,
        payment_gateway: PaymentGateway,
        checkout_base_url: Optional[str] = None,
    ) -> None:
        self._order_repo = order_repository
        self._product_repo = product_repository
        self._gateway = payment_gateway
        self._checkout_base_url = (
            checkout_base_url or settings.CHECKOUT_BASE_URL
        ).rstrip("/")

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def create_order(self, dto: CreateOrderDTO, caller: CallerIdentity) -> CheckoutResult:
        """Place an order and open a hosted payment session for it.

        Steps:
        1. Replay an earlier order carrying the same idempotency key, as
           long as it belongs to the same caller.
        2. Place the order in one transaction (see ``_place_order``).
        3. For card payments, request a checkout session.  A provider
           failure does not undo the order: the result carries
           ``payment_error`` and payment can be retried by order id.

        Raises:
            IdempotencyKeyConflict: the key belongs to another customer's order.
            PharmacyNotFound: the chosen pharmacy does not exist.
            ProductNotFound: a requested product does not exist.
            InsufficientStock: a line exceeds the available stock.
            OrderPersistenceError: the order could not be stored.
        """
        log = logger.bind(customer=caller.reference, item_count=len(dto.items))
        log.info("order.checkout_started")

        if dto.idempotency_key:
            existing = self._order_repo.get_by_idempotency_key(dto.idempotency_key)
            if existing and not self._is_payer(existing, caller):
                log.warning("order.idempotency_conflict", key=dto.idempotency_key)
                raise IdempotencyKeyConflict("Idempotency key is already in use.")
            if existing:
                log.info(
                    "order.idempotency_hit",
                    order_id=str(existing.id),
                    key=dto.idempotency_key,
                )
                return CheckoutResult(order=existing, replayed=True)

        try:
            order = self._place_order(dto, caller)
        except DatabaseError as exc:
            log.error("order.persistence_failed", error=str(exc))
            raise OrderPersistenceError(str(exc)) from exc

        log = log.bind(order_id=str(order.id), order_number=order.order_number)
        log.info("order.created", total=str(order.total_amount))

        if order.payment_method != PaymentMethod.CARD:
            return CheckoutResult(order=order)

        try:
            session = self._open_payment_session(order, caller)
        except PaymentProviderError as exc:
            log.warning("order.payment_session_failed", error=str(exc))
            return CheckoutResult(order=order, payment_error=str(exc))

        return CheckoutResult(order=order, payment_session=session)

    @transaction.atomic
    def _place_order(self, dto: CreateOrderDTO, caller: CallerIdentity) -> Order:
        """Check stock, deduct it and persist the aggregate atomically.

        Product rows are locked in ID order; lines are then validated in
        request order so the error names the first offending product.
        The fulfilling pharmacy is the one requested, or else the first
        product's pharmacy.
        """
        pharmacy_id = None
        if dto.pharmacy_id is not None:
            pharmacy = self._product_repo.get_pharmacy(dto.pharmacy_id)
            if pharmacy is None:
                raise PharmacyNotFound(dto.pharmacy_id)
            pharmacy_id = pharmacy.id

        products = self._product_repo.get_many_for_update(
            item.product_id for item in dto.items
        )

        lines = []
        for item in dto.items:
            product = products.get(item.product_id)
            if product is None:
                raise ProductNotFound(item.product_id)
            if not product.has_stock_for(item.quantity):
                logger.info(
                    "order.insufficient_stock",
                    product_id=str(product.id),
                    requested=item.quantity,
                    available=product.stock_quantity,
                )
                raise InsufficientStock(product.name, product_id=product.id)
            lines.append((product, item.quantity))

        if pharmacy_id is None:
            pharmacy_id = lines[0][0].pharmacy_id

        repo_items = []
        for product, quantity in lines:
            self._product_repo.reserve_stock(product, quantity)
            repo_items.append(
                {
                    "product_id": product.id,
                    "product_name": product.name,
                    "quantity": quantity,
                    "unit_price": product.price,
                    "requires_prescription": product.requires_prescription,
                }
            )

        address = dto.shipping_address
        order = self._order_repo.create(
            {
                "customer_id": caller.user_id,
                "customer_email": caller.email,
                "shipping_name": address.name,
                "shipping_email": address.email or caller.email,
                "shipping_phone": address.phone,
                "shipping_address": address.address,
                "shipping_city": address.city,
                "shipping_postal_code": address.postal_code,
                "shipping_instructions": address.instructions,
                "payment_method": dto.payment_method,
                "items": repo_items,
                "notes": dto.notes,
                "idempotency_key": dto.idempotency_key,
                "pharmacy_id": pharmacy_id,
                "prescription_images": list(dto.prescription_images),
            }
        )

        order.add_domain_event(
            OrderCreated(
                aggregate_id=order.id,
                order_number=order.order_number,
                total=str(order.total_amount),
            )
        )
        self._order_repo.save(order)
        self._order_repo.add_history(
            order_id=order.id,
            status=OrderStatus.PENDING,
            notes="Order created",
        )
        return order

    def retry_payment(self, order_id: Any, caller: CallerIdentity) -> CheckoutResult:
        """Open a new checkout session for an order still awaiting payment.

        Raises:
            OrderNotFound: the order does not exist or is not the caller's.
            InvalidOrderStatus: the order is no longer payable.
            PaymentProviderError: the provider failed again.
        """
        order = self._order_repo.get_by_id(str(order_id))
        if order is None or not self._is_payer(order, caller):
            raise OrderNotFound(f"Order {order_id} not found.")
        if order.payment_method != PaymentMethod.CARD:
            raise InvalidOrderStatus("Order is not paid by card.")
        if not order.awaits_payment:
            raise InvalidOrderStatus(
                f"Order is not awaiting payment (status {order.status}, "
                f"payment {order.payment_status})."
            )

        session = self._open_payment_session(order, caller)
        logger.info("order.payment_retried", order_id=str(order.id))
        return CheckoutResult(order=order, payment_session=session)

    def _open_payment_session(
        self, order: Order, caller: CallerIdentity
    ) -> CheckoutSession:
        line_items = [
            CheckoutLineItem(
                name=item.product_name,
                unit_amount=to_minor_units(item.unit_price),
                quantity=item.quantity,
            )
            for item in order.items.all()
        ]
        order.payment_attempts += 1
        self._order_repo.save(order, update_fields=["payment_attempts"])
        session = self._gateway.create_checkout_session(
            line_items=line_items,
            customer_email=order.customer_email or caller.email,
            metadata={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "user_id": caller.reference,
            },
            success_url=(
                f"{self._checkout_base_url}/checkout/success"
                f"?order_id={order.id}&session_id={{CHECKOUT_SESSION_ID}}"
            ),
            cancel_url=f"{self._checkout_base_url}/checkout/cancel?order_id={order.id}",
            idempotency_key=f"checkout-{order.id}-{order.payment_attempts}",
        )

        order.payment_session_id = session.id
        order.payment_url = session.url
        self._order_repo.save(order, update_fields=["payment_session_id", "payment_url"])
        logger.info(
            "order.payment_session_created",
            order_id=str(order.id),
            session_id=session.id,
        )
        return session

    @staticmethod
    def _is_payer(order: Order, caller: CallerIdentity) -> bool:
        if not caller.is_guest:
            return order.customer_id == caller.user_id
        return order.is_guest and order.customer_email.lower() == caller.email.lower()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order_by_id(self, order_id: Any, requester_id: Any = None) -> Order:
        """Retrieve an order visible to ``requester_id``.

        ``requester_id=None`` is an administrative read with no ownership
        check.  A foreign order raises the same error as a missing one.

        Raises:
            OrderNotFound: missing, or owned by someone else.
        """
        order = self._order_repo.get_by_id(str(order_id))
        if order is None or (
            requester_id is not None and order.customer_id != requester_id
        ):
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def get_customer_orders(
        self, customer_id: Any, page: int = 1, page_size: int = 10
    ) -> OrderPage:
        """Return one page of a customer's orders, newest first.

        A page past the end is empty, not an error.
        """
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive integers.")

        total = self._order_repo.count_for_customer(customer_id)
        offset = (page - 1) * page_size
        orders = (
            self._order_repo.list_for_customer(customer_id, offset=offset, limit=page_size)
            if offset < total
            else []
        )
        return OrderPage(orders=orders, total=total, page=page, page_size=page_size)

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    @transaction.atomic
    def update_status(
        self,
        order_id: Any,
        new_status: str,
        notes: str = "",
        user: Any = None,
    ) -> Order:
        """Transition an order to a new fulfilment status.

        Raises:
            OrderNotFound: order does not exist.
            InvalidOrderStatus: transition is not allowed.
        """
        order = self._order_repo.get_for_update(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")

        log = logger.bind(
            order_id=str(order_id),
            current_status=order.status,
            new_status=new_status,
        )

        if new_status == OrderStatus.CANCELLED:
            raise InvalidOrderStatus("Use order cancellation to cancel an order.")
        if not order.can_transition_to(new_status):
            log.warning("order.invalid_transition")
            raise InvalidOrderStatus(
                f"Cannot transition from {order.status} to {new_status}."
            )
        if (
            new_status == OrderStatus.PROCESSING
            and order.requires_prescription
            and not order.prescription_verified
        ):
            log.warning("order.prescription_unverified")
            raise InvalidOrderStatus(
                "Prescription must be verified before the order is processed."
            )

        self._transition(order, new_status, notes=notes, user=user)
        self._order_repo.save(order)

        log.info("order.status_updated")
        return self._order_repo.get_by_id(str(order_id)) or order

    @transaction.atomic
    def cancel_order(
        self,
        order_id: Any,
        requester_id: Any = None,
        notes: str = "",
        user: Any = None,
    ) -> Order:
        """Cancel an order and return its items to stock.

        The order row is locked first so concurrent cancellations cannot
        release stock twice.

        Raises:
            OrderNotFound: order does not exist or is not the requester's.
            InvalidOrderStatus: cancellation not allowed from current status.
        """
        order = self._order_repo.get_for_update(str(order_id))
        if order is None or (
            requester_id is not None and order.customer_id != requester_id
        ):
            raise OrderNotFound(f"Order {order_id} not found.")

        log = logger.bind(order_id=str(order_id), current_status=order.status)

        if not order.can_transition_to(OrderStatus.CANCELLED):
            log.warning("order.cancel_not_allowed")
            raise InvalidOrderStatus(f"Cannot cancel order in status {order.status}.")

        self._cancel(order, notes or "Order cancelled", user=user)
        self._order_repo.save(order)

        log.info("order.cancelled")
        return self._order_repo.get_by_id(str(order_id)) or order

    @transaction.atomic
    def verify_prescriptions(self, order_id: Any, user: Any = None) -> Order:
        """Record that a pharmacist checked the order's prescription scans.

        Raises:
            OrderNotFound: order does not exist.
            InvalidOrderStatus: nothing to verify, or the order is closed.
        """
        order = self._order_repo.get_for_update(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        if not order.requires_prescription:
            raise InvalidOrderStatus("Order has no prescription-only items.")
        if order.is_terminal:
            raise InvalidOrderStatus(
                f"Cannot verify prescriptions of a {order.status} order."
            )

        if self._order_repo.mark_prescriptions_verified(order.id):
            self._order_repo.add_history(
                order_id=order.id,
                status=order.status,
                old_status=order.status,
                notes="Prescription verified",
                user=user,
            )
        logger.info("order.prescription_verified", order_id=str(order.id))
        return self._order_repo.get_by_id(str(order_id)) or order

    def _transition(
        self, order: Order, new_status: str, notes: str = "", user: Any = None
    ) -> None:
        old_status = order.status
        order.status = new_status
        order.add_domain_event(
            OrderStatusChanged(
                aggregate_id=order.id, old_status=old_status, new_status=new_status
            )
        )
        self._order_repo.add_history(
            order_id=order.id,
            status=new_status,
            notes=notes,
            old_status=old_status,
            user=user,
        )

    def _cancel(self, order: Order, reason: str, user: Any = None) -> None:
        for item in sorted(order.items.all(), key=lambda i: str(i.product_id)):
            self._product_repo.release_stock(item.product_id, item.quantity)
        self._transition(order, OrderStatus.CANCELLED, notes=reason, user=user)
        order.add_domain_event(OrderCancelled(aggregate_id=order.id, reason=reason))

    # ------------------------------------------------------------------
    # Payment provider notifications
    # ------------------------------------------------------------------

    @transaction.atomic
    def handle_payment_event(self, event: PaymentEvent) -> Optional[Order]:
        """Apply a verified payment notification to its order.

        Returns the updated order, or ``None`` when the event type is not
        handled or no order matches it.  Replayed notifications are
        no-ops.
        """
        log = logger.bind(event_type=event.type, event_id=event.event_id)
        if event.type not in (CHECKOUT_COMPLETED, CHECKOUT_EXPIRED, CHARGE_REFUNDED):
            log.info("payment.event_ignored")
            return None

        order = self._find_order_for_payment(event)
        if order is None:
            log.warning(
                "payment.order_not_found",
                order_id=event.order_id,
                session_id=event.session_id,
            )
            return None

        log = log.bind(order_id=str(order.id))
        if event.type == CHECKOUT_COMPLETED:
            changed = self._mark_paid(order, event)
        elif event.type == CHECKOUT_EXPIRED:
            changed = self._mark_expired(order, event)
        else:
            changed = self._mark_refunded(order, event)

        if not changed:
            log.info("payment.event_already_applied", payment_status=order.payment_status)
            return order

        order.add_domain_event(
            OrderPaymentStatusChanged(
                aggregate_id=order.id, payment_status=order.payment_status
            )
        )
        self._order_repo.save(order)
        log.info(
            "payment.event_applied",
            status=order.status,
            payment_status=order.payment_status,
        )
        return order

    def _find_order_for_payment(self, event: PaymentEvent) -> Optional[Order]:
        order = None
        if event.order_id:
            order = self._order_repo.get_for_update(event.order_id)
        if order is None and event.session_id:
            order = self._order_repo.get_by_payment_session_id(event.session_id)
        if order is None and event.payment_intent_id:
            order = self._order_repo.get_by_payment_intent_id(event.payment_intent_id)
        return order

    def _mark_paid(self, order: Order, event: PaymentEvent) -> bool:
        if order.payment_status == PaymentStatus.PAID:
            return False
        order.payment_status = PaymentStatus.PAID
        if event.payment_intent_id:
            order.payment_intent_id = event.payment_intent_id
        if event.session_id and not order.payment_session_id:
            order.payment_session_id = event.session_id
        if order.can_transition_to(OrderStatus.CONFIRMED):
            self._transition(order, OrderStatus.CONFIRMED, notes="Payment received")
        else:
            logger.warning(
                "payment.received_for_inactive_order",
                order_id=str(order.id),
                status=order.status,
            )
        return True

    def _mark_expired(self, order: Order, event: PaymentEvent) -> bool:
        if not order.awaits_payment:
            return False
        if event.session_id and event.session_id != order.payment_session_id:
            # A retry opened a newer session; only that one may expire the order.
            logger.info(
                "payment.stale_session_expired",
                order_id=str(order.id),
                session_id=event.session_id,
                current_session_id=order.payment_session_id,
            )
            return False
        order.payment_status = PaymentStatus.FAILED
        self._cancel(order, "Checkout session expired")
        return True

    def _mark_refunded(self, order: Order, event: PaymentEvent) -> bool:
        if order.payment_status == PaymentStatus.REFUNDED:
            return False
        if not event.fully_refunded:
            logger.info(
                "payment.partial_refund",
                order_id=str(order.id),
                amount_refunded=event.amount_refunded,
            )
            return False
        order.payment_status = PaymentStatus.REFUNDED
        if order.can_transition_to(OrderStatus.CANCELLED):
            self._cancel(order, "Payment refunded")
        return True
