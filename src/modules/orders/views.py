"""Order API views.

Exposes the ``OrderService`` via HTTP using DRF ViewSets.
Domain exceptions are caught and translated into the
``{"success": false, "message": ...}`` envelope with the matching HTTP
status; the view never swallows generic exceptions.
"""

from __future__ import annotations

from typing import Any

from django.conf import settings
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.permissions import (
    AllowAny,
    BasePermission,
    IsAdminUser,
    IsAuthenticated,
)
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import GenericViewSet

from modules.orders.constants import OrderStatus
from modules.orders.dtos import (
    CheckoutResult,
    parse_checkout_request,
    resolve_caller,
)
from modules.orders.exceptions import (
    CheckoutValidationError,
    IdempotencyKeyConflict,
    InsufficientStock,
    InvalidOrderStatus,
    OrderNotFound,
    OrderPersistenceError,
)
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.serializers import OrderListSerializer, OrderSerializer
from modules.orders.services import OrderService
from modules.payments.exceptions import PaymentProviderError
from modules.payments.gateway import get_gateway
from modules.products.exceptions import PharmacyNotFound, ProductNotFound
from modules.products.repositories.django_repository import ProductDjangoRepository

DEFAULT_LIST_LIMIT = 10
MAX_LIST_LIMIT = 100


def _error(message: str, status_code: int, **extra: Any) -> Response:
    return Response({"success": False, "message": message, **extra}, status=status_code)


def _not_found() -> Response:
    return _error("Order not found", status.HTTP_404_NOT_FOUND)


def _checkout_data(result: CheckoutResult) -> dict:
    order = result.order
    data: dict[str, Any] = {
        "orderId": str(order.id),
        "orderNumber": order.order_number,
        "total": order.total_amount,
        "items": len(order.items.all()),
        "status": order.status,
        "paymentStatus": order.payment_status,
    }
    session = result.payment_session
    session_id = session.id if session else order.payment_session_id
    payment_url = session.url if session else order.payment_url
    if session_id:
        data["stripeSessionId"] = session_id
    if payment_url:
        data["paymentUrl"] = payment_url
    if result.payment_error:
        data["paymentError"] = result.payment_error
    return data


def _positive_int(value: Any, default: int) -> int:
    if value in (None, ""):
        return default
    number = int(value)
    if number < 1:
        raise ValueError(value)
    return number


class OrderViewSet(GenericViewSet):
    """ViewSet for Order operations.

    Uses ``OrderService`` with injected repositories (DIP).
    Does **not** extend ``ModelViewSet``: all ORM access goes through
    the service/repository layer.
    """

    queryset = Order.objects.none()
    serializer_class = OrderSerializer

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = OrderService(
            order_repository=OrderDjangoRepository(),
            product_repository=ProductDjangoRepository(),
            payment_gateway=get_gateway(),
        )

    def get_permissions(self) -> list[BasePermission]:
        if self.action in {"create", "pay"}:
            return [AllowAny()]
        if self.action in {"partial_update", "verify_prescription"}:
            return [IsAdminUser()]
        return [IsAuthenticated()]

    def get_throttles(self) -> list[BaseThrottle]:
        """Throttling scope per action."""
        throttle_scope: str | None
        if self.action in {"create", "pay"}:
            throttle_scope = "order_creation"
        elif self.action in {"list", "retrieve"}:
            throttle_scope = "order_listing"
        else:
            throttle_scope = None
        self.throttle_scope = throttle_scope
        return super().get_throttles()

    def _requester_id(self, request: Request) -> Any:
        """``None`` (no ownership check) for staff, the user's pk otherwise."""
        return None if request.user.is_staff else request.user.pk

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: Request) -> Response:
        """POST /api/v1/orders/

        Guests may check out; their identity is the shipping email.
        Supports idempotency via the ``Idempotency-Key`` header: a replay
        returns 200 with the original order, a new order returns 201, and a
        key already used by another customer returns 409.
        """
        try:
            dto = parse_checkout_request(
                request.data,
                idempotency_key=request.headers.get("Idempotency-Key"),
            )
            caller = resolve_caller(request.user, dto.shipping_address.email)
            result = self._service.create_order(dto, caller)
        except CheckoutValidationError as exc:
            extra = {"errors": exc.errors} if exc.errors else {}
            return _error(exc.message, status.HTTP_400_BAD_REQUEST, **extra)
        except IdempotencyKeyConflict as exc:
            return _error(str(exc), status.HTTP_409_CONFLICT)
        except PharmacyNotFound as exc:
            return _error(
                str(exc), status.HTTP_404_NOT_FOUND, pharmacyId=exc.pharmacy_id
            )
        except ProductNotFound as exc:
            return _error(str(exc), status.HTTP_404_NOT_FOUND, productId=exc.product_id)
        except InsufficientStock as exc:
            return _error(str(exc), status.HTTP_400_BAD_REQUEST, productId=exc.product_id)
        except OrderPersistenceError as exc:
            extra = {"error": str(exc)} if settings.DEBUG else {}
            return _error(
                "Failed to create order", status.HTTP_500_INTERNAL_SERVER_ERROR, **extra
            )

        return Response(
            {
                "success": True,
                "message": "Order placed successfully",
                "data": _checkout_data(result),
            },
            status=status.HTTP_200_OK if result.replayed else status.HTTP_201_CREATED,
        )

    # ------------------------------------------------------------------
    # List / Retrieve
    # ------------------------------------------------------------------

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/?page=1&limit=10 (the caller's own orders)."""
        try:
            page = _positive_int(request.query_params.get("page"), 1)
            limit = _positive_int(request.query_params.get("limit"), DEFAULT_LIST_LIMIT)
        except ValueError:
            return _error(
                "page and limit must be positive integers.",
                status.HTTP_400_BAD_REQUEST,
            )

        result = self._service.get_customer_orders(
            request.user.pk, page=page, page_size=min(limit, MAX_LIST_LIMIT)
        )
        return Response(
            {
                "success": True,
                "orders": OrderListSerializer(result.orders, many=True).data,
                "pagination": {
                    "page": result.page,
                    "limit": result.page_size,
                    "total": result.total,
                    "pages": result.pages,
                },
            }
        )

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/"""
        try:
            order = self._service.get_order_by_id(pk, self._requester_id(request))
        except OrderNotFound:
            return _not_found()
        return Response({"success": True, "data": OrderSerializer(order).data})

    # ------------------------------------------------------------------
    # Payment retry
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"])
    def pay(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/pay/

        Opens a new checkout session for an order whose first payment
        attempt failed.  Guests identify themselves with ``email``.
        """
        try:
            caller = resolve_caller(request.user, request.data.get("email"))
            result = self._service.retry_payment(pk, caller)
        except CheckoutValidationError as exc:
            return _error(exc.message, status.HTTP_400_BAD_REQUEST)
        except OrderNotFound:
            return _not_found()
        except InvalidOrderStatus as exc:
            return _error(str(exc), status.HTTP_400_BAD_REQUEST)
        except PaymentProviderError as exc:
            extra = {"error": str(exc)} if settings.DEBUG else {}
            return _error(
                "Payment provider unavailable, please retry.",
                status.HTTP_502_BAD_GATEWAY,
                **extra,
            )

        return Response({"success": True, "data": _checkout_data(result)})

    # ------------------------------------------------------------------
    # Status Update
    # ------------------------------------------------------------------

    def partial_update(self, request: Request, pk: str | None = None) -> Response:
        """PATCH /api/v1/orders/{pk}/

        Staff-only fulfilment transition.  Cancellations are **not**
        allowed via this endpoint; use ``POST /orders/{id}/cancel/``.
        """
        status_value = str(request.data.get("status") or "").strip().lower()
        if not status_value:
            return _error("Field 'status' is required.", status.HTTP_400_BAD_REQUEST)
        if status_value == OrderStatus.CANCELLED:
            return _error(
                "Use the /cancel/ endpoint for cancellations.",
                status.HTTP_400_BAD_REQUEST,
            )

        try:
            order = self._service.update_status(
                order_id=pk,
                new_status=status_value,
                notes=request.data.get("notes", ""),
                user=request.user,
            )
        except OrderNotFound:
            return _not_found()
        except InvalidOrderStatus as exc:
            return _error(str(exc), status.HTTP_400_BAD_REQUEST)

        return Response({"success": True, "data": OrderSerializer(order).data})

    # ------------------------------------------------------------------
    # Cancel (dedicated action)
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"])
    def cancel(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/cancel/

        Cancels an order and releases its stock.
        """
        try:
            order = self._service.cancel_order(
                order_id=pk,
                requester_id=self._requester_id(request),
                notes=request.data.get("notes", ""),
                user=request.user,
            )
        except OrderNotFound:
            return _not_found()
        except InvalidOrderStatus as exc:
            return _error(str(exc), status.HTTP_400_BAD_REQUEST)

        return Response({"success": True, "data": OrderSerializer(order).data})

    # ------------------------------------------------------------------
    # Prescription verification
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"], url_path="verify-prescription")
    def verify_prescription(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/verify-prescription/ (pharmacist only)"""
        try:
            order = self._service.verify_prescriptions(pk, user=request.user)
        except OrderNotFound:
            return _not_found()
        except InvalidOrderStatus as exc:
            return _error(str(exc), status.HTTP_400_BAD_REQUEST)

        return Response({"success": True, "data": OrderSerializer(order).data})
