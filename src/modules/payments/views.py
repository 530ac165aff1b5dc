"""Payment provider webhook endpoint.

The provider authenticates itself with a signature header, so the view
runs without user authentication or CSRF checks.  The raw body is
verified by the active gateway before anything is applied.
"""

from __future__ import annotations

import structlog
from rest_framework import status
from rest_framework.decorators import (
    api_view,
    authentication_classes,
    permission_classes,
    throttle_classes,
)
from rest_framework.permissions import AllowAny
from rest_framework.request import Request
from rest_framework.response import Response

from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.payments.exceptions import InvalidWebhookSignature
from modules.payments.gateway import get_gateway
from modules.products.repositories.django_repository import ProductDjangoRepository

logger = structlog.get_logger(__name__)


@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([])
def payment_webhook(request: Request) -> Response:
    """POST /api/v1/payments/webhook/"""
    gateway = get_gateway()
    try:
        event = gateway.parse_webhook_event(
            request.body, request.headers.get("Stripe-Signature", "")
        )
    except InvalidWebhookSignature as exc:
        logger.warning("payment.webhook_rejected", error=str(exc))
        return Response(
            {"success": False, "message": str(exc)},
            status=status.HTTP_400_BAD_REQUEST,
        )

    service = OrderService(
        order_repository=OrderDjangoRepository(),
        product_repository=ProductDjangoRepository(),
        payment_gateway=gateway,
    )
    order = service.handle_payment_event(event)
    logger.info(
        "payment.webhook_processed",
        event_type=event.type,
        order_id=str(order.id) if order else None,
    )
    return Response({"received": True})
