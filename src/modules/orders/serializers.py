"""Order DRF serializers for API output.

Input is validated by the Pydantic DTOs in ``dtos.py``; these
serializers only shape orders for responses.
"""

from __future__ import annotations

from rest_framework import serializers

from modules.orders.models import Order, OrderItem, OrderStatusHistory


class OrderItemSerializer(serializers.ModelSerializer):
    """Read serializer for order items with the product snapshot."""

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "product_id",
            "product_name",
            "quantity",
            "unit_price",
            "subtotal",
            "requires_prescription",
            "prescription_verified",
        ]
        read_only_fields = fields


class StatusHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderStatusHistory
        fields = [
            "id",
            "old_status",
            "new_status",
            "notes",
            "created_at",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """Read serializer for orders with nested items, address and history."""

    items = OrderItemSerializer(many=True, read_only=True)
    status_history = StatusHistorySerializer(many=True, read_only=True)
    shipping_address = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer_id",
            "customer_email",
            "status",
            "payment_status",
            "payment_method",
            "total_amount",
            "shipping_address",
            "payment_url",
            "pharmacy_id",
            "prescription_images",
            "requires_prescription",
            "prescription_verified",
            "notes",
            "created_at",
            "updated_at",
            "items",
            "status_history",
        ]
        read_only_fields = fields

    def get_shipping_address(self, order: Order) -> dict:
        return {
            "name": order.shipping_name,
            "email": order.shipping_email,
            "phone": order.shipping_phone,
            "address": order.shipping_address,
            "city": order.shipping_city,
            "postal_code": order.shipping_postal_code,
            "instructions": order.shipping_instructions,
        }


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for order lists (items only, no history)."""

    items = OrderItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "status",
            "payment_status",
            "total_amount",
            "created_at",
            "items",
        ]
        read_only_fields = fields
