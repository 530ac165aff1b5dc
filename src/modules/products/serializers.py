"""Product DRF serializers (read-only catalog output)."""

from __future__ import annotations

from rest_framework import serializers

from modules.products.models import Product


class ProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = [
            "id",
            "sku",
            "name",
            "description",
            "price",
            "stock_quantity",
            "in_stock",
            "status",
            "image_url",
            "requires_prescription",
            "pharmacy_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
