from __future__ import annotations

import random
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from modules.products.models import Pharmacy, Product, ProductStatus


class Command(BaseCommand):
    help = "Seed database with development users and a pharmacy catalog."

    def handle(self, *args, **options):
        random.seed(42)
        self.stdout.write("Seeding development data...")

        users_created = self._seed_users()
        products = self._seed_products()

        self.stdout.write(
            self.style.SUCCESS(
                "Seed completed: "
                f"users={users_created}, "
                f"products={len(products)}"
            )
        )

    def _seed_users(self) -> int:
        User = get_user_model()
        created = 0
        if not User.objects.filter(username="admin").exists():
            User.objects.create_superuser(
                "admin", email="admin@pharmacy.local", password="admin123"
            )
            created += 1
        if not User.objects.filter(username="pharmacist").exists():
            User.objects.create_user(
                "pharmacist",
                email="pharmacist@pharmacy.local",
                password="pharmacist123",
                is_staff=True,
            )
            created += 1
        if not User.objects.filter(username="patient").exists():
            User.objects.create_user(
                "patient", email="patient@example.com", password="patient123"
            )
            created += 1
        return created

    def _seed_products(self) -> list[Product]:
        self.stdout.write("Creating products...")
        products: list[Product] = []
        catalog = [
            ("OTC-001", "Ibuprofen 200mg (24 tablets)", "Pain relief", Decimal("6.49")),
            ("OTC-002", "Paracetamol 500mg (20 tablets)", "Pain relief", Decimal("4.99")),
            ("OTC-003", "Loratadine 10mg (30 tablets)", "Allergy", Decimal("9.99")),
            ("OTC-004", "Cough Syrup 150ml", "Cold & flu", Decimal("8.75")),
            ("OTC-005", "Saline Nasal Spray", "Cold & flu", Decimal("5.25")),
            ("VIT-001", "Vitamin D3 1000 IU (90 softgels)", "Vitamins", Decimal("11.90")),
            ("VIT-002", "Vitamin C 500mg (60 tablets)", "Vitamins", Decimal("7.40")),
            ("VIT-003", "Omega-3 Fish Oil (120 softgels)", "Vitamins", Decimal("18.50")),
            ("FA-001", "Adhesive Bandages (50 pack)", "First aid", Decimal("3.99")),
            ("FA-002", "Antiseptic Solution 250ml", "First aid", Decimal("6.20")),
            ("FA-003", "Digital Thermometer", "First aid", Decimal("12.99")),
            ("DEV-001", "Blood Pressure Monitor", "Devices", Decimal("49.00")),
            ("DEV-002", "Pulse Oximeter", "Devices", Decimal("29.95")),
            ("SKN-001", "SPF 50 Sunscreen 100ml", "Skin care", Decimal("14.30")),
            ("SKN-002", "Hydrocortisone Cream 1%", "Skin care", Decimal("7.85")),
            ("RX-001", "Amoxicillin 500mg (21 capsules)", "Prescription", Decimal("12.40")),
            ("RX-002", "Atorvastatin 20mg (28 tablets)", "Prescription", Decimal("15.80")),
        ]
        pharmacy, _ = Pharmacy.objects.get_or_create(
            name="Central Pharmacy",
            defaults={"address": "1 Main Street", "phone": "555-0100"},
        )
        for sku, name, category, price in catalog:
            product, _ = Product.objects.get_or_create(
                sku=sku,
                defaults={
                    "name": name,
                    "description": category,
                    "price": price,
                    "pharmacy": pharmacy,
                    "requires_prescription": sku.startswith("RX-"),
                    "stock_quantity": random.randint(0, 150),
                    "status": ProductStatus.ACTIVE,
                },
            )
            products.append(product)
        self.stdout.write(self.style.SUCCESS("Creating products... Done!"))
        return products
