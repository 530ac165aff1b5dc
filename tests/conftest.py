from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework.test import APIClient

from modules.payments.gateway import reset_gateway, set_gateway
from modules.payments.gateway.fake_adapter import FakeGateway
from modules.products.models import Pharmacy, Product, ProductStatus


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _clear_cache():
    """Throttle counters live in the cache; start every test from zero."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture()
def fake_gateway():
    """Fake payment gateway installed as the active gateway."""
    gateway = FakeGateway()
    set_gateway(gateway)
    yield gateway
    reset_gateway()


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def user():
    return get_user_model().objects.create_user(
        username="patient", email="patient@example.com", password="testpass123"
    )


@pytest.fixture()
def other_user():
    return get_user_model().objects.create_user(
        username="other", email="other@example.com", password="testpass123"
    )


@pytest.fixture()
def staff_user():
    return get_user_model().objects.create_user(
        username="pharmacist",
        email="pharmacist@example.com",
        password="testpass123",
        is_staff=True,
    )


@pytest.fixture()
def auth_client(user):
    """APIClient with a force-authenticated customer."""
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture()
def staff_client(staff_user):
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


@pytest.fixture()
def make_product():
    """Factory for catalog products."""
    counter = {"n": 0}

    def _make(**overrides) -> Product:
        counter["n"] += 1
        defaults = {
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Product {counter['n']}",
            "price": Decimal("10.00"),
            "stock_quantity": 10,
            "status": ProductStatus.ACTIVE,
        }
        defaults.update(overrides)
        return Product.objects.create(**defaults)

    return _make


@pytest.fixture()
def pharmacy():
    return Pharmacy.objects.create(name="Central Pharmacy", address="1 Main Street")


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid
