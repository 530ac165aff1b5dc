import logging
import uuid

import pytest

pytestmark = pytest.mark.integration


class TestCorrelationIdMiddleware:
    def test_returns_provided_request_id(self, client):
        custom_id = "my-custom-request-id-123"
        response = client.get("/health", HTTP_X_REQUEST_ID=custom_id)
        assert response["X-Request-ID"] == custom_id

    def test_generates_uuid_when_no_request_id(self, client):
        response = client.get("/health")
        request_id = response["X-Request-ID"]
        parsed = uuid.UUID(request_id, version=4)
        assert str(parsed) == request_id

    def test_header_present_on_api_errors(self, api_client_with_correlation):
        client, cid = api_client_with_correlation
        response = client.get("/api/v1/orders/")
        assert response.status_code == 401
        assert response["X-Request-ID"] == cid

    def test_correlation_id_on_checkout_logs(
        self, api_client_with_correlation, make_product, fake_gateway, caplog
    ):
        client, cid = api_client_with_correlation
        product = make_product()
        payload = {
            "items": [{"productId": str(product.id), "quantity": 1}],
            "shippingAddress": {"name": "Jane", "email": "jane@example.com"},
        }

        with caplog.at_level(logging.INFO):
            response = client.post("/api/v1/orders/", payload, format="json")

        assert response.status_code == 201
        checkout_logs = [
            record.getMessage()
            for record in caplog.records
            if "order.checkout_started" in record.getMessage()
        ]
        assert checkout_logs
        assert all(cid in message for message in checkout_logs)
