"""Integration tests for the ``{"success": false, "message": ...}`` error envelope."""

import pytest

pytestmark = pytest.mark.integration


class TestStandardizedErrors:
    def test_auth_error_has_standard_format(self, api_client):
        response = api_client.get("/api/v1/orders/")

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "message": "Authentication credentials were not provided.",
        }

    def test_permission_error_has_standard_format(self, auth_client):
        response = auth_client.patch(
            "/api/v1/orders/00000000-0000-0000-0000-000000000000/",
            {"status": "confirmed"},
            format="json",
        )

        assert response.status_code == 403
        body = response.json()
        assert body["success"] is False
        assert body["message"]
        assert "errors" not in body

    def test_malformed_json_has_standard_format(self, auth_client):
        response = auth_client.post(
            "/api/v1/orders/", data="{", content_type="application/json"
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "JSON parse error" in body["message"]

    def test_method_not_allowed_has_standard_format(self, api_client):
        response = api_client.put("/api/v1/products/")

        assert response.status_code == 405
        assert response.json() == {
            "success": False,
            "message": 'Method "PUT" not allowed.',
        }

    def test_invalid_token_has_standard_format(self, api_client):
        api_client.credentials(HTTP_AUTHORIZATION="Bearer not-a-jwt")

        response = api_client.get("/api/v1/orders/")

        assert response.status_code == 401
        assert response.json()["success"] is False
