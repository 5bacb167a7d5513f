"""Integration tests for payment routes."""

from collections.abc import Callable
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from src.core.errors import ExternalProviderError


@pytest.fixture
def pending_order(client: TestClient, add_product: Callable[..., str]) -> dict:
    """Create a Mercado Pago order through the API."""
    add_product(sizes={"M": 5})
    payload = {
        "customer": {"name": "Ana Perez", "email": "ana@example.com", "phone": "+54 11 5555 0000"},
        "items": [{"product_id": "prod-a", "size": "M", "color": "BLACK", "quantity": 1}],
        "payment_method": "mercadopago",
    }
    return client.post("/api/v1/orders", json=payload).json()["order"]


def redirect_query(location: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}


class TestWebhookRoute:
    """Tests for POST /api/v1/payments/webhook."""

    def test_approved_webhook_delivered_twice(
        self,
        client: TestClient,
        pending_order: dict,
        mock_provider: MagicMock,
        make_payment: Callable,
    ) -> None:
        """Test that both deliveries are acknowledged and the order is confirmed once."""
        mock_provider.get_payment.return_value = make_payment(pending_order["id"], "approved", "pay-77")
        body = {"type": "payment", "action": "payment.updated", "data": {"id": "pay-77"}}

        first = client.post("/api/v1/payments/webhook", json=body)
        status_after_first = client.get(f"/api/v1/payments/status/{pending_order['id']}").json()
        second = client.post("/api/v1/payments/webhook", json=body)
        status_after_second = client.get(f"/api/v1/payments/status/{pending_order['id']}").json()

        assert first.status_code == second.status_code == 200
        assert first.json() == second.json() == {"status": "received"}
        assert status_after_first["order"]["status"] == "payment-confirmed"
        assert status_after_second["order"]["payment_id"] == "pay-77"
        assert status_after_second["order"]["updated_at"] == status_after_first["order"]["updated_at"]

    def test_query_string_notification(
        self,
        client: TestClient,
        pending_order: dict,
        mock_provider: MagicMock,
        make_payment: Callable,
    ) -> None:
        """Test the IPN-style notification sent as query parameters."""
        mock_provider.get_payment.return_value = make_payment(pending_order["id"], "approved", "991")

        response = client.post("/api/v1/payments/webhook?topic=payment&id=991")

        assert response.status_code == 200
        mock_provider.get_payment.assert_awaited_once_with("991")

    def test_data_id_query_param(
        self,
        client: TestClient,
        pending_order: dict,
        mock_provider: MagicMock,
        make_payment: Callable,
    ) -> None:
        """Test the data.id query parameter shape."""
        mock_provider.get_payment.return_value = make_payment(pending_order["id"], "approved", "992")

        response = client.post("/api/v1/payments/webhook?type=payment&data.id=992")

        assert response.status_code == 200
        mock_provider.get_payment.assert_awaited_once_with("992")

    def test_failures_still_acknowledged(self, client: TestClient, mock_provider: MagicMock) -> None:
        """Test that provider errors and garbage bodies are acknowledged."""
        mock_provider.get_payment.side_effect = ExternalProviderError("down")

        failed = client.post("/api/v1/payments/webhook", json={"type": "payment", "data": {"id": "1"}})
        garbage = client.post(
            "/api/v1/payments/webhook", content=b"not json", headers={"content-type": "application/json"}
        )

        assert failed.status_code == 200
        assert garbage.status_code == 200
        assert garbage.json() == {"status": "received"}

    def test_merchant_order_acknowledged_without_lookup(self, client: TestClient, mock_provider: MagicMock) -> None:
        """Test that merchant_order notifications are acknowledged and ignored."""
        response = client.post("/api/v1/payments/webhook", json={"type": "merchant_order", "data": {"id": "7"}})

        assert response.status_code == 200
        mock_provider.get_payment.assert_not_awaited()


class TestReturnRoute:
    """Tests for /api/v1/payments/return."""

    def test_success_return_redirects_to_order_page(
        self,
        client: TestClient,
        pending_order: dict,
        mock_provider: MagicMock,
        make_payment: Callable,
    ) -> None:
        """Test that an approved return confirms the order and redirects to success."""
        mock_provider.get_payment.return_value = make_payment(pending_order["id"], "approved", "pay-5")

        response = client.get(
            "/api/v1/payments/return",
            params={"payment_id": "pay-5", "status": "approved", "preference_id": "pref-123"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith(f"https://shop.example.com/order/{pending_order['id']}?")
        assert redirect_query(location) == {"status": "success", "order_number": pending_order["order_number"]}

    def test_post_return_with_form_body(
        self,
        client: TestClient,
        pending_order: dict,
        mock_provider: MagicMock,
        make_payment: Callable,
    ) -> None:
        """Test that POSTed return parameters are read from the form body."""
        mock_provider.get_payment.return_value = make_payment(pending_order["id"], "rejected", "pay-6")

        response = client.post(
            "/api/v1/payments/return",
            data={"collection_id": "pay-6", "collection_status": "rejected"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert redirect_query(response.headers["location"])["status"] == "failure"

    def test_pending_hint_does_not_change_order(self, client: TestClient, pending_order: dict) -> None:
        """Test that a preference-only return redirects without mutating the order."""
        response = client.get(
            "/api/v1/payments/return",
            params={"preference_id": "pref-123", "status": "pending", "payment_id": "null"},
            follow_redirects=False,
        )

        assert redirect_query(response.headers["location"])["status"] == "pending"
        order = client.get(f"/api/v1/payments/status/{pending_order['id']}").json()["order"]
        assert order["status"] == "pending-payment"

    def test_missing_reference_redirects_to_error(self, client: TestClient) -> None:
        """Test that a return without identifiers lands on the error page."""
        response = client.get("/api/v1/payments/return", follow_redirects=False)

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith("https://shop.example.com/order/error?")
        assert redirect_query(location) == {"status": "error", "reason": "missing_payment_reference"}


class TestStatusRoute:
    """Tests for GET /api/v1/payments/status/{order_id}."""

    def test_stored_status_without_payment(self, client: TestClient, pending_order: dict) -> None:
        """Test the status of an order with no payment yet."""
        response = client.get(f"/api/v1/payments/status/{pending_order['id']}")

        assert response.status_code == 200
        data = response.json()
        assert data["source"] == "stored"
        assert data["payment"] is None
        assert data["order"]["id"] == pending_order["id"]

    def test_live_status_after_webhook(
        self,
        client: TestClient,
        pending_order: dict,
        mock_provider: MagicMock,
        make_payment: Callable,
    ) -> None:
        """Test that live payment info is returned once a payment exists."""
        mock_provider.get_payment.return_value = make_payment(pending_order["id"], "approved", "pay-8", amount=100.0)
        client.post("/api/v1/payments/webhook", json={"type": "payment", "data": {"id": "pay-8"}})

        data = client.get(f"/api/v1/payments/status/{pending_order['id']}").json()

        assert data["source"] == "live"
        assert data["payment"]["id"] == "pay-8"
        assert data["payment"]["amount"] == 100.0

    def test_unknown_order_returns_404(self, client: TestClient) -> None:
        """Test that polling an unknown order returns 404."""
        assert client.get("/api/v1/payments/status/missing").status_code == 404
