"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("MERCADOPAGO_ACCESS_TOKEN", "")
os.environ.setdefault("MERCADOPAGO_WEBHOOK_SECRET", "")
os.environ.setdefault("API_URL", "https://api.example.com")
os.environ.setdefault("FRONTEND_URL", "https://shop.example.com")
os.environ.setdefault("ORDER_EXPIRATION_JOB_ENABLED", "false")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

from src.core.config import Settings  # noqa: E402
from src.core.document_store import PRODUCTS, InMemoryDocumentStore  # noqa: E402
from src.core.mercadopago import PaymentInfo, PaymentSession  # noqa: E402
from src.services.order_service import OrderService  # noqa: E402
from src.services.payment_service import PaymentService  # noqa: E402
from src.services.stock_ledger import VariantStockLedger  # noqa: E402


@pytest.fixture
def test_settings() -> Settings:
    """Provide fresh settings built from the test environment."""
    return Settings()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Provide an empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def ledger(store: InMemoryDocumentStore) -> VariantStockLedger:
    return VariantStockLedger(store)


@pytest.fixture
def order_service(
    store: InMemoryDocumentStore, ledger: VariantStockLedger, test_settings: Settings
) -> OrderService:
    return OrderService(store, ledger, test_settings)


@pytest.fixture
def mock_provider() -> MagicMock:
    """Provide a payment provider double with async methods."""
    provider = MagicMock()
    provider.create_payment_session = AsyncMock(
        return_value=PaymentSession(
            payment_url="https://www.mercadopago.com/checkout/v1/redirect?pref_id=pref-123",
            session_id="pref-123",
        )
    )
    provider.get_payment = AsyncMock()
    return provider


@pytest.fixture
def payment_service(
    order_service: OrderService, mock_provider: MagicMock, test_settings: Settings
) -> PaymentService:
    return PaymentService(order_service, mock_provider, test_settings)


@pytest.fixture
def add_product(store: InMemoryDocumentStore) -> Callable[..., str]:
    """Seed a product with one color and the given size quantities."""

    def _add(
        product_id: str = "prod-a",
        name: str = "Rugby Jersey",
        price: float = 100.0,
        color: str = "BLACK",
        sizes: dict[str, int] | None = None,
        **extra: Any,
    ) -> str:
        sizes = sizes if sizes is not None else {"M": 5}
        doc = {
            "id": product_id,
            "name": name,
            "price": price,
            "is_active": True,
            "variants": [
                {"color": color, "sizes": [{"size": s, "quantity": q} for s, q in sizes.items()]}
            ],
            **extra,
        }
        return store.seed(PRODUCTS, doc)

    return _add


@pytest.fixture
def customer() -> dict[str, str]:
    return {"name": "Ana Perez", "email": "ana@example.com", "phone": "+54 11 5555 0000"}


@pytest.fixture
def make_payment() -> Callable[..., PaymentInfo]:
    """Build provider payments for a given order."""

    def _make(
        order_id: str | None,
        status: str = "approved",
        payment_id: str = "pay-1",
        amount: float | None = None,
    ) -> PaymentInfo:
        return PaymentInfo(
            id=payment_id,
            status=status,
            status_detail="accredited" if status == "approved" else None,
            external_reference=order_id,
            amount=amount,
            date_created=None,
            date_approved=None,
        )

    return _make


@pytest.fixture
def create_order(order_service: OrderService, add_product: Callable[..., str], customer: dict[str, str]):
    """Seed a product and create a pending order against it."""

    async def _create(payment_method: str = "mercadopago", quantity: int = 1, stock: int = 5) -> dict[str, Any]:
        add_product(sizes={"M": stock})
        items = [{"product_id": "prod-a", "size": "M", "color": "BLACK", "quantity": quantity}]
        return await order_service.create_order(customer, items, payment_method)

    return _create


@pytest.fixture
def client(
    order_service: OrderService, payment_service: PaymentService
) -> Generator[TestClient, None, None]:
    """Provide a test client wired to the fixture services.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.api.deps import get_order_service, get_payment_service
    from src.main import app

    app.dependency_overrides[get_order_service] = lambda: order_service
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
