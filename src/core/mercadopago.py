"""Mercado Pago client wrapper.

The official SDK is blocking and module-free, so one ``MercadoPagoClient`` is
built at startup and injected into the services that need it. Each SDK call
runs in a worker thread bounded by ``asyncio.wait_for``.
"""

import asyncio
import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import mercadopago
from mercadopago.config import RequestOptions

from src.core.config import Settings
from src.core.errors import ExternalProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentSession:
    """Hosted checkout created for an order."""

    payment_url: str
    session_id: str


@dataclass(frozen=True)
class PaymentInfo:
    """Normalized view of a provider payment."""

    id: str
    status: str
    status_detail: str | None
    external_reference: str | None
    amount: float | None
    date_created: datetime | None
    date_approved: datetime | None

    @classmethod
    def from_response(cls, body: dict[str, Any]) -> "PaymentInfo":
        """Build from the body of ``GET /v1/payments/{id}``."""
        return cls(
            id=str(body.get("id", "")),
            status=body.get("status") or "unknown",
            status_detail=body.get("status_detail"),
            external_reference=body.get("external_reference") or None,
            amount=body.get("transaction_amount"),
            date_created=_parse_datetime(body.get("date_created")),
            date_approved=_parse_datetime(body.get("date_approved")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "status_detail": self.status_detail,
            "external_reference": self.external_reference,
            "amount": self.amount,
            "date_created": self.date_created,
            "date_approved": self.date_approved,
        }


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class MercadoPagoClient:
    """Async facade over the Mercado Pago SDK with bounded call time."""

    def __init__(self, sdk: Any | None, timeout_seconds: float = 10.0, use_sandbox: bool = False) -> None:
        self._sdk = sdk
        self.timeout_seconds = timeout_seconds
        self.use_sandbox = use_sandbox

    @classmethod
    def from_settings(cls, settings: Settings) -> "MercadoPagoClient":
        """Build the client once at startup.

        If no access token is configured the client is still created, but every
        call fails with ``ExternalProviderError``.
        """
        sdk = None
        if settings.mercadopago_access_token:
            options = RequestOptions(connection_timeout=settings.payment_provider_timeout_seconds)
            sdk = mercadopago.SDK(settings.mercadopago_access_token, request_options=options)
        else:
            logger.warning("Mercado Pago access token not configured. Payment features will not work.")
        return cls(
            sdk,
            timeout_seconds=settings.payment_provider_timeout_seconds,
            use_sandbox=settings.is_mercadopago_test_mode,
        )

    async def _call(self, operation: str, fn: Callable[..., dict[str, Any]], *args: Any) -> dict[str, Any]:
        if self._sdk is None:
            raise ExternalProviderError("Mercado Pago is not configured", retryable=False)
        try:
            result = await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning("Mercado Pago %s timed out after %.1fs", operation, self.timeout_seconds)
            raise ExternalProviderError(f"Mercado Pago {operation} timed out") from e
        except Exception as e:
            logger.warning("Mercado Pago %s failed: %s", operation, e)
            raise ExternalProviderError(f"Mercado Pago {operation} failed: {e}") from e

        status_code = result.get("status", 500)
        if status_code >= 400:
            body = result.get("response") or {}
            message = body.get("message") if isinstance(body, dict) else None
            raise ExternalProviderError(
                f"Mercado Pago {operation} returned {status_code}: {message or 'unknown error'}",
                retryable=status_code >= 500 or status_code == 429,
                status_code=status_code,
            )
        return result.get("response") or {}

    async def create_payment_session(
        self,
        order_ref: str,
        items: list[dict[str, Any]],
        return_urls: dict[str, str],
        webhook_url: str,
    ) -> PaymentSession:
        """Create a checkout preference for an order.

        Args:
            order_ref: Order id, echoed back as ``external_reference``.
            items: Line items with title, description, quantity and unit_price.
            return_urls: ``success``/``failure``/``pending`` browser return URLs.
            webhook_url: Notification URL for payment events.

        Returns:
            PaymentSession: Checkout URL and preference id.
        """
        preference = {
            "items": [{**item, "currency_id": item.get("currency_id", "ARS")} for item in items],
            "external_reference": order_ref,
            "back_urls": return_urls,
            "auto_return": "approved",
            "notification_url": webhook_url,
        }
        body = await self._call("create preference", lambda: self._sdk.preference().create(preference))
        url_key = "sandbox_init_point" if self.use_sandbox else "init_point"
        payment_url = body.get(url_key) or body.get("init_point")
        if not payment_url or not body.get("id"):
            raise ExternalProviderError("Mercado Pago preference response is missing id or init_point")
        return PaymentSession(payment_url=payment_url, session_id=str(body["id"]))

    async def get_payment(self, payment_id: str) -> PaymentInfo:
        """Fetch the current state of a payment."""
        body = await self._call("get payment", lambda: self._sdk.payment().get(payment_id))
        return PaymentInfo.from_response(body)


def verify_webhook_signature(
    secret: str,
    signature_header: str | None,
    request_id: str | None,
    data_id: str | None,
) -> bool:
    """Verify the ``x-signature`` header of a webhook notification.

    The header has the form ``ts=<unix>,v1=<hex hmac>``; the signed manifest is
    ``id:<data.id>;request-id:<x-request-id>;ts:<ts>;``.
    """
    if not signature_header:
        return False
    parts = dict(
        part.strip().split("=", 1) for part in signature_header.split(",") if "=" in part
    )
    ts = parts.get("ts")
    received = parts.get("v1")
    if not ts or not received:
        return False

    manifest = ""
    if data_id:
        manifest += f"id:{data_id.lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)
