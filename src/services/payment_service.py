"""Payment reconciliation between Mercado Pago and the order lifecycle.

Webhook pushes, browser redirect returns and status polls all end up in
``_apply_payment``, which only ever calls the order service's guarded,
idempotent transitions. Redeliveries and a webhook racing the redirect for
the same order are therefore harmless.
"""

import logging
from typing import Any, Mapping
from urllib.parse import urlencode

from src.core.config import Settings
from src.core.errors import ExternalProviderError, OrderEngineError, ValidationError
from src.core.mercadopago import MercadoPagoClient, PaymentInfo, verify_webhook_signature
from src.models.order import Order, OrderStatus
from src.services.order_service import OrderService

logger = logging.getLogger(__name__)

APPROVED_STATUSES = frozenset({"approved"})
FAILED_STATUSES = frozenset({"rejected", "cancelled"})
IN_PROGRESS_STATUSES = frozenset({"pending", "in_process", "authorized", "in_mediation"})

CANCELLED_STATUSES = frozenset({OrderStatus.CANCELLED_BY_TIME.value, OrderStatus.MANUALLY_CANCELLED.value})

SUCCESS_HINTS = frozenset({"approved", "success"})
FAILURE_HINTS = frozenset({"rejected", "cancelled", "failure"})


def _clean_param(value: Any) -> str | None:
    """Mercado Pago sends the literal string "null" for absent redirect params."""
    if value is None:
        return None
    value = str(value).strip()
    return value if value and value.lower() not in ("null", "undefined") else None


class PaymentService:
    """Checkout creation and payment reconciliation."""

    def __init__(self, orders: OrderService, provider: MercadoPagoClient, settings: Settings) -> None:
        self.orders = orders
        self.provider = provider
        self.settings = settings

    @property
    def return_url(self) -> str:
        return f"{self.settings.api_url.rstrip('/')}/api/v1/payments/return"

    @property
    def webhook_url(self) -> str:
        return f"{self.settings.api_url.rstrip('/')}/api/v1/payments/webhook"

    async def start_checkout(self, order: Order) -> dict[str, Any]:
        """Create the hosted checkout for a pending order and remember its preference id.

        If the provider call fails the order is cancelled so its stock is
        released, and the error propagates.

        Returns:
            dict: ``order``, ``payment_url`` and ``preference_id``.

        Raises:
            ExternalProviderError: The checkout preference could not be created.
        """
        items = [
            {
                "title": item["product_name"],
                "description": f"{item['size']} - {item['color']}",
                "quantity": item["quantity"],
                "unit_price": item["price"],
            }
            for item in order["items"]
        ]
        return_urls = {"success": self.return_url, "failure": self.return_url, "pending": self.return_url}

        try:
            session = await self.provider.create_payment_session(
                order_ref=order["id"],
                items=items,
                return_urls=return_urls,
                webhook_url=self.webhook_url,
            )
        except ExternalProviderError:
            logger.error("Checkout creation failed for order %s; releasing its stock", order["id"])
            await self.orders.cancel_order(order["id"], OrderStatus.MANUALLY_CANCELLED)
            raise

        updated = await self.orders.attach_preference(order["id"], session.session_id)
        logger.info("Checkout preference %s created for order %s", session.session_id, order["id"])
        return {"order": updated, "payment_url": session.payment_url, "preference_id": session.session_id}

    async def _apply_payment(self, order_id: str, payment: PaymentInfo) -> Order:
        """Drive the order state machine from a verified provider payment."""
        status = payment.status
        if status in APPROVED_STATUSES:
            order = await self.orders.confirm_payment(
                order_id,
                payment_id=payment.id,
                payment_status=status,
                payment_status_detail=payment.status_detail,
            )
            if order["status"] in CANCELLED_STATUSES:
                # Charged after the reservation was released; needs a manual refund or re-reservation.
                logger.warning(
                    "Approved payment %s arrived for order %s already %s",
                    payment.id,
                    order_id,
                    order["status"],
                )
            return order
        if status in FAILED_STATUSES:
            logger.info("Payment %s for order %s is %s; cancelling", payment.id, order_id, status)
            return await self.orders.cancel_order(order_id, OrderStatus.MANUALLY_CANCELLED)
        if status in IN_PROGRESS_STATUSES:
            return await self.orders.record_payment_status(order_id, payment.id, status, payment.status_detail)

        logger.warning("Unhandled payment status %s for payment %s (order %s)", status, payment.id, order_id)
        return await self.orders.get_order_by_id(order_id)

    # ------------------------------------------------------------------
    # Webhook push
    # ------------------------------------------------------------------

    async def handle_webhook(self, payload: Mapping[str, Any], headers: Mapping[str, str] | None = None) -> None:
        """Process a webhook notification. Never raises.

        The provider retries any notification that is not acknowledged, so
        every failure here is logged and swallowed; the caller always acks.
        """
        try:
            await self._process_webhook(payload, headers or {})
        except Exception:
            logger.exception("Webhook processing failed for payload %s", dict(payload))

    async def _process_webhook(self, payload: Mapping[str, Any], headers: Mapping[str, str]) -> None:
        event_type = payload.get("type") or payload.get("topic")
        data = payload.get("data") or {}
        data_id = _clean_param(data.get("id") if isinstance(data, Mapping) else None)
        if data_id is None and payload.get("topic"):
            data_id = _clean_param(payload.get("id"))

        if self.settings.mercadopago_webhook_secret:
            valid = verify_webhook_signature(
                self.settings.mercadopago_webhook_secret,
                headers.get("x-signature"),
                headers.get("x-request-id"),
                data_id,
            )
            if not valid:
                logger.warning("Ignoring webhook with invalid signature (type=%s, id=%s)", event_type, data_id)
                return

        if event_type == "merchant_order":
            logger.debug("Merchant order notification %s acknowledged without action", data_id)
            return
        if event_type != "payment":
            logger.debug("Unhandled webhook type: %s", event_type)
            return
        if not data_id:
            logger.warning("Payment webhook without data.id: %s", dict(payload))
            return

        payment = await self.provider.get_payment(data_id)
        if not payment.external_reference:
            logger.warning("Payment %s has no external_reference; cannot match an order", payment.id)
            return

        order = await self._apply_payment(payment.external_reference, payment)
        logger.info(
            "Webhook for payment %s processed: order %s is %s",
            payment.id,
            order["id"],
            order["status"],
        )

    # ------------------------------------------------------------------
    # Redirect return
    # ------------------------------------------------------------------

    def _order_redirect(self, order: Order, provider_status: str | None) -> str:
        status = OrderStatus(order["status"])
        if status in (OrderStatus.PAYMENT_CONFIRMED, OrderStatus.DELIVERED):
            outcome = "success"
        elif status in (OrderStatus.MANUALLY_CANCELLED, OrderStatus.CANCELLED_BY_TIME):
            outcome = "failure"
        elif provider_status in SUCCESS_HINTS:
            outcome = "success"
        elif provider_status in FAILURE_HINTS:
            outcome = "failure"
        else:
            outcome = "pending"
        query = urlencode({"status": outcome, "order_number": order["order_number"]})
        return f"{self.settings.frontend_url.rstrip('/')}/order/{order['id']}?{query}"

    def _error_redirect(self, reason: str) -> str:
        query = urlencode({"status": "error", "reason": reason})
        return f"{self.settings.frontend_url.rstrip('/')}/order/error?{query}"

    async def handle_payment_return(self, params: Mapping[str, Any]) -> str:
        """Resolve the browser's return from checkout into a storefront URL.

        Resolution order: a payment id (``payment_id`` or ``collection_id``) is
        fetched from the provider and applied; otherwise the order is found by
        ``preference_id`` and its stored payment id is used if present; otherwise
        the caller's ``status`` hint picks the page. The hint never changes the
        order. Every failure degrades to the error page.

        Returns:
            str: URL to redirect the browser to.
        """
        try:
            return await self._resolve_return(params)
        except OrderEngineError as e:
            logger.warning("Payment return could not be resolved: %s", e.message)
            return self._error_redirect(e.kind.value)
        except Exception:
            logger.exception("Unexpected error handling payment return %s", dict(params))
            return self._error_redirect("internal_error")

    async def _resolve_return(self, params: Mapping[str, Any]) -> str:
        payment_id = _clean_param(params.get("payment_id")) or _clean_param(params.get("collection_id"))
        preference_id = _clean_param(params.get("preference_id"))
        status_hint = (_clean_param(params.get("status")) or _clean_param(params.get("collection_status")) or "").lower()

        if payment_id:
            payment = await self.provider.get_payment(payment_id)
            if not payment.external_reference:
                raise ValidationError(f"Payment {payment_id} is not linked to an order", fields=["payment_id"])
            order = await self._apply_payment(payment.external_reference, payment)
            return self._order_redirect(order, payment.status)

        if preference_id:
            order = await self.orders.get_order_by_preference_id(preference_id)
            if order.get("payment_id"):
                payment = await self.provider.get_payment(order["payment_id"])
                order = await self._apply_payment(order["id"], payment)
                return self._order_redirect(order, payment.status)
            return self._order_redirect(order, status_hint or None)

        logger.warning("Payment return without payment_id or preference_id: %s", dict(params))
        return self._error_redirect("missing_payment_reference")

    # ------------------------------------------------------------------
    # Status poll
    # ------------------------------------------------------------------

    async def get_payment_status(self, order_id: str) -> dict[str, Any]:
        """Return the order with live payment info, or its stored status if the provider is unavailable.

        Raises:
            NotFoundError: The order does not exist.
        """
        order = await self.orders.get_order_by_id(order_id)
        payment_id = order.get("payment_id")
        if not payment_id:
            return {"order": order, "payment": None, "source": "stored"}

        try:
            payment = await self.provider.get_payment(payment_id)
        except ExternalProviderError as e:
            logger.warning("Live payment lookup failed for order %s, using stored status: %s", order_id, e.message)
            return {"order": order, "payment": None, "source": "stored"}

        try:
            order = await self._apply_payment(order_id, payment)
        except OrderEngineError as e:
            logger.warning("Could not reconcile order %s from poll: %s", order_id, e.message)
        return {"order": order, "payment": payment, "source": "live"}
