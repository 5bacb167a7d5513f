"""Order creation, stock reservation and lifecycle transitions."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from src.core.config import Settings
from src.core.document_store import ORDERS, DocumentStore
from src.core.errors import NotFoundError, PersistenceError, ValidationError
from src.models.order import CustomerInfo, Order, OrderItem, OrderItemRequest, OrderStatus, PaymentMethod
from src.services.order_state_machine import INITIAL_STATUS, RELEASES_STOCK, can_transition, ensure_transition
from src.services.product_variants import normalize_color, normalize_size
from src.services.stock_ledger import VariantStockLedger, retry_on_conflict

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5
CUSTOMER_FIELDS = ("name", "email", "phone")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a stored ISO-8601 timestamp into an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _expires_at(order: dict[str, Any]) -> datetime | None:
    """Reservation deadline of a stored order, or None when missing or unparseable."""
    try:
        return parse_timestamp(order.get("expires_at"))
    except (TypeError, ValueError, AttributeError):
        logger.warning("Order %s has an invalid expires_at %r; skipping", order.get("id"), order.get("expires_at"))
        return None


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def effective_unit_price(product: dict[str, Any]) -> Decimal:
    """Discount price when it is set and below the list price, otherwise the list price."""
    price = _to_decimal(product.get("price"))
    if price is None or price < 0:
        raise ValidationError(f"Product {product.get('id')} has no valid price", fields=["items"])
    discount = _to_decimal(product.get("discount_price"))
    if discount is not None and 0 < discount < price:
        return discount
    return price


def generate_order_number(now: datetime | None = None) -> str:
    """Year prefix plus 48 random bits, e.g. ``ORD-2026-3F9A0C1B22DE``."""
    now = now or utcnow()
    return f"ORD-{now.year}-{secrets.token_hex(6).upper()}"


class OrderService:
    """Reservation engine and order state transitions.

    Every status change is a compare-and-swap write on the order document.
    Cancellation puts the order write and the stock release in the same batch,
    so reserved stock is returned at most once per order.
    """

    def __init__(self, store: DocumentStore, ledger: VariantStockLedger, settings: Settings) -> None:
        self.store = store
        self.ledger = ledger
        self.settings = settings

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_request(
        customer: dict[str, Any],
        items: list[dict[str, Any]],
        payment_method: str,
    ) -> tuple[CustomerInfo, list[OrderItemRequest], PaymentMethod]:
        if not isinstance(customer, dict):
            raise ValidationError("Customer is required", fields=["customer"])
        missing = [f for f in CUSTOMER_FIELDS if not str(customer.get(f) or "").strip()]
        if missing:
            raise ValidationError(
                "Customer name, email and phone are required",
                fields=[f"customer.{f}" for f in missing],
            )
        if "@" not in str(customer["email"]):
            raise ValidationError("Customer email is invalid", fields=["customer.email"])

        if not isinstance(items, list) or not items:
            raise ValidationError("Items must be a non-empty list", fields=["items"])

        cleaned: list[OrderItemRequest] = []
        for index, item in enumerate(items):
            if not isinstance(item, dict) or not all(item.get(k) for k in ("product_id", "size", "color")):
                raise ValidationError(
                    "Each item must have a product_id, size, color and quantity", fields=[f"items.{index}"]
                )
            quantity = item.get("quantity")
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise ValidationError("Quantity must be greater than 0", fields=[f"items.{index}.quantity"])
            cleaned.append(
                {
                    "product_id": str(item["product_id"]),
                    "size": normalize_size(str(item["size"])),
                    "color": normalize_color(str(item["color"])),
                    "quantity": quantity,
                }
            )

        try:
            method = PaymentMethod(payment_method)
        except ValueError as e:
            raise ValidationError(f"Unsupported payment method: {payment_method}", fields=["payment_method"]) from e

        customer_info: CustomerInfo = {
            "name": str(customer["name"]).strip(),
            "email": str(customer["email"]).strip().lower(),
            "phone": str(customer["phone"]).strip(),
        }
        return customer_info, cleaned, method

    async def _unique_order_number(self) -> str:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number()
            if not await self.store.query(ORDERS, order_number=candidate):
                return candidate
            logger.warning("Order number collision on %s, regenerating", candidate)
        raise PersistenceError("Could not generate a unique order number")

    async def create_order(
        self,
        customer: dict[str, Any],
        items: list[dict[str, Any]],
        payment_method: str,
        customer_id: str | None = None,
    ) -> Order:
        """Validate stock, reserve it and create a pending-payment order atomically.

        Args:
            customer: name, email and phone.
            items: product_id, size, color and quantity per line.
            payment_method: One of ``PaymentMethod``.
            customer_id: Optional id of a registered customer.

        Returns:
            Order: The created order with its id.

        Raises:
            NotFoundError: A referenced product does not exist.
            ValidationError: Bad payload, inactive product, unknown variant or insufficient stock.
            PersistenceError: The commit failed; no stock was touched and no order exists.
        """
        customer_info, lines, method = self._validate_request(customer, items, payment_method)
        order_number = await self._unique_order_number()
        order = await self._reserve_and_create(customer_info, lines, method, customer_id, order_number)
        logger.info(
            "Order %s (%s) created for %s with %d items, total %s",
            order["id"],
            order["order_number"],
            customer_info["email"],
            len(lines),
            order["total"],
        )
        return order

    @retry_on_conflict
    async def _reserve_and_create(
        self,
        customer: CustomerInfo,
        lines: list[OrderItemRequest],
        method: PaymentMethod,
        customer_id: str | None,
        order_number: str,
    ) -> Order:
        batch = self.store.batch()
        products = await self.ledger.stage_reservation(batch, lines)

        # Prices come from the same read the stock check used.
        total = Decimal("0")
        order_items: list[OrderItem] = []
        for line in lines:
            product = products[line["product_id"]]
            unit_price = effective_unit_price(product)
            total += unit_price * line["quantity"]
            order_items.append(
                {
                    "product_id": line["product_id"],
                    "product_name": product.get("name", ""),
                    "size": line["size"],
                    "color": line["color"],
                    "quantity": line["quantity"],
                    "price": float(unit_price),
                }
            )

        now = utcnow()
        data: dict[str, Any] = {
            "order_number": order_number,
            "customer": customer,
            "customer_id": customer_id,
            "items": order_items,
            "status": INITIAL_STATUS.value,
            "total": float(total),
            "payment_method": method.value,
            "payment_id": None,
            "payment_status": None,
            "preference_id": None,
            "expires_at": (now + timedelta(days=self.settings.reservation_days)).isoformat(),
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }
        order_id = batch.create(ORDERS, data)
        await batch.commit()
        return {**data, "id": order_id, "version": 1}  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_order_by_id(self, order_id: str) -> Order:
        order = await self.store.get(ORDERS, order_id)
        if order is None:
            raise NotFoundError("order", order_id)
        return order  # type: ignore[return-value]

    async def get_order_by_number(self, order_number: str) -> Order:
        matches = await self.store.query(ORDERS, order_number=order_number)
        if not matches:
            raise NotFoundError("order", order_number)
        return matches[0]  # type: ignore[return-value]

    async def get_order_by_preference_id(self, preference_id: str) -> Order:
        matches = await self.store.query(ORDERS, preference_id=preference_id)
        if not matches:
            raise NotFoundError("preference", preference_id)
        return matches[0]  # type: ignore[return-value]

    async def get_all_orders(
        self,
        status: OrderStatus | str | None = None,
        customer_email: str | None = None,
    ) -> list[Order]:
        """List orders newest first, optionally filtered by status and customer email."""
        filters: dict[str, Any] = {}
        if status:
            filters["status"] = OrderStatus(status).value
        orders = await self.store.query(ORDERS, **filters)
        if customer_email:
            email = customer_email.strip().lower()
            orders = [o for o in orders if (o.get("customer") or {}).get("email", "").lower() == email]
        orders.sort(key=lambda o: o.get("created_at", ""), reverse=True)
        return orders  # type: ignore[return-value]

    async def get_orders_expiring_soon(self, hours: float = 24) -> list[Order]:
        """Pending-payment orders whose reservation lapses within ``hours``."""
        now = utcnow()
        horizon = now + timedelta(hours=hours)
        pending = await self.store.query(ORDERS, status=OrderStatus.PENDING_PAYMENT.value)
        deadlines = [(expires_at, o) for o in pending if (expires_at := _expires_at(o)) is not None]
        expiring = [(expires_at, o) for expires_at, o in deadlines if now <= expires_at <= horizon]
        expiring.sort(key=lambda pair: pair[0])
        return [o for _, o in expiring]  # type: ignore[misc]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @retry_on_conflict
    async def _transition(
        self,
        order_id: str,
        target: OrderStatus,
        changes: dict[str, Any],
        strict: bool,
    ) -> tuple[Order, bool]:
        """Apply ``target`` with ``changes`` if the guard holds.

        Returns:
            tuple[Order, bool]: The order after the call and whether this call changed it.
        """
        order = await self.get_order_by_id(order_id)
        current = OrderStatus(order["status"])
        if not can_transition(current, target):
            if strict:
                ensure_transition(order_id, current, target)
            logger.info("Order %s already %s; ignoring transition to %s", order_id, current.value, target.value)
            return order, False

        now = utcnow().isoformat()
        update = {**changes, "status": target.value, "updated_at": now}
        batch = self.store.batch()
        if target in RELEASES_STOCK:
            await self.ledger.stage_release(batch, order["items"])
        batch.update(ORDERS, order_id, update, expected_version=order["version"])
        await batch.commit()

        logger.info("Order %s moved %s -> %s", order_id, current.value, target.value)
        return {**order, **update, "version": order["version"] + 1}, True  # type: ignore[return-value]

    async def confirm_payment(
        self,
        order_id: str,
        payment_id: str | None,
        payment_status: str = "approved",
        payment_status_detail: str | None = None,
        strict: bool = False,
    ) -> Order:
        """Move a pending-payment order to payment-confirmed.

        A call on an order in any other status returns it unchanged, unless
        ``strict`` is set, in which case ``InvalidTransitionError`` is raised.
        """
        changes: dict[str, Any] = {
            "payment_status": payment_status,
            "payment_status_detail": payment_status_detail,
            "confirmed_at": utcnow().isoformat(),
        }
        if payment_id:
            changes["payment_id"] = str(payment_id)
        order, _ = await self._transition(order_id, OrderStatus.PAYMENT_CONFIRMED, changes, strict)
        return order

    async def _cancel(self, order_id: str, reason: OrderStatus, strict: bool) -> tuple[Order, bool]:
        if reason not in RELEASES_STOCK:
            raise ValidationError(f"{reason.value} is not a cancellation status", fields=["reason"])
        changes = {"cancelled_at": utcnow().isoformat(), "cancellation_reason": reason.value}
        return await self._transition(order_id, reason, changes, strict)

    async def cancel_order(
        self,
        order_id: str,
        reason: OrderStatus | str = OrderStatus.MANUALLY_CANCELLED,
        strict: bool = False,
    ) -> Order:
        """Cancel a pending-payment order and release its stock in one commit."""
        order, _ = await self._cancel(order_id, OrderStatus(reason), strict)
        return order

    async def mark_as_delivered(self, order_id: str, strict: bool = True) -> Order:
        order, _ = await self._transition(
            order_id, OrderStatus.DELIVERED, {"delivered_at": utcnow().isoformat()}, strict
        )
        return order

    @retry_on_conflict
    async def attach_preference(self, order_id: str, preference_id: str) -> Order:
        """Store the checkout preference id. It is only ever set once."""
        order = await self.get_order_by_id(order_id)
        if order.get("preference_id"):
            if order["preference_id"] != preference_id:
                logger.warning(
                    "Order %s already has preference %s; ignoring %s",
                    order_id,
                    order["preference_id"],
                    preference_id,
                )
            return order
        update = {"preference_id": preference_id, "updated_at": utcnow().isoformat()}
        batch = self.store.batch()
        batch.update(ORDERS, order_id, update, expected_version=order["version"])
        await batch.commit()
        return {**order, **update, "version": order["version"] + 1}  # type: ignore[return-value]

    @retry_on_conflict
    async def record_payment_status(
        self,
        order_id: str,
        payment_id: str | None,
        payment_status: str,
        payment_status_detail: str | None = None,
    ) -> Order:
        """Store a non-final provider status on a pending order without changing its status."""
        order = await self.get_order_by_id(order_id)
        if order["status"] != OrderStatus.PENDING_PAYMENT.value:
            return order
        update: dict[str, Any] = {
            "payment_status": payment_status,
            "payment_status_detail": payment_status_detail,
            "updated_at": utcnow().isoformat(),
        }
        if payment_id and not order.get("payment_id"):
            update["payment_id"] = str(payment_id)
        batch = self.store.batch()
        batch.update(ORDERS, order_id, update, expected_version=order["version"])
        await batch.commit()
        return {**order, **update, "version": order["version"] + 1}  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Expiration
    # ------------------------------------------------------------------

    async def cancel_expired_orders(self) -> int:
        """Cancel every pending-payment order past ``expires_at``.

        A failure on one order is logged and the sweep continues.

        Returns:
            int: Number of orders this call cancelled.
        """
        now = utcnow()
        pending = await self.store.query(ORDERS, status=OrderStatus.PENDING_PAYMENT.value)
        expired = [o for o in pending if (expires_at := _expires_at(o)) is not None and expires_at < now]

        cancelled = 0
        for order in expired:
            try:
                _, changed = await self._cancel(order["id"], OrderStatus.CANCELLED_BY_TIME, strict=False)
            except Exception:
                logger.exception("Failed to cancel expired order %s", order["id"])
                continue
            if changed:
                cancelled += 1
        return cancelled
