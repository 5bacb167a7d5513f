"""Order model type definitions for document store operations."""

from enum import Enum
from typing import TypedDict


class OrderStatus(str, Enum):
    """Order lifecycle states."""

    PENDING_PAYMENT = "pending-payment"
    PAYMENT_CONFIRMED = "payment-confirmed"
    DELIVERED = "delivered"
    MANUALLY_CANCELLED = "manually-cancelled"
    CANCELLED_BY_TIME = "cancelled-by-time"


class PaymentMethod(str, Enum):
    """How the customer intends to pay."""

    MERCADOPAGO = "mercadopago"
    BANK_TRANSFER = "bank-transfer"
    CASH = "cash"


class CustomerInfo(TypedDict):
    """Contact details captured with the order."""

    name: str
    email: str
    phone: str


class OrderItemRequest(TypedDict):
    """A requested line item before prices are captured."""

    product_id: str
    size: str
    color: str
    quantity: int


class OrderItem(TypedDict):
    """A line item stored on the order.

    ``product_id``/``size``/``color`` are the exact keys used to release the
    reserved stock; ``price`` is the unit price captured at purchase time.
    """

    product_id: str
    product_name: str
    size: str
    color: str
    quantity: int
    price: float


class _OrderRequired(TypedDict):
    id: str
    version: int
    order_number: str
    customer: CustomerInfo
    items: list[OrderItem]
    status: str
    total: float
    payment_method: str
    expires_at: str
    created_at: str
    updated_at: str


class Order(_OrderRequired, total=False):
    """Order document representation."""

    customer_id: str | None
    payment_id: str | None
    payment_status: str | None
    payment_status_detail: str | None
    preference_id: str | None
    cancellation_reason: str | None
    confirmed_at: str | None
    cancelled_at: str | None
    delivered_at: str | None
