"""Order and payment Pydantic schemas for API request/response models."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from src.models.order import OrderStatus, PaymentMethod


class CustomerSchema(BaseModel):
    """Customer contact details."""

    model_config = ConfigDict(from_attributes=True)

    name: str = Field(min_length=1, description="Customer full name")
    email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+$", description="Customer email")
    phone: str = Field(min_length=1, description="Customer phone number")


class OrderItemCreate(BaseModel):
    """A requested line item."""

    product_id: str = Field(min_length=1, description="Product ID")
    size: str = Field(min_length=1, description="Variant size")
    color: str = Field(min_length=1, description="Variant color")
    quantity: int = Field(gt=0, description="Units requested")


class OrderCreate(BaseModel):
    """Schema for creating an order via POST /orders."""

    customer: CustomerSchema = Field(description="Customer contact details")
    items: list[OrderItemCreate] = Field(min_length=1, description="Requested line items")
    payment_method: PaymentMethod = Field(description="How the customer will pay")
    customer_id: str | None = Field(default=None, description="Registered customer ID, if any")


class OrderItemSchema(BaseModel):
    """A line item with the unit price captured at purchase time."""

    model_config = ConfigDict(from_attributes=True)

    product_id: str
    product_name: str
    size: str
    color: str
    quantity: int = Field(ge=1)
    price: float = Field(ge=0, description="Unit price at purchase time")


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Order unique identifier")
    order_number: str = Field(description="Human-facing order number")
    customer: CustomerSchema
    customer_id: str | None = None
    items: list[OrderItemSchema]
    status: OrderStatus
    total: float
    payment_method: PaymentMethod
    payment_id: str | None = None
    payment_status: str | None = None
    payment_status_detail: str | None = None
    preference_id: str | None = None
    cancellation_reason: str | None = None
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    delivered_at: datetime | None = None


class OrderCreatedResponse(BaseModel):
    """Response for a newly created order."""

    order: OrderResponse
    payment_url: str | None = Field(default=None, description="Hosted checkout URL for mercadopago orders")


class OrderListResponse(BaseModel):
    """Schema for order list API responses."""

    items: list[OrderResponse] = Field(description="List of orders")
    count: int = Field(description="Number of orders returned")


class ConfirmPaymentRequest(BaseModel):
    """Manual payment confirmation for offline payment methods."""

    payment_id: str | None = Field(default=None, description="Receipt or transfer reference")
    payment_status: str = Field(default="approved")


class PaymentInfoSchema(BaseModel):
    """Payment as reported by the provider."""

    id: str
    status: str
    status_detail: str | None = None
    external_reference: str | None = None
    amount: float | None = None
    date_created: datetime | None = None
    date_approved: datetime | None = None


class PaymentStatusResponse(BaseModel):
    """Order plus the freshest payment information available."""

    order: OrderResponse
    payment: PaymentInfoSchema | None = None
    source: Literal["live", "stored"] = Field(description="Whether payment info came from the provider")


class WebhookAck(BaseModel):
    """Acknowledgment returned to the payment provider."""

    status: str = "received"


def to_order_response(order: dict[str, Any]) -> OrderResponse:
    return OrderResponse.model_validate(order)
