"""Order API routes."""

from fastapi import APIRouter, Query, status

from src.api.deps import AdminOnly, OrderServiceDep, PaymentServiceDep
from src.models.order import OrderStatus, PaymentMethod
from src.schemas.order import (
    ConfirmPaymentRequest,
    OrderCreate,
    OrderCreatedResponse,
    OrderListResponse,
    OrderResponse,
    to_order_response,
)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=OrderCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create order",
    description="Reserves stock and creates a pending-payment order. Mercado Pago orders also get a checkout URL.",
)
async def create_order(
    data: OrderCreate,
    orders: OrderServiceDep,
    payments: PaymentServiceDep,
) -> OrderCreatedResponse:
    """Create an order with stock reservation.

    Args:
        data: Customer, items and payment method.
        orders: Order service.
        payments: Payment service.

    Returns:
        OrderCreatedResponse: The order and, for Mercado Pago, the checkout URL.
    """
    order = await orders.create_order(
        customer=data.customer.model_dump(),
        items=[item.model_dump() for item in data.items],
        payment_method=data.payment_method.value,
        customer_id=data.customer_id,
    )

    payment_url = None
    if data.payment_method == PaymentMethod.MERCADOPAGO:
        checkout = await payments.start_checkout(order)
        order = checkout["order"]
        payment_url = checkout["payment_url"]

    return OrderCreatedResponse(order=to_order_response(order), payment_url=payment_url)


@router.get(
    "/number/{order_number}",
    response_model=OrderResponse,
    summary="Get order by number",
)
async def get_order_by_number(order_number: str, orders: OrderServiceDep) -> OrderResponse:
    """Look up an order by its human-facing number."""
    return to_order_response(await orders.get_order_by_number(order_number))


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel order",
    description="Cancels a pending-payment order and releases its stock.",
)
async def cancel_order(order_id: str, orders: OrderServiceDep) -> OrderResponse:
    """Cancel an order. Only pending-payment orders can be cancelled."""
    order = await orders.cancel_order(order_id, OrderStatus.MANUALLY_CANCELLED, strict=True)
    return to_order_response(order)


@router.get(
    "",
    response_model=OrderListResponse,
    dependencies=[AdminOnly],
    summary="List orders",
)
async def list_orders(
    orders: OrderServiceDep,
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    customer_email: str | None = Query(default=None),
) -> OrderListResponse:
    """List all orders, newest first."""
    result = await orders.get_all_orders(status=status_filter, customer_email=customer_email)
    return OrderListResponse(items=[to_order_response(o) for o in result], count=len(result))


@router.get(
    "/expiring-soon",
    response_model=OrderListResponse,
    dependencies=[AdminOnly],
    summary="Orders about to expire",
)
async def list_expiring_orders(
    orders: OrderServiceDep,
    hours: float = Query(default=24, gt=0, le=24 * 30),
) -> OrderListResponse:
    """List pending-payment orders whose reservation ends within ``hours``."""
    result = await orders.get_orders_expiring_soon(hours)
    return OrderListResponse(items=[to_order_response(o) for o in result], count=len(result))


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    dependencies=[AdminOnly],
    summary="Get order by ID",
)
async def get_order(order_id: str, orders: OrderServiceDep) -> OrderResponse:
    return to_order_response(await orders.get_order_by_id(order_id))


@router.post(
    "/{order_id}/deliver",
    response_model=OrderResponse,
    dependencies=[AdminOnly],
    summary="Mark order as delivered",
)
async def mark_as_delivered(order_id: str, orders: OrderServiceDep) -> OrderResponse:
    """Mark a payment-confirmed order as delivered."""
    return to_order_response(await orders.mark_as_delivered(order_id))


@router.post(
    "/{order_id}/confirm-payment",
    response_model=OrderResponse,
    dependencies=[AdminOnly],
    summary="Confirm payment manually",
    description="Confirms payment for bank transfer or cash orders.",
)
async def confirm_payment(
    order_id: str,
    data: ConfirmPaymentRequest,
    orders: OrderServiceDep,
) -> OrderResponse:
    order = await orders.confirm_payment(
        order_id,
        payment_id=data.payment_id,
        payment_status=data.payment_status,
        strict=True,
    )
    return to_order_response(order)
