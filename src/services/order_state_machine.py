"""Order status transitions and their guards."""

from src.core.errors import InvalidTransitionError
from src.models.order import OrderStatus

INITIAL_STATUS = OrderStatus.PENDING_PAYMENT

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_PAYMENT: frozenset(
        {
            OrderStatus.PAYMENT_CONFIRMED,
            OrderStatus.MANUALLY_CANCELLED,
            OrderStatus.CANCELLED_BY_TIME,
        }
    ),
    OrderStatus.PAYMENT_CONFIRMED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.MANUALLY_CANCELLED: frozenset(),
    OrderStatus.CANCELLED_BY_TIME: frozenset(),
}

CANCELLED_STATUSES = frozenset({OrderStatus.MANUALLY_CANCELLED, OrderStatus.CANCELLED_BY_TIME})

# Transitions whose commit must also return the reserved stock.
RELEASES_STOCK = CANCELLED_STATUSES


def is_terminal(status: OrderStatus | str) -> bool:
    return not TRANSITIONS[OrderStatus(status)]


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in TRANSITIONS[OrderStatus(current)]


def ensure_transition(order_id: str, current: OrderStatus | str, target: OrderStatus | str) -> None:
    """Raise ``InvalidTransitionError`` unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(order_id, OrderStatus(current).value, OrderStatus(target).value)
