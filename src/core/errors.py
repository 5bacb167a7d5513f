"""Error taxonomy for the order lifecycle engine.

Every failure the services raise carries an ``ErrorKind`` and structured
fields (resource, offending fields, transition endpoints) so the HTTP layer
can map it to a status code without inspecting the message text.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Category of an engine error."""

    NOT_FOUND = "not_found"
    VALIDATION = "validation_error"
    EXTERNAL_PROVIDER = "external_provider_error"
    PERSISTENCE = "persistence_error"
    CONFLICT = "conflict"


class OrderEngineError(Exception):
    """Base exception for all order engine errors."""

    kind: ErrorKind = ErrorKind.PERSISTENCE

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        self.message = message
        self.details = details or []
        super().__init__(message)


class NotFoundError(OrderEngineError):
    """A referenced product, order or preference does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, resource_id: str, message: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            message or f"{resource.capitalize()} {resource_id} not found",
            details=[{"loc": [resource], "msg": f"{resource} {resource_id} not found", "type": "not_found"}],
        )


class ValidationError(OrderEngineError):
    """Malformed input, insufficient stock or a rejected state transition."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        fields: list[str] | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        self.fields = fields or []
        if details is None:
            details = [{"loc": [field], "msg": message, "type": "value_error"} for field in self.fields]
        super().__init__(message, details=details)


class InsufficientStockError(ValidationError):
    """Requested quantity exceeds what a variant has available."""

    def __init__(
        self,
        product_id: str,
        product_name: str,
        size: str,
        color: str,
        available: int,
        requested: int,
    ) -> None:
        self.product_id = product_id
        self.size = size
        self.color = color
        self.available = available
        self.requested = requested
        message = (
            f"Insufficient stock for {product_name} ({product_id}), size {size}, color {color}: "
            f"available {available}, requested {requested}"
        )
        super().__init__(
            message,
            fields=["items"],
            details=[
                {
                    "loc": ["items", product_id, size, color],
                    "msg": message,
                    "type": "insufficient_stock",
                }
            ],
        )


class InvalidTransitionError(ValidationError):
    """An order cannot move from its current status to the requested one."""

    def __init__(self, order_id: str, current: str, target: str) -> None:
        self.order_id = order_id
        self.current = current
        self.target = target
        super().__init__(
            f"Order {order_id} cannot move from {current} to {target}",
            details=[{"loc": ["status"], "msg": f"{current} -> {target} not allowed", "type": "invalid_transition"}],
        )


class ExternalProviderError(OrderEngineError):
    """The payment provider failed, timed out or answered with an error status."""

    kind = ErrorKind.EXTERNAL_PROVIDER

    def __init__(self, message: str, retryable: bool = True, status_code: int | None = None) -> None:
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


class PersistenceError(OrderEngineError):
    """An atomic commit failed; nothing in the batch was applied."""

    kind = ErrorKind.PERSISTENCE


class ConflictError(PersistenceError):
    """A compare-and-swap precondition failed because a document changed concurrently."""

    kind = ErrorKind.CONFLICT

    def __init__(self, collection: str, document_id: str) -> None:
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"Concurrent modification of {collection}/{document_id}")
