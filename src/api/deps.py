"""FastAPI dependency injection functions.

Services are built once in the application lifespan and kept on
``app.state``; these dependencies hand them to route handlers.
"""

import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from src.core.config import get_settings
from src.services.order_service import OrderService
from src.services.payment_service import PaymentService


def get_order_service(request: Request) -> OrderService:
    """Get the order service built at startup."""
    return request.app.state.order_service


def get_payment_service(request: Request) -> PaymentService:
    """Get the payment service built at startup."""
    return request.app.state.payment_service


async def require_admin(
    x_admin_key: Annotated[str, Header(description="Admin API key")] = "",
) -> None:
    """Reject requests that do not carry the configured admin key.

    Raises:
        HTTPException: 401 if the key is missing or wrong, or admin access is not configured.
    """
    expected = get_settings().admin_api_key
    if not expected or not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin credentials required",
        )


OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
AdminOnly = Depends(require_admin)
