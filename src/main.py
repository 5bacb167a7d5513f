"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from src.api.middleware.error_handler import engine_error_handler, error_handler_middleware
from src.api.routes import health, orders, payments
from src.core.config import get_settings
from src.core.errors import OrderEngineError
from src.core.mercadopago import MercadoPagoClient
from src.core.supabase import build_document_store
from src.services.expiration_sweeper import OrderExpirationSweeper
from src.services.order_service import OrderService
from src.services.payment_service import PaymentService
from src.services.stock_ledger import VariantStockLedger

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Builds the document store, the payment provider client and the services
    once, stores them on ``app.state`` and runs the expiration sweeper.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control back to the application.
    """
    # Startup
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.app_env)

    store = build_document_store(settings)
    provider = MercadoPagoClient.from_settings(settings)
    order_service = OrderService(store, VariantStockLedger(store), settings)
    payment_service = PaymentService(order_service, provider, settings)

    app.state.document_store = store
    app.state.order_service = order_service
    app.state.payment_service = payment_service
    app.state.expiration_sweeper = None

    if settings.order_expiration_job_enabled:
        sweeper = OrderExpirationSweeper(order_service, settings.order_expiration_job_interval_minutes)
        await sweeper.start()
        app.state.expiration_sweeper = sweeper

    yield
    # Shutdown
    if app.state.expiration_sweeper is not None:
        await app.state.expiration_sweeper.stop()
    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Order Engine API",
        description="Order lifecycle, stock reservation and payment reconciliation",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add error handler middleware (outermost - catches all errors)
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)
    app.add_exception_handler(OrderEngineError, engine_error_handler)

    # Mount health routes at root level (no prefix)
    app.include_router(health.router)

    api_v1_router = APIRouter(prefix="/api/v1")
    api_v1_router.include_router(orders.router)
    api_v1_router.include_router(payments.router)
    app.include_router(api_v1_router)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
