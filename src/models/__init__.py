"""Document model type definitions."""

from src.models.order import CustomerInfo, Order, OrderItem, OrderItemRequest, OrderStatus, PaymentMethod
from src.models.product import LegacyStockItem, Product, ProductVariant, VariantSize

__all__ = [
    "CustomerInfo",
    "LegacyStockItem",
    "Order",
    "OrderItem",
    "OrderItemRequest",
    "OrderStatus",
    "PaymentMethod",
    "Product",
    "ProductVariant",
    "VariantSize",
]
