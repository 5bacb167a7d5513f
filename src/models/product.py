"""Product model type definitions for document store operations."""

from typing import TypedDict


class VariantSize(TypedDict):
    """Stock of one size within a color."""

    size: str
    quantity: int


class ProductVariant(TypedDict):
    """All sizes stocked for one color."""

    color: str
    sizes: list[VariantSize]


class LegacyStockItem(TypedDict, total=False):
    """Flat stock entry used by products written before variants existed."""

    size: str
    color: str
    quantity: int


class _ProductRequired(TypedDict):
    id: str
    version: int
    name: str
    price: float


class Product(_ProductRequired, total=False):
    """Product document representation.

    ``variants`` is the canonical stock shape. ``stock``/``colors``/``base_color``
    only appear on legacy documents and are converted at read time.
    """

    discount_price: float | None
    is_active: bool
    variants: list[ProductVariant]
    stock: list[LegacyStockItem]
    colors: list[str]
    base_color: str | None
