"""Per-variant stock ledger with optimistic concurrency.

Stock is read together with each product's ``version``; the decremented (or
incremented) variants are staged as one update per product carrying
``expected_version``. The batch commit fails as a whole if any product
changed in between, and the caller re-reads and retries.
"""

import copy
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_random

from src.core.document_store import PRODUCTS, AtomicBatch, DocumentStore
from src.core.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from src.models.product import Product, ProductVariant
from src.services.product_variants import (
    adjust_variant_quantity,
    find_variant_quantity,
    normalize_color,
    normalize_size,
    resolve_product_variants,
)

logger = logging.getLogger(__name__)

MAX_COMMIT_ATTEMPTS = 8
MAX_RETRY_WAIT_SECONDS = 0.05


@dataclass(frozen=True)
class StockLine:
    """A quantity of one product variant."""

    product_id: str
    size: str
    color: str
    quantity: int

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "StockLine":
        return cls(
            product_id=str(item["product_id"]),
            size=normalize_size(str(item["size"])),
            color=normalize_color(str(item["color"])),
            quantity=int(item["quantity"]),
        )


def _group_by_product(lines: Iterable[StockLine]) -> dict[str, dict[tuple[str, str], int]]:
    grouped: dict[str, dict[tuple[str, str], int]] = defaultdict(lambda: defaultdict(int))
    for line in lines:
        grouped[line.product_id][(line.color, line.size)] += line.quantity
    return grouped


# Retries the whole read/validate/commit unit when another writer won the race.
retry_on_conflict = retry(
    retry=retry_if_exception_type(ConflictError),
    stop=stop_after_attempt(MAX_COMMIT_ATTEMPTS),
    wait=wait_random(min=0, max=MAX_RETRY_WAIT_SECONDS),
    reraise=True,
)


class VariantStockLedger:
    """Atomic reserve/release of product variant quantities."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def load_products(self, product_ids: Iterable[str]) -> dict[str, Product]:
        """Read every referenced product once.

        Raises:
            NotFoundError: A product does not exist.
        """
        products: dict[str, Product] = {}
        for product_id in product_ids:
            if product_id in products:
                continue
            product = await self.store.get(PRODUCTS, product_id)
            if product is None:
                raise NotFoundError("product", product_id)
            products[product_id] = product  # type: ignore[assignment]
        return products

    async def stage_reservation(self, batch: AtomicBatch, items: Iterable[dict[str, Any]]) -> dict[str, Product]:
        """Validate availability and stage the decrements into ``batch``.

        Args:
            batch: Batch that will also carry the caller's own writes.
            items: Line items with product_id, size, color and quantity.

        Returns:
            dict[str, Product]: The products as read, keyed by id, for price capture.

        Raises:
            NotFoundError: A product does not exist.
            ValidationError: A product is inactive or a variant is missing.
            InsufficientStockError: Requested quantity exceeds availability.
        """
        lines = [StockLine.from_item(item) for item in items]
        for line in lines:
            if line.quantity <= 0:
                raise ValidationError("Quantity must be greater than 0", fields=["items"])

        grouped = _group_by_product(lines)
        products = await self.load_products(grouped.keys())

        for product_id, demand in grouped.items():
            product = products[product_id]
            if product.get("is_active") is False:
                raise ValidationError(
                    f"Product {product.get('name', product_id)} is no longer available", fields=["items"]
                )
            variants = copy.deepcopy(resolve_product_variants(product))
            for (color, size), requested in demand.items():
                available = find_variant_quantity(variants, color, size)
                if available is None:
                    raise ValidationError(
                        f"Variant size {size}, color {color} does not exist for product "
                        f"{product.get('name', product_id)} ({product_id})",
                        fields=["items"],
                    )
                if available < requested:
                    raise InsufficientStockError(
                        product_id=product_id,
                        product_name=product.get("name", product_id),
                        size=size,
                        color=color,
                        available=available,
                        requested=requested,
                    )
                adjust_variant_quantity(variants, color, size, -requested)
            batch.update(PRODUCTS, product_id, {"variants": variants}, expected_version=product["version"])

        return products

    async def stage_release(self, batch: AtomicBatch, items: Iterable[dict[str, Any]]) -> None:
        """Stage the increments that return ``items`` to their variants.

        A variant removed from the catalog since the reservation is re-created
        so the quantity is not lost. A product that no longer exists is skipped
        with a warning.
        """
        grouped = _group_by_product(StockLine.from_item(item) for item in items)
        for product_id, returned in grouped.items():
            product = await self.store.get(PRODUCTS, product_id)
            if product is None:
                logger.warning("Cannot release stock for missing product %s", product_id)
                continue
            variants: list[ProductVariant] = copy.deepcopy(resolve_product_variants(product))
            for (color, size), quantity in returned.items():
                adjust_variant_quantity(variants, color, size, quantity, create_missing=True)
            batch.update(PRODUCTS, product_id, {"variants": variants}, expected_version=product["version"])

    @retry_on_conflict
    async def reserve(self, items: list[dict[str, Any]]) -> None:
        """Decrement every item's variant in one atomic commit."""
        batch = self.store.batch()
        await self.stage_reservation(batch, items)
        await batch.commit()

    @retry_on_conflict
    async def release(self, items: list[dict[str, Any]]) -> None:
        """Return every item's quantity to its variant in one atomic commit."""
        batch = self.store.batch()
        await self.stage_release(batch, items)
        await batch.commit()
