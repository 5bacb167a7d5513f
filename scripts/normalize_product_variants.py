#!/usr/bin/env python
"""Script to rewrite legacy product stock into canonical variants.

This script:
1. Reads every product from the products collection
2. Converts products that still carry the flat legacy `stock` list into
   `variants: [{color, sizes: [{size, quantity}]}]`
3. Re-validates products that already have variants and upper-cases their names
4. Writes each change with the product's version, so a concurrent reservation
   is never overwritten

Usage:
    python scripts/normalize_product_variants.py

Requirements:
    - SUPABASE_URL and SUPABASE_SECRET_KEY environment variables must be set
    - The document store migration must have been applied

Note:
    - Safe to run more than once; already canonical products are skipped
    - A product whose legacy stock cannot be converted is logged and left as is
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import get_settings
from src.core.document_store import PRODUCTS, DocumentStore
from src.core.errors import ConflictError, OrderEngineError
from src.core.supabase import build_document_store
from src.services.product_variants import legacy_stock_to_variants, normalize_variants

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def canonical_variants(product: dict[str, Any]) -> list[dict[str, Any]] | None:
    """Return the canonical variants for a product, or None if it needs no rewrite.

    Args:
        product: Stored product document.

    Returns:
        list | None: Variants to write, or None when the stored variants are already canonical.

    Raises:
        ValidationError: If the stored stock or variants are malformed.
    """
    if product.get("variants") is not None:
        variants = normalize_variants(product["variants"], allow_empty=True)
        return None if variants == product["variants"] and not product.get("stock") else variants
    if product.get("stock") is not None:
        return legacy_stock_to_variants(product["stock"], product.get("colors"), product.get("base_color"))
    return None


async def normalize_all_products(store: DocumentStore) -> dict[str, int]:
    """Rewrite every non-canonical product in the store.

    Args:
        store: Document store holding the products collection.

    Returns:
        dict: Counts of processed, updated, skipped and failed products.
    """
    products = await store.query(PRODUCTS)
    logger.info(f"Found {len(products)} products")

    processed = updated = skipped = failed = 0
    for product in products:
        processed += 1
        product_id = product["id"]
        try:
            variants = canonical_variants(product)
            if variants is None:
                skipped += 1
                continue

            batch = store.batch()
            batch.update(PRODUCTS, product_id, {"variants": variants, "stock": None}, expected_version=product["version"])
            await batch.commit()
            updated += 1
            logger.info(f"Normalized product {product.get('name', product_id)} ({product_id})")

        except ConflictError:
            failed += 1
            logger.warning(f"Product {product_id} changed during normalization; run the script again")
        except OrderEngineError as e:
            failed += 1
            logger.error(f"Failed to normalize product {product_id}: {e.message}")

    return {"processed": processed, "updated": updated, "skipped": skipped, "failed": failed}


async def main() -> None:
    """Main entry point for the normalization script."""
    logger.info("Starting product variant normalization...")

    try:
        store = build_document_store(get_settings())
        results = await normalize_all_products(store)

        logger.info("=" * 60)
        logger.info("Product variant normalization complete!")
        logger.info(f"Total products processed: {results['processed']}")
        logger.info(f"Products rewritten: {results['updated']}")
        logger.info(f"Skipped (already canonical): {results['skipped']}")
        logger.info(f"Failed: {results['failed']}")
        logger.info("=" * 60)

        if results["failed"] > 0:
            logger.warning("Some products could not be normalized. Check logs for details.")
            sys.exit(1)

    except Exception as e:
        logger.error(f"Normalization failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
