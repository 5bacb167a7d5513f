"""Canonical product variant handling.

Products store stock as ``variants: [{color, sizes: [{size, quantity}]}]``.
Older documents carry a flat ``stock`` list instead; those are converted here
so the rest of the engine only ever sees the canonical shape.
"""

from typing import Any

from src.core.errors import ValidationError
from src.models.product import ProductVariant


def normalize_color(value: str) -> str:
    return value.strip().upper()


def normalize_size(value: str) -> str:
    return value.strip().upper()


def _parse_quantity(value: Any, message: str, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(message, fields=[field])
    if isinstance(value, int):
        quantity = value
    elif isinstance(value, float) and value.is_integer():
        quantity = int(value)
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        quantity = int(value.strip())
    else:
        raise ValidationError(message, fields=[field])
    if quantity < 0:
        raise ValidationError(message, fields=[field])
    return quantity


def _parse_color_list(colors: Any) -> list[str]:
    if not isinstance(colors, list):
        return []
    normalized: list[str] = []
    for color in colors:
        if isinstance(color, str) and color.strip():
            value = normalize_color(color)
            if value not in normalized:
                normalized.append(value)
    return normalized


def normalize_variants(variants: Any, allow_empty: bool = False) -> list[ProductVariant]:
    """Validate and normalize variants in the canonical shape.

    Args:
        variants: Raw variants value.
        allow_empty: Accept an empty list.

    Returns:
        list[ProductVariant]: Variants with upper-cased colors and sizes.

    Raises:
        ValidationError: If the shape, names or quantities are invalid.
    """
    if not isinstance(variants, list):
        raise ValidationError("Variants must be an array", fields=["variants"])
    if not variants:
        if allow_empty:
            return []
        raise ValidationError("Variants must be a non-empty array", fields=["variants"])

    seen_colors: set[str] = set()
    result: list[ProductVariant] = []
    for variant_index, variant in enumerate(variants):
        if not isinstance(variant, dict):
            raise ValidationError(f"Variant at index {variant_index} must be an object", fields=["variants"])

        raw_color = variant.get("color")
        if not isinstance(raw_color, str) or not raw_color.strip():
            raise ValidationError(f"Variant at index {variant_index} must include a valid color", fields=["variants"])
        color = normalize_color(raw_color)
        if color in seen_colors:
            raise ValidationError(f'Duplicate color "{color}" found in variants', fields=["variants"])
        seen_colors.add(color)

        raw_sizes = variant.get("sizes")
        if not isinstance(raw_sizes, list) or not raw_sizes:
            raise ValidationError(f'Variant "{color}" must include a non-empty sizes array', fields=["variants"])

        seen_sizes: set[str] = set()
        sizes = []
        for size_index, entry in enumerate(raw_sizes):
            if not isinstance(entry, dict):
                raise ValidationError(
                    f'Size at index {size_index} for color "{color}" must be an object', fields=["variants"]
                )
            raw_size = entry.get("size")
            if not isinstance(raw_size, str) or not raw_size.strip():
                raise ValidationError(
                    f'Size at index {size_index} for color "{color}" is invalid', fields=["variants"]
                )
            size = normalize_size(raw_size)
            if size in seen_sizes:
                raise ValidationError(f'Duplicate size "{size}" found for color "{color}"', fields=["variants"])
            seen_sizes.add(size)
            quantity = _parse_quantity(
                entry.get("quantity"),
                f'Quantity for color "{color}" and size "{size}" must be an integer >= 0',
                "variants",
            )
            sizes.append({"size": size, "quantity": quantity})

        result.append({"color": color, "sizes": sizes})
    return result


def legacy_stock_to_variants(
    stock: Any,
    colors: Any = None,
    base_color: str | None = None,
) -> list[ProductVariant]:
    """Convert a legacy flat ``stock`` list into canonical variants.

    A stock entry without a color falls back to the only allowed color, then
    to ``base_color``. Colors outside a non-empty ``colors`` list are rejected.
    """
    if not isinstance(stock, list) or not stock:
        raise ValidationError("Stock must be a non-empty array", fields=["stock"])

    allowed_colors = _parse_color_list(colors)
    fallback_color = normalize_color(base_color) if isinstance(base_color, str) and base_color.strip() else ""

    grouped: dict[str, dict[str, int]] = {}
    for index, item in enumerate(stock):
        if not isinstance(item, dict):
            raise ValidationError(f"Stock at index {index} must be an object", fields=["stock"])

        raw_size = item.get("size")
        if not isinstance(raw_size, str) or not raw_size.strip():
            raise ValidationError(f"Stock at index {index} has an invalid size", fields=["stock"])
        size = normalize_size(raw_size)
        quantity = _parse_quantity(item.get("quantity"), f"Stock at index {index} has an invalid quantity", "stock")

        raw_color = item.get("color")
        color = normalize_color(raw_color) if isinstance(raw_color, str) and raw_color.strip() else ""
        if not color:
            if len(allowed_colors) == 1:
                color = allowed_colors[0]
            elif fallback_color:
                color = fallback_color
            else:
                raise ValidationError(
                    f"Stock at index {index} is missing color and no unique fallback is available",
                    fields=["stock"],
                )

        if allowed_colors and color not in allowed_colors:
            raise ValidationError(
                f'Stock at index {index} uses color "{color}" not present in colors list', fields=["stock"]
            )

        sizes = grouped.setdefault(color, {})
        if size in sizes:
            raise ValidationError(
                f'Duplicate stock combination for color "{color}" and size "{size}"', fields=["stock"]
            )
        sizes[size] = quantity

    variants = [
        {"color": color, "sizes": [{"size": size, "quantity": qty} for size, qty in sizes.items()]}
        for color, sizes in grouped.items()
    ]
    return normalize_variants(variants)


def resolve_product_variants(product: dict[str, Any]) -> list[ProductVariant]:
    """Return canonical variants for a stored product of either shape."""
    if product.get("variants") is not None:
        return normalize_variants(product["variants"], allow_empty=True)
    if product.get("stock") is not None:
        return legacy_stock_to_variants(product["stock"], product.get("colors"), product.get("base_color"))
    return []


def find_variant_quantity(variants: list[ProductVariant], color: str, size: str) -> int | None:
    """Look up the stocked quantity of a (color, size) pair, or None if it does not exist."""
    color = normalize_color(color)
    size = normalize_size(size)
    for variant in variants:
        if variant["color"] != color:
            continue
        for entry in variant["sizes"]:
            if entry["size"] == size:
                return entry["quantity"]
    return None


def adjust_variant_quantity(
    variants: list[ProductVariant],
    color: str,
    size: str,
    delta: int,
    create_missing: bool = False,
) -> int:
    """Add ``delta`` to a variant in place and return the new quantity.

    Raises:
        KeyError: The variant does not exist and ``create_missing`` is False.
    """
    color = normalize_color(color)
    size = normalize_size(size)
    for variant in variants:
        if variant["color"] != color:
            continue
        for entry in variant["sizes"]:
            if entry["size"] == size:
                entry["quantity"] += delta
                return entry["quantity"]
        if create_missing:
            variant["sizes"].append({"size": size, "quantity": delta})
            return delta
        break
    if not create_missing:
        raise KeyError((color, size))
    variants.append({"color": color, "sizes": [{"size": size, "quantity": delta}]})
    return delta
