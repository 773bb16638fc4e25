"""
app/models/product.py

Purpose: Product pricing rules

- Price invariants (purchase and discounted price never exceed price)
- Normalization applied before a product is written
- Collection validator enforcing the price invariants on every write
"""

import math
from typing import Any, Dict, List, Optional

MIN_PRICE = 0.01
MAX_IMAGES = 5


def validate_product(doc: Dict[str, Any]) -> Dict[str, List[str]]:
    """
    Checks pricing, stock and image rules.

    Returns:
        Field-keyed error map (empty when the product is valid)
    """
    errors: Dict[str, List[str]] = {}

    def add(field: str, message: str):
        errors.setdefault(field, []).append(message)

    price = doc.get("price")
    purchase_price = doc.get("purchase_price")
    discounted_price = doc.get("discounted_price")

    if price is None or price < MIN_PRICE:
        add("price", f"Price must be at least {MIN_PRICE}")

    if purchase_price is None or purchase_price < MIN_PRICE:
        add("purchase_price", f"Purchase price must be at least {MIN_PRICE}")
    elif price is not None and purchase_price > price:
        add("purchase_price", "Purchase price cannot exceed price")

    if discounted_price is not None:
        if discounted_price < 0:
            add("discounted_price", "Discounted price cannot be negative")
        elif price is not None and discounted_price > price:
            add("discounted_price", "Discounted price cannot exceed price")

    stock = doc.get("stock", 0)
    if stock is None or stock < 0:
        add("stock", "Stock cannot be negative")

    images = doc.get("images") or []
    if len(images) > MAX_IMAGES:
        add("images", f"A product can have at most {MAX_IMAGES} images")

    return errors


def product_validator() -> Dict[str, Any]:
    """
    MongoDB validator for the products collection.

    Mirrors the pricing and stock rules of validate_product so writes
    that bypass the application are rejected too.
    """
    return {
        "$and": [
            {"price": {"$type": "number", "$gte": MIN_PRICE}},
            {"purchase_price": {"$type": "number", "$gte": MIN_PRICE}},
            {"$expr": {"$lte": ["$purchase_price", "$price"]}},
            {
                "$or": [
                    {"discounted_price": None},
                    {
                        "discounted_price": {"$type": "number", "$gte": 0},
                        "$expr": {"$lte": ["$discounted_price", "$price"]},
                    },
                ]
            },
            {"stock": {"$type": "number", "$gte": 0}},
        ]
    }


def normalize_product(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Rounds prices, floors stock and picks the default image."""
    for field in ("price", "purchase_price", "discounted_price"):
        if doc.get(field) is not None:
            doc[field] = round(float(doc[field]), 2)

    if doc.get("stock") is not None:
        doc["stock"] = int(math.floor(doc["stock"]))

    images = doc.get("images") or []
    primary = next((img for img in images if img.get("is_primary")), None)
    default = primary or (images[0] if images else None)
    doc["default_image"] = default.get("url") if default else None

    return doc


def effective_price(doc: Dict[str, Any]) -> float:
    """Discounted price when one is set, otherwise the listed price."""
    discounted = doc.get("discounted_price")
    if discounted is not None and discounted > 0:
        return float(discounted)
    return float(doc.get("price") or 0)


def discount_percentage(doc: Dict[str, Any]) -> Optional[int]:
    price = doc.get("price")
    discounted = doc.get("discounted_price")
    if not price or discounted is None or discounted >= price:
        return None
    return round((price - discounted) / price * 100)
