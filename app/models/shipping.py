"""
app/models/shipping.py

Purpose: Shipping configuration and quotes

- Default, per-state and per-city prices
- Free shipping thresholds
- Delivery-day ranges ("2-3 days")
"""

import re
from typing import Any, Dict, Optional

DEFAULT_DELIVERY_DAYS = "2-3 days"
FALLBACK_DELIVERY_DAYS = 3


def default_shipping_config() -> Dict[str, Any]:
    return {
        "default_price": 1500,
        "default_delivery_days": DEFAULT_DELIVERY_DAYS,
        "free_shipping_threshold": 20000,
        "state_prices": [],
        "city_prices": [],
        "is_active": True,
    }


def parse_delivery_days(value: Optional[str]) -> int:
    """
    Upper bound of a delivery range.

    "2-3 days" -> 3, "5 days" -> 5; unparseable values fall back to 3.
    """
    if not value:
        return FALLBACK_DELIVERY_DAYS
    numbers = [int(n) for n in re.findall(r"\d+", str(value))]
    if not numbers:
        return FALLBACK_DELIVERY_DAYS
    return max(numbers)


def _match(entries, key: str, value: Optional[str]) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    wanted = value.strip().lower()
    for entry in entries or []:
        if (entry.get(key) or "").strip().lower() == wanted:
            return entry
    return None


def quote_shipping(
    config: Optional[Dict[str, Any]],
    state: Optional[str],
    city: Optional[str],
    order_total: float = 0,
) -> Dict[str, Any]:
    """
    Shipping price for a destination.

    City match wins over state match, which wins over the defaults.
    Shipping is free when order_total reaches the applicable threshold.

    Returns:
        {"price", "delivery_days", "is_free", "source"}
    """
    config = config or default_shipping_config()

    source = "default"
    price = float(config.get("default_price") or 0)
    delivery_days = config.get("default_delivery_days") or DEFAULT_DELIVERY_DAYS
    threshold = config.get("free_shipping_threshold")

    entry = _match(config.get("city_prices"), "city", city)
    if entry and (not entry.get("state") or not state or entry["state"].strip().lower() == state.strip().lower()):
        source = "city"
    else:
        entry = _match(config.get("state_prices"), "state", state)
        if entry:
            source = "state"

    if entry:
        price = float(entry.get("price") or 0)
        delivery_days = entry.get("delivery_days") or delivery_days
        if entry.get("free_shipping_threshold") is not None:
            threshold = entry["free_shipping_threshold"]

    is_free = threshold is not None and threshold > 0 and order_total >= threshold

    return {
        "price": 0.0 if is_free else round(price, 2),
        "delivery_days": delivery_days,
        "is_free": is_free,
        "source": source,
    }
