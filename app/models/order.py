"""
app/models/order.py

Purpose: Order document model

- Order status enum and status history entries
- Human-readable id generators (order, tracking, placeholder transaction)
- Price totals (items + shipping) kept consistent on every write
- Shipping address is frozen once the order is paid
"""

import secrets
from enum import Enum
from datetime import datetime
from typing import Any, Dict, List, Optional
from bson import ObjectId

from app.core.exceptions import ValidationError


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


PENDING_TRANSACTION_PREFIX = "pending-"

# Fields copied from an address document into the order snapshot
SHIPPING_ADDRESS_FIELDS = (
    "full_name",
    "phone",
    "address",
    "city",
    "state",
    "postal_code",
    "country",
)


def _digits(length: int) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def generate_order_id() -> str:
    return f"ORD-{_digits(8)}"


def generate_tracking_id() -> str:
    return f"TRK-{_digits(10)}"


def generate_pending_transaction_id() -> str:
    """Placeholder replaced by the gateway reference when the order is paid."""
    return f"{PENDING_TRANSACTION_PREFIX}{_digits(12)}"


def is_pending_transaction_id(transaction_id: Optional[str]) -> bool:
    return bool(transaction_id) and transaction_id.startswith(PENDING_TRANSACTION_PREFIX)


def status_track_entry(status: str, date: Optional[datetime] = None) -> Dict[str, Any]:
    return {"status": status, "date": date or datetime.utcnow()}


def snapshot_address(address: Dict[str, Any]) -> Dict[str, Any]:
    """Copies the shipping fields of an address document."""
    return {field: address.get(field) for field in SHIPPING_ADDRESS_FIELDS}


def calculate_prices(items: List[Dict[str, Any]], shipping_price: float) -> Dict[str, float]:
    """
    Computes order totals.

    items_price is the sum of discounted_price x quantity over all lines;
    total_price is always items_price + shipping_price.
    """
    items_price = round(
        sum(float(item.get("discounted_price") or 0) * int(item.get("quantity") or 0) for item in items),
        2,
    )
    shipping_price = round(float(shipping_price or 0), 2)
    return {
        "items_price": items_price,
        "shipping_price": shipping_price,
        "total_price": round(items_price + shipping_price, 2),
    }


def apply_price_totals(order: Dict[str, Any]) -> Dict[str, Any]:
    """Recomputes the price fields of an order document in place."""
    order.update(calculate_prices(order.get("order_items") or [], order.get("shipping_price") or 0))
    return order


def guard_shipping_address(existing: Dict[str, Any], update: Dict[str, Any]) -> None:
    """
    Refuses any change to the shipping address of a paid order.

    Args:
        existing: Current order document
        update: Fields about to be written

    Raises:
        ValidationError: If the order is paid and the address would change
    """
    if not existing.get("is_paid"):
        return

    touched = [
        key for key in update
        if key == "shipping_address" or key.startswith("shipping_address.")
    ]
    if not touched:
        return

    if "shipping_address" in update and update["shipping_address"] == existing.get("shipping_address"):
        return

    raise ValidationError(
        "Shipping address cannot be modified after payment",
        details={"order_id": existing.get("order_id")},
    )


def new_order_document(
    user_id: ObjectId,
    order_items: List[Dict[str, Any]],
    shipping_address: Dict[str, Any],
    shipping_price: float = 0,
    payment_method: str = "paystack",
    shipping_carrier: Optional[str] = None,
) -> Dict[str, Any]:
    """Builds a new unpaid order."""
    now = datetime.utcnow()

    order = {
        "user": user_id,
        "order_id": generate_order_id(),
        "tracking_id": generate_tracking_id(),
        "transaction_id": generate_pending_transaction_id(),
        "order_items": order_items,
        "shipping_address": shipping_address,
        "payment_method": payment_method,
        "shipping_price": shipping_price,
        "is_paid": False,
        "paid_at": None,
        "is_delivered": False,
        "delivered_at": None,
        "is_order_received": False,
        "order_received_at": None,
        "status": OrderStatus.PENDING.value,
        "estimated_delivery_date": None,
        "shipping_carrier": shipping_carrier,
        "status_track": [status_track_entry(OrderStatus.PENDING.value, now)],
        "payment_details": None,
        "is_referral": False,
        "referral_bonus": None,
        "created_at": now,
        "updated_at": now,
    }
    return apply_price_totals(order)
