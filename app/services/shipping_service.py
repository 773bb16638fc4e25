"""
app/services/shipping_service.py

Purpose: Shipping quotes and delivery estimates

- Loads the active shipping configuration (created with defaults if missing)
- Quotes shipping for a destination
- Estimates delivery dates for paid orders
"""

from datetime import datetime
from typing import Any, Dict, Optional
from pymongo import ReturnDocument

from app.db.mongo import get_shipping_collection
from app.models.order import OrderStatus
from app.models.shipping import default_shipping_config, parse_delivery_days, quote_shipping
from app.schemas.response import ActionResult
from app.core.logging import get_logger
from utils.time_utils import add_days

logger = get_logger(__name__)

# No delivery estimate once an order has left processing
NO_ESTIMATE_STATUSES = (
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.REFUNDED.value,
)


async def get_active_shipping_config() -> Dict[str, Any]:
    """Returns the active shipping config, creating the default one when absent."""
    collection = get_shipping_collection()

    config = await collection.find_one({"is_active": True})
    if config:
        return config

    logger.info("No active shipping configuration, creating default")
    return await collection.find_one_and_update(
        {"is_active": True},
        {"$setOnInsert": default_shipping_config()},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


async def calculate_shipping(
    state: Optional[str],
    city: Optional[str] = None,
    order_total: float = 0,
) -> ActionResult:
    try:
        config = await get_active_shipping_config()
        quote = quote_shipping(config, state, city, order_total)
        return ActionResult.ok("Shipping cost calculated successfully", data=quote)
    except Exception as e:
        logger.error(f"Failed to calculate shipping: {e}", exc_info=True)
        return ActionResult.fail("Failed to calculate shipping", detail=str(e))


async def estimate_delivery_date(
    order: Dict[str, Any],
    config: Optional[Dict[str, Any]] = None,
) -> Optional[datetime]:
    """
    paid_at plus the delivery days for the order's destination.

    Returns:
        Estimated date, or None for unpaid orders and orders that have
        already shipped or ended
    """
    if order.get("status") in NO_ESTIMATE_STATUSES:
        return None

    if not order.get("is_paid") or not order.get("paid_at"):
        return None

    address = order.get("shipping_address") or {}
    if config is None:
        config = await get_active_shipping_config()

    quote = quote_shipping(config, address.get("state"), address.get("city"))
    return add_days(order["paid_at"], parse_delivery_days(quote["delivery_days"]))
