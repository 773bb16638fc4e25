"""
app/services/order_service.py

Purpose: Order management

- Create orders from cart items with an address snapshot
- Order retrieval (single, per user, with delivery estimate)
- Status changes with status history
- Received confirmation
- Shipping address changes (refused once paid)
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pymongo import ReturnDocument

from app.db.mongo import (
    get_orders_collection,
    get_products_collection,
    get_addresses_collection,
)
from app.models.order import (
    OrderStatus,
    new_order_document,
    snapshot_address,
    status_track_entry,
    guard_shipping_address,
    calculate_prices,
)
from app.models.product import effective_price
from app.models.shipping import quote_shipping
from app.services.shipping_service import get_active_shipping_config, estimate_delivery_date
from app.schemas.response import ActionResult
from app.core.exceptions import ValidationError
from app.core.logging import get_logger, LogContext
from utils.serialization import serialize_document
from utils.validation_utils import to_object_id

logger = get_logger(__name__)


def order_filter(order_id) -> Dict[str, Any]:
    """
    Query matching an order by Mongo id or by its ORD- number.
    """
    oid = to_object_id(order_id)
    if oid is not None:
        return {"_id": oid}
    return {"order_id": str(order_id)}


async def create_order(
    user_id,
    shipping_address_id,
    items: List[Dict[str, Any]],
    shipping_price: Optional[float] = None,
) -> ActionResult:
    """
    Creates an unpaid order.

    Args:
        user_id: Buyer id
        shipping_address_id: One of the buyer's saved addresses
        items: [{"product_id", "quantity", "discounted_price"?}]
        shipping_price: Explicit shipping price; quoted from the shipping
            configuration when omitted

    Returns:
        ActionResult with the serialized order
    """
    user_oid = to_object_id(user_id)
    address_oid = to_object_id(shipping_address_id)

    with LogContext(user_id=str(user_id)):
        if user_oid is None:
            return ActionResult.fail("Invalid user ID")

        if not items:
            return ActionResult.fail("Order must contain at least one item", errors={"items": ["Cart is empty"]})

        address = None
        if address_oid is not None:
            address = await get_addresses_collection().find_one({"_id": address_oid, "user": user_oid})
        if not address:
            return ActionResult.fail("Invalid shipping address")

        products = get_products_collection()
        order_items = []
        for item in items:
            product_oid = to_object_id(item.get("product_id"))
            product = await products.find_one({"_id": product_oid}) if product_oid else None
            if not product:
                return ActionResult.fail(f"Product {item.get('product_id')} not found")

            quantity = int(item.get("quantity") or 0)
            if quantity < 1:
                return ActionResult.fail(
                    "Quantity must be at least 1",
                    errors={"quantity": ["Quantity must be at least 1"]},
                )

            price = item.get("discounted_price")
            order_items.append({
                "product": product["_id"],
                "name": product.get("name"),
                "quantity": quantity,
                "discounted_price": float(price) if price is not None else effective_price(product),
            })

        if shipping_price is None:
            config = await get_active_shipping_config()
            items_price = calculate_prices(order_items, 0)["items_price"]
            quote = quote_shipping(config, address.get("state"), address.get("city"), items_price)
            shipping_price = quote["price"]

        order = new_order_document(
            user_oid,
            order_items,
            snapshot_address(address),
            shipping_price=shipping_price,
        )

        result = await get_orders_collection().insert_one(order)
        order["_id"] = result.inserted_id

        logger.info(f"🛒 Order {order['order_id']} created, total={order['total_price']}")
        return ActionResult.ok("Order created successfully", data=serialize_document(order))


async def get_order(order_id) -> ActionResult:
    order = await get_orders_collection().find_one(order_filter(order_id))
    if not order:
        return ActionResult.fail("Order not found")
    return ActionResult.ok("Order retrieved successfully", data=serialize_document(order))


async def get_orders_by_user(user_id) -> ActionResult:
    """All orders of a user, newest first."""
    user_oid = to_object_id(user_id)
    if user_oid is None:
        return ActionResult.fail("Invalid user ID")

    cursor = get_orders_collection().find({"user": user_oid}).sort("created_at", -1)
    orders = await cursor.to_list(length=None)
    return ActionResult.ok("Orders retrieved successfully", data=serialize_document(orders))


async def mark_order_received(order_id) -> ActionResult:
    order = await get_orders_collection().find_one_and_update(
        order_filter(order_id),
        {
            "$set": {
                "is_order_received": True,
                "order_received_at": datetime.utcnow(),
                "updated_at": datetime.utcnow(),
            }
        },
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        return ActionResult.fail("Order not found")

    logger.info(f"📦 Order {order.get('order_id')} marked as received")
    return ActionResult.ok("Order marked as received", data=serialize_document(order))


async def update_order_status(order_id, new_status: str) -> ActionResult:
    """
    Changes an order's status and appends it to the status history.

    Args:
        order_id: Order id
        new_status: One of OrderStatus

    Returns:
        ActionResult; "Status unchanged" when the order already has it
    """
    try:
        status = OrderStatus(new_status)
    except ValueError:
        return ActionResult.fail("Invalid status value")

    orders = get_orders_collection()
    query = order_filter(order_id)

    with LogContext(order_id=str(order_id)):
        current = await orders.find_one(query)
        if not current:
            return ActionResult.fail("Order not found")

        if current.get("status") == status.value:
            return ActionResult.ok("Status unchanged", data=serialize_document({"_id": current["_id"], "status": status.value}))

        now = datetime.utcnow()
        fields = {"status": status.value, "updated_at": now}
        if status == OrderStatus.DELIVERED:
            fields["is_delivered"] = True
            fields["delivered_at"] = now

        updated = await orders.find_one_and_update(
            {"_id": current["_id"]},
            {"$set": fields, "$push": {"status_track": status_track_entry(status.value, now)}},
            return_document=ReturnDocument.AFTER,
        )

        logger.info(f"Order status changed {current.get('status')} -> {status.value}")

        return ActionResult.ok(
            "Order status updated successfully",
            data=serialize_document({
                "_id": updated["_id"],
                "status": updated.get("status"),
                "is_paid": updated.get("is_paid"),
                "is_delivered": updated.get("is_delivered"),
                "status_track": updated.get("status_track"),
            }),
        )


async def get_order_with_delivery(order_id) -> ActionResult:
    """
    Order plus its estimated delivery date.

    The estimate is computed once for paid processing orders and stored.
    """
    orders = get_orders_collection()
    order = await orders.find_one(order_filter(order_id))
    if not order:
        return ActionResult.fail("Order not found")

    delivery_date = order.get("estimated_delivery_date")

    if order.get("status") == OrderStatus.PROCESSING.value and not delivery_date:
        try:
            delivery_date = await estimate_delivery_date(order)
        except Exception as e:
            logger.error(f"Delivery calculation failed: {e}", exc_info=True)
            delivery_date = None

        if delivery_date:
            await orders.update_one(
                {"_id": order["_id"]},
                {"$set": {"estimated_delivery_date": delivery_date}},
            )
            order["estimated_delivery_date"] = delivery_date

    data = serialize_document(order)
    data["delivery_date"] = delivery_date
    return ActionResult.ok("Order retrieved successfully", data=data)


async def update_shipping_address(order_id, address: Dict[str, Any]) -> ActionResult:
    """Replaces the address snapshot of an unpaid order."""
    orders = get_orders_collection()
    order = await orders.find_one(order_filter(order_id))
    if not order:
        return ActionResult.fail("Order not found")

    update = {"shipping_address": snapshot_address(address)}
    try:
        guard_shipping_address(order, update)
    except ValidationError as e:
        logger.warning(f"Refused address change on paid order {order.get('order_id')}")
        return ActionResult.fail(e.message)

    update["updated_at"] = datetime.utcnow()
    await orders.update_one({"_id": order["_id"]}, {"$set": update})
    return ActionResult.ok("Shipping address updated", data=serialize_document(update))
