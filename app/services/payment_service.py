"""
app/services/payment_service.py

Purpose: Order payment verification

- Verifies a Paystack charge against the order it claims to pay
- Decrements product stock
- Marks the order paid and records the status change
- Credits the buyer's referrer on their first purchase
- All writes happen in one transaction; any failure aborts them
"""

from datetime import datetime
from typing import Any, Dict, Optional

from app.db.mongo import (
    get_orders_collection,
    get_products_collection,
    get_users_collection,
    start_transaction_session,
    abort_transaction,
)
from app.models.order import OrderStatus, is_pending_transaction_id, status_track_entry
from app.models.referral import compute_referral_bonus, new_completed_referral
from app.services.order_service import order_filter
from app.services.paystack_service import get_paystack_service
from app.services.settings_service import get_or_create_settings
from app.schemas.response import ActionResult
from app.core.config import settings
from app.core.exceptions import PaymentGatewayError
from app.core.logging import get_logger, LogContext
from utils.money_utils import amounts_match, from_kobo
from utils.serialization import serialize_document
from utils.time_utils import parse_date

logger = get_logger(__name__)


def extract_order_id(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Order id attached to a Paystack transaction.

    Looks at metadata.order_id first, then the custom_fields entry whose
    variable_name is "order_id".
    """
    if not isinstance(metadata, dict):
        return None

    if metadata.get("order_id"):
        return str(metadata["order_id"])

    custom_fields = metadata.get("custom_fields")
    if isinstance(custom_fields, list):
        for field in custom_fields:
            if isinstance(field, dict) and field.get("variable_name") == "order_id" and field.get("value"):
                return str(field["value"])
    elif isinstance(custom_fields, dict) and custom_fields.get("order_id"):
        return str(custom_fields["order_id"])

    return None


async def verify_order_payment(order_id, reference: str) -> ActionResult:
    """
    Verifies a Paystack payment and settles the order.

    Args:
        order_id: Order id (Mongo id or ORD- number)
        reference: Paystack transaction reference

    Returns:
        ActionResult. Already-paid orders return success with
        "Order already paid" and nothing is written.
    """
    with LogContext(order_id=str(order_id), reference=reference):
        try:
            async with start_transaction_session() as session:
                result = await _verify_in_session(order_id, reference, session)
                if not result.success or result.data is None:
                    await abort_transaction(session)
                return result

        except Exception as e:
            logger.error(f"Payment verification error: {e}", exc_info=True)
            return ActionResult.fail("Failed to verify payment", detail=str(e))


async def _verify_in_session(order_id, reference: str, session) -> ActionResult:
    orders = get_orders_collection()
    products = get_products_collection()

    order = await orders.find_one(order_filter(order_id), session=session)
    if not order:
        return ActionResult.fail("Order not found")

    if order.get("is_paid"):
        logger.info("Order already paid, skipping verification")
        return ActionResult.ok("Order already paid")

    # Gateway verification
    try:
        transaction = await get_paystack_service().verify_transaction(reference)
    except PaymentGatewayError as e:
        return ActionResult.fail(e.message or "Payment verification failed")

    if transaction.get("status") != "success":
        logger.warning(f"Transaction status: {transaction.get('status')}")
        return ActionResult.fail(
            f"Transaction status: {transaction.get('status')}",
            detail=transaction.get("gateway_response") or "No additional info",
        )

    paystack_order_id = extract_order_id(transaction.get("metadata"))
    if paystack_order_id and paystack_order_id not in (str(order["_id"]), order.get("order_id")):
        logger.error(f"OrderId mismatch. Expected: {order['_id']}, Paystack: {paystack_order_id}")
        return ActionResult.fail("OrderId mismatch. Payment verification failed.")

    paid_amount = from_kobo(transaction.get("amount"))
    expected = order.get("total_price") or 0
    if not amounts_match(paid_amount, expected, settings.PAYMENT_AMOUNT_TOLERANCE):
        logger.error(f"Payment amount mismatch. Expected {expected}, received {paid_amount}")
        return ActionResult.fail(
            "Payment amount mismatch",
            detail=f"Expected {expected}, received {paid_amount}",
        )

    transaction_id = order.get("transaction_id")
    if not is_pending_transaction_id(transaction_id) and transaction_id != reference:
        logger.error(f"Transaction ID mismatch. Order: {transaction_id}, Paystack: {reference}")
        return ActionResult.fail("Transaction ID mismatch. Possible duplicate payment attempt")

    if await orders.find_one({"transaction_id": reference, "_id": {"$ne": order["_id"]}}, session=session):
        logger.error(f"Reference {reference} already settled another order")
        return ActionResult.fail("Transaction already used for another order")

    # Stock is checked for every line before anything is written
    for item in order.get("order_items") or []:
        product = await products.find_one({"_id": item.get("product")}, session=session)
        if not product:
            return ActionResult.fail(f"Product {item.get('name') or item.get('product')} not found")
        if (product.get("stock") or 0) < item.get("quantity", 0):
            logger.warning(
                f"Insufficient stock for {product.get('name')}. "
                f"Requested: {item.get('quantity')}, Available: {product.get('stock')}"
            )
            return ActionResult.fail(
                f"Insufficient stock for {product.get('name')}. Only {product.get('stock')} available"
            )

    for item in order.get("order_items") or []:
        result = await products.update_one(
            {"_id": item["product"], "stock": {"$gte": item["quantity"]}},
            {"$inc": {"stock": -item["quantity"]}},
            session=session,
        )
        if result.modified_count == 0:
            return ActionResult.fail(f"Insufficient stock for {item.get('name') or item['product']}")

    now = datetime.utcnow()
    order_update = {
        "transaction_id": reference,
        "is_paid": True,
        "paid_at": parse_date(transaction.get("paid_at") or transaction.get("paidAt")) or now,
        "status": OrderStatus.PROCESSING.value,
        "payment_details": {
            "reference": reference,
            "channel": transaction.get("channel"),
            "gateway_response": transaction.get("gateway_response"),
            "amount": paid_amount,
            "currency": transaction.get("currency"),
        },
        "updated_at": now,
    }

    referral_bonus = await _credit_referrer(order, session)
    if referral_bonus:
        order_update["is_referral"] = True
        order_update["referral_bonus"] = referral_bonus

    result = await orders.update_one(
        {"_id": order["_id"], "is_paid": False},
        {
            "$set": order_update,
            "$push": {"status_track": status_track_entry(OrderStatus.PROCESSING.value, now)},
        },
        session=session,
    )
    if result.modified_count == 0:
        return ActionResult.fail("Order was updated by another request")

    paid_order = await orders.find_one({"_id": order["_id"]}, session=session)
    logger.info(f"✅ Payment verified for order {order.get('order_id')}")

    return ActionResult.ok("Payment verified successfully", data=serialize_document(paid_order))


async def _credit_referrer(order: Dict[str, Any], session) -> Optional[Dict[str, Any]]:
    """
    Records the buyer's purchase and pays the referral credit.

    The credit is only added for a referred buyer's first purchase, and at
    most once per referee.

    Returns:
        The order's referral_bonus sub-document, or None when no credit
        was added
    """
    users = get_users_collection()
    buyer = await users.find_one({"_id": order.get("user")}, session=session)
    if not buyer:
        logger.warning(f"Buyer {order.get('user')} not found, skipping referral credit")
        return None

    now = datetime.utcnow()
    first_purchase = not buyer.get("has_made_purchase")

    if first_purchase:
        buyer_fields = {"has_made_purchase": True, "first_purchase_date": now, "updated_at": now}
    else:
        buyer_fields = {"last_purchase_date": now, "updated_at": now}
    await users.update_one({"_id": buyer["_id"]}, {"$set": buyer_fields}, session=session)

    referrer_id = (buyer.get("referral_program") or {}).get("referred_by")
    if not referrer_id or not first_purchase:
        return None

    settings_doc = await get_or_create_settings(session=session)
    percentage = settings_doc.get("referral_percentage") or 0
    amount = compute_referral_bonus(order.get("items_price") or 0, percentage)
    if amount <= 0:
        return None

    result = await users.update_one(
        {
            "_id": referrer_id,
            "referral_program.completed_referrals.referee": {"$ne": buyer["_id"]},
        },
        {
            "$push": {
                "referral_program.completed_referrals": new_completed_referral(buyer["_id"], order["_id"], amount)
            },
            "$inc": {
                "referral_program.referral_earnings": amount,
                "referral_program.total_earned": amount,
            },
            "$set": {
                "referral_program.pending_referrals.$[pending].has_purchased": True,
                "referral_program.pending_referrals.$[pending].order": order["_id"],
                "updated_at": now,
            },
        },
        array_filters=[{"pending.referee": buyer["_id"]}],
        session=session,
    )

    if result.modified_count == 0:
        logger.warning(f"Referrer {referrer_id} missing or already credited for this referee")
        return None

    logger.info(f"🎁 Referral credit of {amount} added for referrer {referrer_id}")
    return {"referrer": referrer_id, "amount": amount, "percentage": percentage}
