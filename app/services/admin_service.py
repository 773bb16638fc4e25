"""
app/services/admin_service.py

Purpose: Admin dashboard queries and maintenance

- Payout request listing across all users (unwind + filters + paginate)
- Order listing with customer search
- Users with referral summaries
- Per-user referral details with referees joined in
- Dashboard: user count, recent referrals, payout settings
- Order statistics (sales, best sellers, status breakdown)
- Revenue report (profit, referral cost, Paystack charges)
- Item and product profit analysis
- Repair of users' settings references

Pipeline builders are pure functions; the async executors run them.
"""

import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from bson import ObjectId

from app.db.mongo import (
    get_users_collection,
    get_orders_collection,
    get_products_collection,
)
from app.models.order import OrderStatus
from app.models.referral import ReferralStatus, ReferralPaymentStatus, referral_stats
from app.models.user import UserRole
from app.services.settings_service import get_or_create_settings
from app.schemas.response import ActionResult
from app.core.logging import get_logger
from utils.money_utils import calculate_paystack_charges, format_naira
from utils.serialization import serialize_document
from utils.time_utils import day_range, parse_date, end_of_day
from utils.validation_utils import sanitize_input, search_regex, to_object_id

logger = get_logger(__name__)

ORDER_SORTS = {
    "-created_at": ("created_at", -1),
    "created_at": ("created_at", 1),
    "-total_price": ("total_price", -1),
    "total_price": ("total_price", 1),
}


def _paginate(page, limit, default_limit: int = 10):
    try:
        page = max(1, int(page or 1))
        limit = max(1, min(100, int(limit or default_limit)))
    except (TypeError, ValueError):
        page, limit = 1, default_limit
    return page, limit, (page - 1) * limit


def _pages(total: int, limit: int) -> int:
    return (total + limit - 1) // limit


# ==============================================
# Payout requests
# ==============================================

def build_payout_requests_pipeline(
    status: str = "",
    payment_status: str = "",
    search: str = "",
    start_date=None,
    end_date=None,
    skip: int = 0,
    limit: int = 10,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Aggregation listing every user's payouts, newest first.

    Returns:
        {"pipeline": [...], "count_pipeline": [...]}
    """
    stages: List[Dict[str, Any]] = [
        {"$match": {"referral_program.payout_history": {"$exists": True, "$ne": []}}},
    ]

    regex = search_regex(search)
    if regex:
        stages.append({
            "$match": {
                "$or": [
                    {"name": regex},
                    {"email": regex},
                    {"referral_program.bank_details.account_name": regex},
                    {"referral_program.bank_details.account_number": regex},
                ]
            }
        })

    stages.append({"$unwind": "$referral_program.payout_history"})

    if status:
        stages.append({"$match": {"referral_program.payout_history.status": status}})
    if payment_status:
        stages.append({"$match": {"referral_program.payout_history.payment_status": payment_status}})

    start = day_range(start_date) if start_date else None
    end = day_range(end_date) if end_date else None
    if start and end:
        stages.append({
            "$match": {
                "referral_program.payout_history.requested_at": {"$gte": start[0], "$lte": end[1]}
            }
        })

    pipeline = stages + [
        {"$sort": {"referral_program.payout_history.requested_at": -1}},
        {"$skip": skip},
        {"$limit": limit},
        {
            "$project": {
                "_id": 1,
                "name": 1,
                "email": 1,
                "bank_details": "$referral_program.bank_details",
                "payout": "$referral_program.payout_history",
                "paystack_recipient_code": "$referral_program.paystack_recipient_code",
            }
        },
    ]
    count_pipeline = stages + [{"$count": "total"}]

    return {"pipeline": pipeline, "count_pipeline": count_pipeline}


async def get_payout_requests(
    page: int = 1,
    limit: int = 10,
    status: str = "",
    payment_status: str = "",
    search: str = "",
    start_date=None,
    end_date=None,
) -> ActionResult:
    page, limit, skip = _paginate(page, limit)

    try:
        pipelines = build_payout_requests_pipeline(
            status, payment_status, search, start_date, end_date, skip, limit
        )
        users = get_users_collection()

        total = 0
        async for doc in users.aggregate(pipelines["count_pipeline"]):
            total = doc.get("total", 0)

        payouts = []
        async for doc in users.aggregate(pipelines["pipeline"]):
            payouts.append(serialize_document(doc))

        return ActionResult.ok(data={
            "payouts": payouts,
            "total": total,
            "total_pages": _pages(total, limit),
            "current_page": page,
            "limit": limit,
        })

    except Exception as e:
        logger.error(f"Error fetching payout requests: {e}", exc_info=True)
        return ActionResult.fail("Failed to fetch payout requests", detail=str(e))


# ==============================================
# Orders
# ==============================================

def build_order_query(
    search: str = "",
    status: str = "",
    date=None,
    user_ids: Optional[List[ObjectId]] = None,
) -> Dict[str, Any]:
    """
    Order filter for the admin order list.

    Args:
        search: ORD-/TRK- number, digits, or customer name/email
        status: Order status ("all" or empty for any)
        date: Day the order was created
        user_ids: Customers whose name or email matched search
    """
    query: Dict[str, Any] = {}

    term = sanitize_input(search)
    if term:
        conditions: List[Dict[str, Any]] = []

        match = re.match(r"^(ORD-|TRK-)?(\d+)", term, re.IGNORECASE)
        numeric = match.group(2) if match else term
        prefix = (match.group(1) or "").upper() if match else ""

        if prefix == "ORD-":
            conditions.append({"order_id": term.upper()})
        elif prefix == "TRK-":
            conditions.append({"tracking_id": term.upper()})

        pattern = {"$regex": re.escape(numeric), "$options": "i"}
        conditions.extend([
            {"order_id": pattern},
            {"tracking_id": pattern},
            {"transaction_id": pattern},
        ])

        if user_ids:
            conditions.append({"user": {"$in": list(user_ids)}})

        query["$or"] = conditions

    if status and status != "all":
        query["status"] = status

    if date:
        bounds = day_range(date)
        if bounds:
            query["created_at"] = {"$gte": bounds[0], "$lte": bounds[1]}

    return query


async def _matching_user_ids(search: str) -> List[ObjectId]:
    regex = search_regex(search)
    if not regex:
        return []
    cursor = get_users_collection().find({"$or": [{"name": regex}, {"email": regex}]}, {"_id": 1})
    return [doc["_id"] async for doc in cursor]


async def get_all_orders(
    page: int = 1,
    limit: int = 10,
    search: str = "",
    status: str = "",
    date=None,
    sort: str = "-created_at",
) -> ActionResult:
    page, limit, skip = _paginate(page, limit)
    sort_field, direction = ORDER_SORTS.get(sort, ORDER_SORTS["-created_at"])

    try:
        user_ids = await _matching_user_ids(search) if search else []
        query = build_order_query(search, status, date, user_ids)

        orders_collection = get_orders_collection()
        total = await orders_collection.count_documents(query)
        cursor = orders_collection.find(query).sort(sort_field, direction).skip(skip).limit(limit)
        orders = [doc async for doc in cursor]

        customer_ids = list({o["user"] for o in orders if o.get("user")})
        customers = {}
        if customer_ids:
            async for user in get_users_collection().find({"_id": {"$in": customer_ids}}, {"name": 1, "email": 1}):
                customers[user["_id"]] = user

        items = []
        for order in orders:
            customer = customers.get(order.get("user")) or {}
            order_items = order.get("order_items") or []
            created_at = order.get("created_at")
            items.append({
                "id": str(order["_id"]),
                "order_id": order.get("order_id"),
                "tracking_id": order.get("tracking_id"),
                "transaction_id": order.get("transaction_id"),
                "customer": {
                    "name": customer.get("name") or "Unknown",
                    "email": customer.get("email") or "",
                },
                "date": created_at,
                "formatted_date": created_at.strftime("%Y-%m-%d") if created_at else None,
                "status": order.get("status") or "pending",
                "total_price": float(order.get("total_price") or 0),
                "formatted_total": format_naira(order.get("total_price")),
                "items": sum(item.get("quantity") or 0 for item in order_items),
                "products": ", ".join(item.get("name") or "Unknown Product" for item in order_items),
                "is_paid": order.get("is_paid"),
                "payment": order.get("payment_method") or "Unknown",
                "shipping_address": order.get("shipping_address"),
            })

        return ActionResult.ok(
            "Orders retrieved successfully",
            data={"orders": items, "total": total, "page": page, "pages": _pages(total, limit)},
        )

    except Exception as e:
        logger.error(f"Get all orders error: {e}", exc_info=True)
        return ActionResult.fail("Failed to retrieve orders", detail=str(e))


# ==============================================
# Users with referrals
# ==============================================

def summarize_referral_program(program: Optional[Dict[str, Any]], settings_doc: Dict[str, Any]) -> Dict[str, Any]:
    """Referral counts shown in the admin user list."""
    program = program or {}
    completed = program.get("completed_referrals") or []

    paid = [
        r for r in completed
        if r.get("status") == ReferralStatus.COMPLETED.value
        and r.get("payment_status") == ReferralPaymentStatus.SUCCESS.value
    ]
    unpaid = [
        r for r in completed
        if r.get("status") == ReferralStatus.COMPLETED.value
        and r.get("payment_status") != ReferralPaymentStatus.SUCCESS.value
    ]

    return serialize_document({
        "referral_code": program.get("referral_code") or "",
        "referral_earnings": program.get("referral_earnings") or 0,
        "min_payout_amount": settings_doc.get("min_payout_amount"),
        "referral_percentage": settings_doc.get("referral_percentage"),
        "pending_count": len(program.get("pending_referrals") or []),
        "completed_count": len(paid),
        "unpaid_count": len(unpaid),
        "pending_referrals": program.get("pending_referrals") or [],
        "completed_referrals": paid,
        "unpaid_referrals": unpaid,
    })


async def get_users_with_referrals(page: int = 1, limit: int = 10, search: str = "") -> ActionResult:
    page, limit, skip = _paginate(page, limit)

    try:
        settings_doc = await get_or_create_settings()

        query: Dict[str, Any] = {}
        regex = search_regex(search)
        if regex:
            query["$or"] = [
                {"name": regex},
                {"email": regex},
                {"referral_program.referral_code": regex},
            ]

        users = get_users_collection()
        total = await users.count_documents(query)
        cursor = users.find(query, {"name": 1, "email": 1, "referral_program": 1}).skip(skip).limit(limit)

        results = []
        async for user in cursor:
            results.append({
                "id": str(user["_id"]),
                "name": user.get("name"),
                "email": user.get("email"),
                "referral_program": summarize_referral_program(user.get("referral_program"), settings_doc),
            })

        return ActionResult.ok(data={
            "users": results,
            "total": total,
            "page": page,
            "total_pages": _pages(total, limit),
        })

    except Exception as e:
        logger.error(f"Users error: {e}", exc_info=True)
        return ActionResult.fail("Failed to fetch users", detail=str(e))


async def get_user_referral_details(user_id) -> ActionResult:
    """
    One user's referral ledger for the admin user page.

    Referees are joined in with their name and email. Unpaid credits are
    listed apart from credits already paid out.
    """
    user_oid = to_object_id(user_id)
    if user_oid is None:
        return ActionResult.fail("Invalid user ID")

    try:
        users = get_users_collection()
        user = await users.find_one({"_id": user_oid})
        if not user:
            return ActionResult.fail("User not found")

        settings_doc = await get_or_create_settings()
        program = user.get("referral_program") or {}
        pending = program.get("pending_referrals") or []
        completed = program.get("completed_referrals") or []

        referee_ids = list({r.get("referee") for r in pending + completed if r.get("referee")})
        referees = {}
        if referee_ids:
            async for referee in users.find({"_id": {"$in": referee_ids}}, {"name": 1, "email": 1}):
                referees[referee["_id"]] = referee

        def with_referee(records):
            return [
                dict(r, referee=referees.get(r.get("referee"), {"_id": r.get("referee"), "name": None, "email": None}))
                for r in records
            ]

        details = summarize_referral_program(
            dict(program, pending_referrals=with_referee(pending), completed_referrals=with_referee(completed)),
            settings_doc,
        )
        details.update(referral_stats(program))
        details.update(serialize_document({
            "referred_by": program.get("referred_by"),
            "bank_details": program.get("bank_details"),
            "payout_history": list(reversed(program.get("payout_history") or [])),
        }))

        return ActionResult.ok(data={
            "id": str(user["_id"]),
            "name": user.get("name"),
            "email": user.get("email"),
            "phone": user.get("phone"),
            "role": user.get("role"),
            "status": user.get("status"),
            "has_made_purchase": bool(user.get("has_made_purchase")),
            "created_at": user.get("created_at"),
            "referral_program": details,
        })

    except Exception as e:
        logger.error(f"User details error: {e}", exc_info=True)
        return ActionResult.fail("Failed to fetch user details", detail=str(e))


# ==============================================
# Dashboard
# ==============================================

def build_recent_referrals_pipeline(limit: int = 5) -> List[Dict[str, Any]]:
    """Latest completed referrals with the referee joined in."""
    return [
        {"$match": {"referral_program.completed_referrals": {"$exists": True, "$ne": []}}},
        {"$unwind": "$referral_program.completed_referrals"},
        {"$sort": {"referral_program.completed_referrals.date": -1}},
        {"$limit": limit},
        {
            "$lookup": {
                "from": "users",
                "localField": "referral_program.completed_referrals.referee",
                "foreignField": "_id",
                "as": "referee_details",
            }
        },
        {
            "$project": {
                "name": 1,
                "email": 1,
                "amount": "$referral_program.completed_referrals.amount",
                "date": "$referral_program.completed_referrals.date",
                "referee": {"$arrayElemAt": ["$referee_details", 0]},
            }
        },
    ]


async def get_admin_dashboard_data() -> ActionResult:
    try:
        settings_doc = await get_or_create_settings()
        users = get_users_collection()

        total_users = await users.count_documents({})

        recent_referrals = []
        async for doc in users.aggregate(build_recent_referrals_pipeline()):
            referee = doc.get("referee")
            recent_referrals.append(serialize_document({
                "_id": doc.get("_id"),
                "name": doc.get("name"),
                "email": doc.get("email"),
                "amount": doc.get("amount") or 0,
                "date": doc.get("date"),
                "referee": {
                    "_id": referee.get("_id"),
                    "name": referee.get("name"),
                    "email": referee.get("email"),
                } if referee else None,
            }))

        return ActionResult.ok(data={
            "total_users": total_users,
            "recent_referrals": recent_referrals,
            "payout_stats": {
                "min_payout_amount": settings_doc.get("min_payout_amount"),
                "referral_percentage": settings_doc.get("referral_percentage"),
            },
        })

    except Exception as e:
        logger.error(f"Dashboard error: {e}", exc_info=True)
        return ActionResult.fail("Failed to load dashboard data", detail=str(e))


# ==============================================
# Order statistics
# ==============================================

CLOSED_ORDER_STATUSES = [OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value]
STATS_RANGES = ("week", "month", "year")


def stats_period(time_range: str = "month", now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Bounds of the current week (Sunday to Saturday), month or year.
    Unknown ranges fall back to the month.
    """
    now = now or datetime.utcnow()
    today = datetime(now.year, now.month, now.day)

    if time_range == "week":
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return start, start + timedelta(days=7) - timedelta(microseconds=1)

    if time_range == "year":
        return datetime(now.year, 1, 1), datetime(now.year + 1, 1, 1) - timedelta(microseconds=1)

    start = datetime(now.year, now.month, 1)
    next_month = datetime(now.year + now.month // 12, now.month % 12 + 1, 1)
    return start, next_month - timedelta(microseconds=1)


def paid_sales_match(start: datetime, end: datetime) -> Dict[str, Any]:
    return {
        "is_paid": True,
        "status": {"$nin": CLOSED_ORDER_STATUSES},
        "created_at": {"$gte": start, "$lte": end},
    }


def build_sales_total_pipeline(match: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"$match": match},
        {"$group": {"_id": None, "total": {"$sum": "$total_price"}}},
    ]


def build_top_products_pipeline(match: Dict[str, Any], limit: int = 5) -> List[Dict[str, Any]]:
    """Best sellers by quantity, priced at what customers actually paid."""
    return [
        {"$match": match},
        {"$unwind": "$order_items"},
        {
            "$group": {
                "_id": "$order_items.product",
                "total_quantity": {"$sum": "$order_items.quantity"},
                "total_sales": {
                    "$sum": {"$multiply": ["$order_items.quantity", "$order_items.discounted_price"]}
                },
            }
        },
        {"$sort": {"total_quantity": -1}},
        {"$limit": limit},
        {"$lookup": {"from": "products", "localField": "_id", "foreignField": "_id", "as": "product"}},
        {"$unwind": "$product"},
        {
            "$project": {
                "_id": 0,
                "product_id": "$product._id",
                "name": "$product.name",
                "total_quantity": 1,
                "total_sales": 1,
                "price": "$product.price",
                "discounted_price": "$product.discounted_price",
            }
        },
    ]


def build_sales_chart_pipeline(match: Dict[str, Any], time_range: str = "month") -> List[Dict[str, Any]]:
    date_format = "%Y-%m" if time_range == "year" else "%Y-%m-%d"
    return [
        {"$match": match},
        {
            "$group": {
                "_id": {"$dateToString": {"format": date_format, "date": "$created_at"}},
                "total": {"$sum": "$total_price"},
                "orders": {"$sum": 1},
            }
        },
        {"$sort": {"_id": 1}},
    ]


def build_status_breakdown_pipeline(start: datetime, end: datetime) -> List[Dict[str, Any]]:
    return [
        {"$match": {"created_at": {"$gte": start, "$lte": end}}},
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ]


async def get_order_statistics(time_range: str = "month") -> ActionResult:
    """
    Sales figures for the admin dashboard over the current week, month
    or year. Cancelled and refunded orders never count as sales.
    """
    if time_range not in STATS_RANGES:
        time_range = "month"
    start, end = stats_period(time_range)
    match = paid_sales_match(start, end)

    try:
        orders = get_orders_collection()
        in_range = {"$gte": start, "$lte": end}

        sales = await orders.aggregate(build_sales_total_pipeline(match)).to_list(length=1)
        total_sales = float(sales[0].get("total") or 0) if sales else 0.0

        top_products = await orders.aggregate(build_top_products_pipeline(match)).to_list(length=None)
        chart = await orders.aggregate(build_sales_chart_pipeline(match, time_range)).to_list(length=None)
        breakdown = await orders.aggregate(build_status_breakdown_pipeline(start, end)).to_list(length=None)

        return ActionResult.ok(data={
            "time_range": time_range,
            "start": start,
            "end": end,
            "total_sales": round(total_sales, 2),
            "formatted_sales": format_naira(total_sales),
            "total_orders": await orders.count_documents(match),
            "unpaid_orders": await orders.count_documents({
                "is_paid": False,
                "status": OrderStatus.PENDING.value,
                "created_at": in_range,
            }),
            "processing_orders": await orders.count_documents({
                "is_paid": True,
                "status": OrderStatus.PROCESSING.value,
            }),
            "pending_delivery": await orders.count_documents({
                "status": OrderStatus.SHIPPED.value,
                "is_order_received": False,
            }),
            "completed_orders": await orders.count_documents({
                "is_paid": True,
                "status": OrderStatus.DELIVERED.value,
                "created_at": in_range,
            }),
            "total_customers": await get_users_collection().count_documents({
                "role": UserRole.CUSTOMER.value,
                "created_at": in_range,
            }),
            "top_selling_products": serialize_document(top_products),
            "sales_data": [
                {"date": row["_id"], "sales": row.get("total") or 0, "orders": row.get("orders") or 0}
                for row in chart
            ],
            "order_status_breakdown": [
                {"status": row["_id"], "count": row.get("count") or 0}
                for row in breakdown
            ],
        })

    except Exception as e:
        logger.error(f"Order statistics error: {e}", exc_info=True)
        return ActionResult.fail("Failed to load order statistics", detail=str(e))


# ==============================================
# Revenue
# ==============================================

def order_revenue(order: Dict[str, Any], purchase_prices: Dict[Any, float]) -> Dict[str, Any]:
    """
    Profit breakdown of one paid order.

    revenue = (sales - purchase cost) - referral bonus - Paystack charges
    """
    profit_loss = 0.0
    items_cost = 0.0
    quantity = 0

    for item in order.get("order_items") or []:
        qty = item.get("quantity") or 0
        cost = (purchase_prices.get(item.get("product")) or 0) * qty
        profit_loss += (item.get("discounted_price") or 0) * qty - cost
        items_cost += cost
        quantity += qty

    bonus = order.get("referral_bonus") if order.get("is_referral") else None
    referral_cost = float((bonus or {}).get("amount") or 0)
    referral_percentage = float((bonus or {}).get("percentage") or 0)

    channel = (order.get("payment_details") or {}).get("channel") or "card"
    charges = calculate_paystack_charges(order.get("total_price") or 0, channel)

    return {
        "profit_loss": round(profit_loss, 2),
        "total_items_cost": round(items_cost, 2),
        "total_quantity": quantity,
        "shipping_fee": round(float(order.get("shipping_price") or 0), 2),
        "referral_earning": round(referral_cost, 2),
        "referral_percentage": round(referral_percentage, 2),
        "paystack_charges": charges,
        "payment_channel": channel,
        "revenue": round(profit_loss - referral_cost - charges, 2),
        "total_price": round(float(order.get("total_price") or 0), 2),
        "items_price": round(float(order.get("items_price") or 0), 2),
    }


REVENUE_TOTAL_FIELDS = (
    ("total_sales", "total_price"),
    ("total_items_cost", "total_items_cost"),
    ("total_profit_loss", "profit_loss"),
    ("total_shipping_fee", "shipping_fee"),
    ("total_referral_earning", "referral_earning"),
    ("total_paystack_charges", "paystack_charges"),
    ("total_revenue", "revenue"),
)


def revenue_totals(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    totals = {name: round(sum(row[field] for row in rows), 2) for name, field in REVENUE_TOTAL_FIELDS}
    totals["total_orders"] = len(rows)
    totals["total_quantity"] = sum(row["total_quantity"] for row in rows)
    return totals


def paid_orders_query(start_date=None, end_date=None) -> Dict[str, Any]:
    """Paid orders, optionally limited to whole days from start_date to end_date."""
    query: Dict[str, Any] = {"is_paid": True}
    created: Dict[str, datetime] = {}
    if start_date and parse_date(start_date):
        created["$gte"] = day_range(start_date)[0]
    if end_date and parse_date(end_date):
        created["$lte"] = end_of_day(end_date)
    if created:
        query["created_at"] = created
    return query


async def _ordered_products(orders: List[Dict[str, Any]]) -> Dict[Any, Dict[str, Any]]:
    product_ids = list({
        item.get("product")
        for order in orders
        for item in order.get("order_items") or []
        if item.get("product")
    })
    products: Dict[Any, Dict[str, Any]] = {}
    if product_ids:
        cursor = get_products_collection().find({"_id": {"$in": product_ids}}, {"name": 1, "purchase_price": 1})
        async for product in cursor:
            products[product["_id"]] = product
    return products


async def get_revenue_report(
    page: int = 1,
    limit: int = 10,
    start_date=None,
    end_date=None,
) -> ActionResult:
    """Per-order revenue for paid orders, newest first, with page totals."""
    page, limit, skip = _paginate(page, limit)
    query = paid_orders_query(start_date, end_date)

    try:
        orders_collection = get_orders_collection()
        total = await orders_collection.count_documents(query)
        cursor = orders_collection.find(query).sort("created_at", -1).skip(skip).limit(limit)
        orders = [doc async for doc in cursor]

        products = await _ordered_products(orders)
        purchase_prices = {pid: product.get("purchase_price") or 0 for pid, product in products.items()}

        rows = []
        for index, order in enumerate(orders):
            row = order_revenue(order, purchase_prices)
            row.update({
                "sn": skip + index + 1,
                "id": str(order["_id"]),
                "order_id": order.get("order_id"),
                "created_at": order.get("created_at"),
                "status": order.get("status"),
                "referrer": str((order.get("referral_bonus") or {}).get("referrer") or "") or None,
            })
            rows.append(row)

        return ActionResult.ok(data={
            "orders": rows,
            "totals": revenue_totals(rows),
            "pagination": {"total": total, "pages": _pages(total, limit), "page": page, "limit": limit},
        })

    except Exception as e:
        logger.error(f"Error fetching revenue data: {e}", exc_info=True)
        return ActionResult.fail("Failed to fetch revenue data", detail=str(e))


# ==============================================
# Profit analysis
# ==============================================

def item_profit_rows(order: Dict[str, Any], products: Dict[Any, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    One row per order item: selling price (what the customer paid per
    unit) against the product's purchase price.
    """
    rows = []
    for item in order.get("order_items") or []:
        product = products.get(item.get("product")) or {}
        purchase_price = float(product.get("purchase_price") or 0)
        selling_price = float(item.get("discounted_price") or 0)
        quantity = item.get("quantity") or 0
        rows.append({
            "id": str(order["_id"]),
            "order_id": order.get("order_id"),
            "order_date": order.get("created_at"),
            "product_id": str(item.get("product") or ""),
            "product_name": item.get("name") or product.get("name") or "Unknown Product",
            "purchase_price": purchase_price,
            "selling_price": selling_price,
            "quantity": quantity,
            "price": round(selling_price * quantity, 2),
            "profit": round((selling_price - purchase_price) * quantity, 2),
        })
    return rows


async def get_profit_analysis(start_date=None, end_date=None, page: int = 1, limit: int = 10) -> ActionResult:
    """
    Item-level profit of paid orders.

    Rows cover one page of orders; the totals cover every matching order.
    """
    page, limit, skip = _paginate(page, limit)
    query = paid_orders_query(start_date, end_date)

    try:
        orders_collection = get_orders_collection()
        orders = [doc async for doc in orders_collection.find(query).sort("created_at", -1)]
        products = await _ordered_products(orders)

        all_rows = [row for order in orders for row in item_profit_rows(order, products)]
        page_rows = [row for order in orders[skip:skip + limit] for row in item_profit_rows(order, products)]

        return ActionResult.ok(data={
            "items": page_rows,
            "total_profit": round(sum(row["profit"] for row in all_rows), 2),
            "sold_price": round(sum(row["price"] for row in all_rows), 2),
            "items_count": sum(row["quantity"] for row in all_rows),
            "pagination": {
                "total_orders": len(orders),
                "total_pages": _pages(len(orders), limit),
                "current_page": page,
            },
        })

    except Exception as e:
        logger.error(f"Error fetching profit analysis: {e}", exc_info=True)
        return ActionResult.fail("Failed to fetch profit analysis", detail=str(e))


async def get_product_profit_details(product_id, date) -> ActionResult:
    """Profit of one product across the paid orders of a single day."""
    product_oid = to_object_id(product_id)
    if product_oid is None:
        return ActionResult.fail("Invalid product ID")
    bounds = day_range(date) if date else None
    if not bounds:
        return ActionResult.fail("Invalid date", errors={"date": ["Use YYYY-MM-DD"]})

    try:
        product = await get_products_collection().find_one({"_id": product_oid}, {"name": 1, "purchase_price": 1})
        query = {
            "is_paid": True,
            "created_at": {"$gte": bounds[0], "$lte": bounds[1]},
            "order_items.product": product_oid,
        }
        cursor = get_orders_collection().find(query).sort("created_at", -1)
        orders = [doc async for doc in cursor]

        rows = [
            row
            for order in orders
            for row in item_profit_rows(order, {product_oid: product or {}})
            if row["product_id"] == str(product_oid)
        ]

        quantity = sum(row["quantity"] for row in rows)
        purchase_value = sum(row["purchase_price"] * row["quantity"] for row in rows)
        selling_value = sum(row["price"] for row in rows)
        profit = sum(row["profit"] for row in rows)

        def average(value, count):
            return round(value / count, 2) if count else 0

        return ActionResult.ok(data={
            "summary": {
                "product_id": str(product_oid),
                "product_name": (rows[0]["product_name"] if rows else None) or (product or {}).get("name") or "Product",
                "total_quantity": quantity,
                "total_profit": round(profit, 2),
                "avg_purchase_price": average(purchase_value, quantity),
                "avg_selling_price": average(selling_value, quantity),
                "avg_profit": average(profit, quantity),
            },
            "daily_breakdown": [{
                "date": bounds[0].strftime("%Y-%m-%d"),
                "quantity": quantity,
                "total_profit": round(profit, 2),
                "avg_selling_price": average(sum(row["selling_price"] for row in rows), len(rows)),
            }] if rows else [],
        })

    except Exception as e:
        logger.error(f"Error in product profit details: {e}", exc_info=True)
        return ActionResult.fail("Failed to fetch product profit details", detail=str(e))


# ==============================================
# Maintenance
# ==============================================

async def repair_database_references() -> ActionResult:
    """
    Points every user's referral_program.min_payout_settings at the
    settings document when it is missing or not an ObjectId.
    """
    try:
        settings_doc = await get_or_create_settings()

        result = await get_users_collection().update_many(
            {
                "$or": [
                    {"referral_program.min_payout_settings": {"$exists": False}},
                    {"referral_program.min_payout_settings": {"$not": {"$type": "objectId"}}},
                ]
            },
            {"$set": {"referral_program.min_payout_settings": settings_doc["_id"]}},
        )

        logger.info(f"🔧 Repaired {result.modified_count} settings references")
        return ActionResult.ok(
            f"Fixed {result.modified_count} broken references",
            data={"count": result.modified_count},
        )

    except Exception as e:
        logger.error(f"Repair error: {e}", exc_info=True)
        return ActionResult.fail("Failed to repair references", detail=str(e))
