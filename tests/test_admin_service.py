from datetime import datetime, timedelta

import pytest
from bson import ObjectId

from app.models.referral import ReferralPaymentStatus, new_completed_referral, new_pending_referral
from app.services.admin_service import (
    build_order_query,
    build_payout_requests_pipeline,
    build_recent_referrals_pipeline,
    build_top_products_pipeline,
    get_admin_dashboard_data,
    get_all_orders,
    get_order_statistics,
    get_payout_requests,
    get_product_profit_details,
    get_profit_analysis,
    get_revenue_report,
    get_user_referral_details,
    get_users_with_referrals,
    item_profit_rows,
    order_revenue,
    paid_sales_match,
    repair_database_references,
    revenue_totals,
    stats_period,
    summarize_referral_program,
)


# ==============================================
# Payout requests
# ==============================================

def test_payout_requests_pipeline_filters_before_paging():
    pipelines = build_payout_requests_pipeline(
        status="pending",
        payment_status="pending",
        search="obi",
        start_date="2024-05-01",
        end_date="2024-05-31",
        skip=10,
        limit=10,
    )
    pipeline = pipelines["pipeline"]

    assert pipeline[0] == {"$match": {"referral_program.payout_history": {"$exists": True, "$ne": []}}}
    assert pipeline[1]["$match"]["$or"][0] == {"name": {"$regex": "obi", "$options": "i"}}
    assert pipeline[2] == {"$unwind": "$referral_program.payout_history"}
    assert {"$match": {"referral_program.payout_history.status": "pending"}} in pipeline
    requested = pipeline[5]["$match"]["referral_program.payout_history.requested_at"]
    assert requested["$gte"] == datetime(2024, 5, 1)
    assert requested["$lte"].date() == datetime(2024, 5, 31).date()
    assert pipeline[-3:-1] == [{"$skip": 10}, {"$limit": 10}]
    assert pipeline[-1]["$project"]["payout"] == "$referral_program.payout_history"
    assert pipelines["count_pipeline"] == pipeline[:6] + [{"$count": "total"}]


def test_payout_requests_pipeline_without_filters():
    pipelines = build_payout_requests_pipeline()

    assert len(pipelines["count_pipeline"]) == 3
    assert pipelines["pipeline"][2] == {"$sort": {"referral_program.payout_history.requested_at": -1}}


@pytest.mark.anyio
async def test_get_payout_requests(fake_db):
    fake_db.users.aggregate_results = [
        [{"total": 21}],
        [{"_id": ObjectId(), "name": "ADA OBI", "payout": {"payout_id": ObjectId(), "amount": 6000}}],
    ]

    result = await get_payout_requests(page=3, limit=10, status="failed")

    assert result.success
    assert result.data["total"] == 21
    assert result.data["total_pages"] == 3
    assert result.data["current_page"] == 3
    assert isinstance(result.data["payouts"][0]["payout"]["payout_id"], str)
    assert {"$skip": 20} in fake_db.users.pipelines[1]


# ==============================================
# Orders
# ==============================================

def test_order_query_for_order_number():
    query = build_order_query("ord-1234")

    assert query["$or"][0] == {"order_id": "ORD-1234"}
    assert {"tracking_id": {"$regex": "1234", "$options": "i"}} in query["$or"]


def test_order_query_with_customers_status_and_date():
    customer = ObjectId()
    query = build_order_query("ada", status="processing", date="2024-05-01", user_ids=[customer])

    assert {"user": {"$in": [customer]}} in query["$or"]
    assert query["status"] == "processing"
    assert query["created_at"]["$gte"] == datetime(2024, 5, 1)


def test_order_query_ignores_all_status():
    assert build_order_query(status="all") == {}


@pytest.mark.anyio
async def test_get_all_orders_search_by_customer(seed):
    ada = await seed.user("Ada Obi", email="ada@example.com")
    tunde = await seed.user("Tunde Bello", email="tunde@example.com")
    dress = await seed.product("Dress")
    bag = await seed.product("Bag")
    order = await seed.order(ada["_id"], [(dress, 2, 8000), (bag, 1, 3000)], created_at=datetime(2024, 5, 1, 9))
    await seed.order(tunde["_id"], [(dress, 1, 8000)])

    result = await get_all_orders(search="ada")

    assert result.success
    assert result.data["total"] == 1
    row = result.data["orders"][0]
    assert row["order_id"] == order["order_id"]
    assert row["customer"] == {"name": "ADA OBI", "email": "ada@example.com"}
    assert row["items"] == 3
    assert row["products"] == "Dress, Bag"
    assert row["formatted_date"] == "2024-05-01"
    assert row["formatted_total"] == "₦20,500.00"


@pytest.mark.anyio
async def test_get_all_orders_sorts_and_pages(seed):
    buyer = await seed.user()
    product = await seed.product()
    for price in (100, 300, 200):
        await seed.order(buyer["_id"], [(product, 1, price)], shipping_price=0)

    result = await get_all_orders(page=1, limit=2, sort="-total_price")

    assert [o["total_price"] for o in result.data["orders"]] == [300, 200]
    assert result.data["pages"] == 2


# ==============================================
# Users and dashboard
# ==============================================

def test_summarize_referral_program():
    program = {
        "referral_code": "ABCD1234",
        "referral_earnings": 900,
        "pending_referrals": [new_pending_referral(ObjectId())],
        "completed_referrals": [
            {**new_completed_referral(ObjectId(), ObjectId(), 300), "payment_status": "success"},
            new_completed_referral(ObjectId(), ObjectId(), 600),
            {**new_completed_referral(ObjectId(), ObjectId(), 50), "status": "rejected"},
        ],
    }

    summary = summarize_referral_program(program, {"min_payout_amount": 5000, "referral_percentage": 1.5})

    assert (summary["pending_count"], summary["completed_count"], summary["unpaid_count"]) == (1, 1, 1)
    assert summary["unpaid_referrals"][0]["amount"] == 600
    assert summary["min_payout_amount"] == 5000


@pytest.mark.anyio
async def test_users_with_referrals_search_by_code(seed):
    await seed.settings()
    target = await seed.user("Target User", referral_program={"referral_code": "TARGET99"})
    await seed.user("Someone Else")

    result = await get_users_with_referrals(search="target99")

    assert result.data["total"] == 1
    assert result.data["users"][0]["id"] == str(target["_id"])
    assert result.data["users"][0]["referral_program"]["referral_code"] == "TARGET99"


@pytest.mark.anyio
async def test_user_referral_details_joins_referees(seed):
    await seed.settings(min_payout_amount=7000)
    friend = await seed.user("Friend", email="friend@example.com")
    newcomer = await seed.user("Newcomer", email="new@example.com")
    paid = dict(new_completed_referral(friend["_id"], ObjectId(), 300), payment_status=ReferralPaymentStatus.SUCCESS.value)
    unpaid = new_completed_referral(friend["_id"], ObjectId(), 150)
    user = await seed.user(referral_program={
        "pending_referrals": [new_pending_referral(newcomer["_id"])],
        "completed_referrals": [paid, unpaid],
        "payout_history": [{"amount": 100}, {"amount": 200}],
    })

    result = await get_user_referral_details(str(user["_id"]))

    assert result.success, result.message
    program = result.data["referral_program"]
    assert program["pending_referrals"][0]["referee"]["name"] == "NEWCOMER"
    assert [r["amount"] for r in program["completed_referrals"]] == [300]
    assert [r["amount"] for r in program["unpaid_referrals"]] == [150]
    assert program["unpaid_referrals"][0]["referee"]["email"] == "friend@example.com"
    assert (program["total_earned"], program["pending_earnings"]) == (300, 150)
    assert program["min_payout_amount"] == 7000
    assert [p["amount"] for p in program["payout_history"]] == [200, 100]


@pytest.mark.anyio
async def test_user_referral_details_keeps_missing_referee(seed):
    await seed.settings()
    gone = ObjectId()
    user = await seed.user(referral_program={"pending_referrals": [new_pending_referral(gone)]})

    result = await get_user_referral_details(user["_id"])

    referee = result.data["referral_program"]["pending_referrals"][0]["referee"]
    assert referee == {"id": str(gone), "name": None, "email": None}


@pytest.mark.anyio
async def test_user_referral_details_for_unknown_user(fake_db):
    assert (await get_user_referral_details(str(ObjectId()))).message == "User not found"
    assert (await get_user_referral_details("nope")).message == "Invalid user ID"


def test_recent_referrals_pipeline():
    pipeline = build_recent_referrals_pipeline(limit=3)

    assert {"$limit": 3} in pipeline
    assert pipeline[4]["$lookup"]["localField"] == "referral_program.completed_referrals.referee"


@pytest.mark.anyio
async def test_dashboard(seed, fake_db):
    await seed.settings(min_payout_amount=7000, referral_percentage=2)
    await seed.user()
    await seed.user()
    referee_id = ObjectId()
    fake_db.users.aggregate_results = [[
        {
            "_id": ObjectId(),
            "name": "ADA OBI",
            "email": "ada@example.com",
            "amount": 150,
            "date": datetime(2024, 5, 1),
            "referee": {"_id": referee_id, "name": "FRIEND", "email": "friend@example.com"},
        },
    ]]

    result = await get_admin_dashboard_data()

    assert result.data["total_users"] == 2
    assert result.data["recent_referrals"][0]["referee"]["id"] == str(referee_id)
    assert result.data["payout_stats"] == {"min_payout_amount": 7000, "referral_percentage": 2}


# ==============================================
# Order statistics
# ==============================================

def test_stats_period():
    now = datetime(2024, 5, 15, 10, 30)

    week = stats_period("week", now)
    assert week[0] == datetime(2024, 5, 12)
    assert week[1] == datetime(2024, 5, 19) - timedelta(microseconds=1)
    assert stats_period("month", now)[0] == datetime(2024, 5, 1)
    assert stats_period("year", now) == (datetime(2024, 1, 1), datetime(2025, 1, 1) - timedelta(microseconds=1))
    assert stats_period("decade", now) == stats_period("month", now)
    assert stats_period("month", datetime(2024, 12, 3))[1] == datetime(2025, 1, 1) - timedelta(microseconds=1)


def test_top_products_pipeline_excludes_closed_orders():
    match = paid_sales_match(datetime(2024, 5, 1), datetime(2024, 5, 31))
    pipeline = build_top_products_pipeline(match, limit=3)

    assert pipeline[0]["$match"]["status"] == {"$nin": ["cancelled", "refunded"]}
    assert pipeline[1] == {"$unwind": "$order_items"}
    assert {"$limit": 3} in pipeline


@pytest.mark.anyio
async def test_order_statistics(seed, fake_db):
    buyer = await seed.user()
    product = await seed.product()
    items = [(product, 1, 8000)]
    await seed.order(buyer["_id"], items, is_paid=True, status="processing")
    await seed.order(buyer["_id"], items, is_paid=True, status="delivered")
    await seed.order(buyer["_id"], items, is_paid=True, status="shipped")
    await seed.order(buyer["_id"], items, is_paid=True, status="cancelled")
    await seed.order(buyer["_id"], items)
    fake_db.orders.aggregate_results = [
        [{"_id": None, "total": 28500}],
        [{"product_id": product["_id"], "name": "Ankara Dress", "total_quantity": 3, "total_sales": 24000}],
        [{"_id": "2024-05-02", "total": 28500, "orders": 3}],
        [{"_id": "pending", "count": 1}, {"_id": "processing", "count": 1}],
    ]

    result = await get_order_statistics("month")

    assert result.success, result.message
    data = result.data
    assert data["total_sales"] == 28500
    assert data["formatted_sales"].endswith("28,500.00")
    assert (data["total_orders"], data["unpaid_orders"], data["processing_orders"]) == (3, 1, 1)
    assert (data["pending_delivery"], data["completed_orders"], data["total_customers"]) == (1, 1, 1)
    assert data["top_selling_products"][0]["product_id"] == str(product["_id"])
    assert data["sales_data"] == [{"date": "2024-05-02", "sales": 28500, "orders": 3}]
    assert data["order_status_breakdown"][0] == {"status": "pending", "count": 1}
    chart_group = fake_db.orders.pipelines[2][1]["$group"]["_id"]["$dateToString"]
    assert chart_group["format"] == "%Y-%m-%d"


@pytest.mark.anyio
async def test_order_statistics_without_sales(fake_db):
    result = await get_order_statistics("year")

    assert result.data["total_sales"] == 0
    assert result.data["top_selling_products"] == []
    assert fake_db.orders.pipelines[2][1]["$group"]["_id"]["$dateToString"]["format"] == "%Y-%m"


# ==============================================
# Revenue
# ==============================================

def referral_order(product_id, **fields):
    order = {
        "_id": ObjectId(),
        "order_items": [{"product": product_id, "quantity": 2, "discounted_price": 8000}],
        "shipping_price": 1500,
        "items_price": 16000,
        "total_price": 17500,
        "is_referral": True,
        "referral_bonus": {"amount": 262.5, "percentage": 1.5, "referrer": ObjectId()},
        "payment_details": {"channel": "card"},
    }
    order.update(fields)
    return order


def test_order_revenue_for_referral_card_payment():
    product_id = ObjectId()

    row = order_revenue(referral_order(product_id), {product_id: 6000})

    assert row["profit_loss"] == 4000
    assert row["total_items_cost"] == 12000
    assert row["total_quantity"] == 2
    assert row["referral_earning"] == 262.5
    assert row["paystack_charges"] == 362.5
    assert row["revenue"] == 3375
    assert row["payment_channel"] == "card"


def test_order_revenue_without_referral_or_known_cost():
    row = order_revenue(
        referral_order(ObjectId(), is_referral=False, payment_details={"channel": "bank_transfer"}),
        {},
    )

    assert row["referral_earning"] == 0
    assert row["total_items_cost"] == 0
    assert row["paystack_charges"] == 100
    assert row["revenue"] == 15900


def test_revenue_totals():
    rows = [order_revenue(referral_order(ObjectId()), {}), order_revenue(referral_order(ObjectId()), {})]

    totals = revenue_totals(rows)

    assert totals["total_orders"] == 2
    assert totals["total_quantity"] == 4
    assert totals["total_sales"] == 35000
    assert totals["total_revenue"] == round(2 * rows[0]["revenue"], 2)


@pytest.mark.anyio
async def test_revenue_report_only_counts_paid_orders(seed):
    buyer = await seed.user()
    product = await seed.product(purchase_price=6000)
    paid = await seed.order(buyer["_id"], [(product, 2, 8000)], is_paid=True, created_at=datetime(2024, 5, 2))
    await seed.order(buyer["_id"], [(product, 1, 8000)], is_paid=True, created_at=datetime(2024, 4, 1))
    await seed.order(buyer["_id"], [(product, 5, 8000)])

    result = await get_revenue_report(start_date="2024-05-01", end_date="2024-05-31")

    assert result.success
    assert result.data["pagination"]["total"] == 1
    row = result.data["orders"][0]
    assert (row["sn"], row["order_id"]) == (1, paid["order_id"])
    assert row["profit_loss"] == 4000
    assert row["referrer"] is None
    assert result.data["totals"]["total_orders"] == 1


# ==============================================
# Profit analysis
# ==============================================

def test_item_profit_rows():
    product_id = ObjectId()
    order = {
        "_id": ObjectId(),
        "order_id": "ORD-1",
        "order_items": [
            {"product": product_id, "name": "Dress", "quantity": 2, "discounted_price": 8000},
            {"product": ObjectId(), "quantity": 1, "discounted_price": 500},
        ],
    }

    rows = item_profit_rows(order, {product_id: {"purchase_price": 6000}})

    assert (rows[0]["price"], rows[0]["profit"]) == (16000, 4000)
    assert rows[1]["product_name"] == "Unknown Product"
    assert rows[1]["profit"] == 500


@pytest.mark.anyio
async def test_profit_analysis_totals_cover_every_page(seed):
    buyer = await seed.user()
    dress = await seed.product("Dress", purchase_price=6000)
    bag = await seed.product("Bag", price=10000, purchase_price=5000)
    await seed.order(buyer["_id"], [(dress, 2, 8000)], is_paid=True, created_at=datetime(2024, 5, 2))
    newest = await seed.order(buyer["_id"], [(bag, 1, 9000)], is_paid=True, created_at=datetime(2024, 5, 3))
    await seed.order(buyer["_id"], [(bag, 4, 9000)], created_at=datetime(2024, 5, 3))
    await seed.order(buyer["_id"], [(bag, 1, 9000)], is_paid=True, created_at=datetime(2024, 6, 1))

    result = await get_profit_analysis("2024-05-01", "2024-05-31", page=1, limit=1)

    assert result.success, result.message
    assert [row["order_id"] for row in result.data["items"]] == [newest["order_id"]]
    assert result.data["items"][0]["profit"] == 4000
    assert result.data["total_profit"] == 8000
    assert result.data["sold_price"] == 25000
    assert result.data["items_count"] == 3
    assert result.data["pagination"] == {"total_orders": 2, "total_pages": 2, "current_page": 1}


@pytest.mark.anyio
async def test_product_profit_details_for_one_day(seed):
    buyer = await seed.user()
    lamp = await seed.product("Lamp", purchase_price=6000)
    bag = await seed.product("Bag", purchase_price=1000)
    await seed.order(buyer["_id"], [(lamp, 2, 8000), (bag, 1, 3000)], is_paid=True, created_at=datetime(2024, 5, 2, 9))
    await seed.order(buyer["_id"], [(lamp, 1, 7000)], is_paid=True, created_at=datetime(2024, 5, 2, 18))
    await seed.order(buyer["_id"], [(lamp, 5, 8000)], is_paid=True, created_at=datetime(2024, 5, 3))

    result = await get_product_profit_details(str(lamp["_id"]), "2024-05-02")

    assert result.success, result.message
    summary = result.data["summary"]
    assert summary["product_name"] == "Lamp"
    assert (summary["total_quantity"], summary["total_profit"]) == (3, 5000)
    assert summary["avg_purchase_price"] == 6000
    assert summary["avg_selling_price"] == 7666.67
    assert summary["avg_profit"] == 1666.67
    assert result.data["daily_breakdown"] == [
        {"date": "2024-05-02", "quantity": 3, "total_profit": 5000, "avg_selling_price": 7500}
    ]


@pytest.mark.anyio
async def test_product_profit_details_without_sales(seed):
    lamp = await seed.product("Lamp")

    result = await get_product_profit_details(lamp["_id"], "2024-05-02")

    assert result.data["summary"]["total_quantity"] == 0
    assert result.data["summary"]["product_name"] == "Lamp"
    assert result.data["daily_breakdown"] == []
    assert (await get_product_profit_details(lamp["_id"], "yesterday")).message == "Invalid date"


# ==============================================
# Maintenance
# ==============================================

@pytest.mark.anyio
async def test_repair_database_references(seed, fake_db):
    settings_doc = await seed.settings()
    broken = await seed.user()
    legacy = await seed.user(referral_program={"min_payout_settings": "5000"})
    healthy = await seed.user(referral_program={"min_payout_settings": settings_doc["_id"]})
    await fake_db.users.update_one({"_id": broken["_id"]}, {"$unset": {"referral_program.min_payout_settings": ""}})

    result = await repair_database_references()

    assert result.message == "Fixed 2 broken references"
    assert result.data == {"count": 2}
    for user in (broken, legacy, healthy):
        program = (await seed.reload_user(user["_id"]))["referral_program"]
        assert program["min_payout_settings"] == settings_doc["_id"]
