"""
app/api/admin.py

Purpose: Admin endpoints

- Guarded by the X-Admin-Key header
- Payout requests and overrides (status, manual transfer, retry)
- Orders, users with referrals, user details
- Dashboard, order statistics, revenue, profit analysis
- Referral approval, payout settings, reference repair
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from app.api.deps import action_response, require_admin
from app.schemas.order import UpdateOrderStatusRequest
from app.schemas.payout import UpdatePayoutStatusRequest, ManualTransferRequest
from app.schemas.referral import ReferralStatusRequest, ReferralSettingsRequest
from app.services import (
    admin_service,
    order_service,
    payout_service,
    referral_service,
    settings_service,
)

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@router.get("/dashboard")
async def dashboard():
    return action_response(await admin_service.get_admin_dashboard_data())


@router.get("/payouts")
async def payout_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: str = Query(""),
    payment_status: str = Query(""),
    search: str = Query(""),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
):
    result = await admin_service.get_payout_requests(
        page, limit, status, payment_status, search, start_date, end_date
    )
    return action_response(result)


@router.put("/users/{user_id}/payouts/{payout_id}/status")
async def update_payout_status(user_id: str, payout_id: str, request: UpdatePayoutStatusRequest):
    result = await payout_service.update_payout_status(user_id, payout_id, request.status.value)
    return action_response(result)


@router.post("/users/{user_id}/payouts/{payout_id}/manual-transfer")
async def manual_transfer(user_id: str, payout_id: str, request: ManualTransferRequest):
    result = await payout_service.mark_manual_transfer_complete(user_id, payout_id, request.reference)
    return action_response(result)


@router.post("/payouts/{payout_id}/retry")
async def retry_payout(payout_id: str):
    return action_response(await payout_service.retry_failed_payout(payout_id))


@router.get("/orders")
async def all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query(""),
    status: str = Query(""),
    date: Optional[str] = None,
    sort: str = Query("-created_at"),
):
    result = await admin_service.get_all_orders(page, limit, search, status, date, sort)
    return action_response(result)


@router.put("/orders/{order_id}/status")
async def update_order_status(order_id: str, request: UpdateOrderStatusRequest):
    return action_response(await order_service.update_order_status(order_id, request.status.value))


@router.get("/users")
async def users_with_referrals(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query(""),
):
    return action_response(await admin_service.get_users_with_referrals(page, limit, search))


@router.get("/users/{user_id}")
async def user_referral_details(user_id: str):
    return action_response(await admin_service.get_user_referral_details(user_id))


@router.put("/users/{user_id}/referrals/{referral_id}")
async def update_referral_status(user_id: str, referral_id: str, request: ReferralStatusRequest):
    result = await referral_service.update_referral_status(user_id, referral_id, request.action)
    return action_response(result)


@router.get("/revenue")
async def revenue(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
):
    return action_response(await admin_service.get_revenue_report(page, limit, start_date, end_date))


@router.get("/order-stats")
async def order_statistics(time_range: str = Query("month", pattern="^(week|month|year)$")):
    return action_response(await admin_service.get_order_statistics(time_range))


@router.get("/profit")
async def profit_analysis(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
):
    return action_response(await admin_service.get_profit_analysis(start_date, end_date, page, limit))


@router.get("/profit/products/{product_id}")
async def product_profit(product_id: str, date: str = Query(...)):
    return action_response(await admin_service.get_product_profit_details(product_id, date))


@router.get("/settings")
async def get_settings():
    return action_response(await settings_service.get_referral_settings())


@router.put("/settings")
async def update_settings(request: ReferralSettingsRequest):
    result = await settings_service.update_referral_settings(
        request.min_payout_amount, request.referral_percentage
    )
    return action_response(result)


@router.post("/maintenance/repair-references")
async def repair_references():
    return action_response(await admin_service.repair_database_references())
