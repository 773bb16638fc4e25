"""
app/api/payouts.py

Purpose: Payout endpoints (user side)

- Payout request and Paystack transfer
- OTP submit/resend
- Status polling
- Payout history
"""

from fastapi import APIRouter, Query

from app.api.deps import action_response
from app.schemas.payout import PayoutRequest, SubmitOTPRequest
from app.services import payout_service

router = APIRouter()


@router.post("/users/{user_id}/payouts")
async def request_payout(user_id: str, request: PayoutRequest):
    result = await payout_service.request_payout(user_id, auto_transfer=request.auto_transfer)
    return action_response(result)


@router.get("/users/{user_id}/payouts")
async def get_payout_history(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: str = Query(""),
    sort: str = Query("-requested_at"),
):
    result = await payout_service.get_payout_history(user_id, page=page, limit=limit, status=status, sort=sort)
    return action_response(result)


@router.post("/users/{user_id}/payouts/{payout_id}/transfer")
async def initiate_transfer(user_id: str, payout_id: str):
    return action_response(await payout_service.initiate_payout_transfer(user_id, payout_id))


@router.post("/users/{user_id}/payouts/{payout_id}/otp")
async def submit_otp(user_id: str, payout_id: str, request: SubmitOTPRequest):
    return action_response(await payout_service.submit_payout_otp(user_id, payout_id, request.otp))


@router.post("/users/{user_id}/payouts/{payout_id}/otp/resend")
async def resend_otp(user_id: str, payout_id: str):
    return action_response(await payout_service.resend_payout_otp(user_id, payout_id))


@router.get("/users/{user_id}/payouts/{payout_id}/status")
async def check_status(user_id: str, payout_id: str):
    """Polls Paystack and syncs the payout's local state."""
    return action_response(await payout_service.check_payout_status(user_id, payout_id))
