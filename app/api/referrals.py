"""
app/api/referrals.py

Purpose: Referral program endpoints (user side)

- Registration with a referral code
- Referral dashboard and paginated lists
- Bank details verification
- Payout eligibility
"""

from fastapi import APIRouter, Query

from app.api.deps import action_response
from app.schemas.referral import RegisterUserRequest, BankDetailsRequest
from app.services import referral_service, user_service

router = APIRouter()


@router.post("/users")
async def register_user(request: RegisterUserRequest):
    result = await user_service.register_user(
        request.name,
        request.email,
        referral_code=request.referral_code,
        phone=request.phone,
    )
    return action_response(result)


@router.get("/referrals/validate/{code}")
async def validate_referral_code(code: str):
    return action_response(await user_service.validate_referral_code(code))


@router.get("/users/{user_id}/referrals")
async def get_referral_data(user_id: str):
    return action_response(await referral_service.get_referral_data(user_id))


@router.get("/users/{user_id}/referrals/list")
async def get_referral_list(
    user_id: str,
    type: str = Query("pending"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort: str = Query("-date"),
):
    result = await referral_service.get_referral_list(user_id, type=type, page=page, limit=limit, sort=sort)
    return action_response(result)


@router.put("/users/{user_id}/bank-details")
async def update_bank_details(user_id: str, request: BankDetailsRequest):
    result = await referral_service.update_bank_details(user_id, request.account_number, request.bank_code)
    return action_response(result)


@router.get("/users/{user_id}/payout-eligibility")
async def check_payout_eligibility(user_id: str):
    return action_response(await referral_service.check_payout_eligibility(user_id))
