"""
app/services/referral_service.py

Purpose: Referral program management

- Referral dashboard data (program, stats, referral link)
- Paginated pending/completed referral lists
- Bank details verification through Paystack
- Payout eligibility
- Admin approve/reject of referral credits
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from app.db.mongo import (
    get_users_collection,
    get_orders_collection,
    start_transaction_session,
    abort_transaction,
)
from app.models.referral import (
    ReferralStatus,
    ReferralPaymentStatus,
    eligible_referrals,
    find_referral,
    has_outstanding_payments,
    referral_stats,
    sum_amounts,
)
from app.models.user import new_bank_details
from app.services.paystack_service import get_paystack_service
from app.services.settings_service import get_or_create_settings
from app.schemas.response import ActionResult
from app.core.config import settings
from app.core.exceptions import PaymentGatewayError
from app.core.logging import get_logger, LogContext
from utils.money_utils import format_naira
from utils.serialization import serialize_document
from utils.validation_utils import bank_details_errors, to_object_id

logger = get_logger(__name__)

REFERRAL_LIST_TYPES = ("pending", "completed")
REFERRAL_SORTS = ("-date", "date", "-amount", "amount")
MAX_PAGE_SIZE = 100


def referral_link(referral_code: Optional[str]) -> str:
    return f"{settings.APP_URL.rstrip('/')}/auth/register?ref={referral_code or ''}"


async def get_referral_data(user_id) -> ActionResult:
    """
    Referral dashboard for a user.

    Returns:
        ActionResult with the referral program, stats (including the
        current minimum payout and percentage) and the referral link
    """
    user_oid = to_object_id(user_id)
    if user_oid is None:
        return ActionResult.fail("Invalid user ID")

    try:
        settings_doc = await get_or_create_settings()
        user = await get_users_collection().find_one(
            {"_id": user_oid},
            {"name": 1, "email": 1, "referral_program": 1},
        )
        if not user:
            return ActionResult.fail("User not found")

        program = user.get("referral_program") or {}
        stats = referral_stats(program)
        stats["min_payout_amount"] = settings_doc.get("min_payout_amount")
        stats["referral_percentage"] = settings_doc.get("referral_percentage")

        data = serialize_document(program)
        data.pop("paystack_recipient_code", None)
        data["stats"] = stats
        data["referral_link"] = referral_link(program.get("referral_code"))

        return ActionResult.ok("Referral data retrieved successfully", data=data)

    except Exception as e:
        logger.error(f"Get referral data error: {e}", exc_info=True)
        return ActionResult.fail("Failed to retrieve referral data", detail=str(e))


def _sort_referrals(referrals: List[Dict[str, Any]], sort: str) -> List[Dict[str, Any]]:
    epoch = datetime(1970, 1, 1)
    if sort in ("-amount", "amount"):
        return sorted(referrals, key=lambda r: r.get("amount") or 0, reverse=sort == "-amount")
    return sorted(referrals, key=lambda r: r.get("date") or epoch, reverse=sort != "date")


async def get_referral_list(
    user_id,
    type: str = "pending",
    page: int = 1,
    limit: int = 10,
    sort: str = "-date",
) -> ActionResult:
    """
    One page of a user's pending or completed referrals.

    Args:
        type: "pending" or "completed"
        page: Page number (clamped to >= 1)
        limit: Page size (clamped to 1..100)
        sort: -date, date, -amount or amount

    Returns:
        ActionResult with data = {"referrals", "total", "page", "pages"}
    """
    user_oid = to_object_id(user_id)
    if user_oid is None:
        return ActionResult.fail("Invalid user ID")

    if type not in REFERRAL_LIST_TYPES:
        return ActionResult.fail("Invalid referral type")

    if sort not in REFERRAL_SORTS:
        sort = "-date"

    try:
        page = max(1, int(page or 1))
        limit = max(1, min(MAX_PAGE_SIZE, int(limit or 10)))
    except (TypeError, ValueError):
        page, limit = 1, 10

    try:
        users = get_users_collection()
        user = await users.find_one({"_id": user_oid}, {f"referral_program.{type}_referrals": 1})
        if not user:
            return ActionResult.fail("User not found")

        referrals = (user.get("referral_program") or {}).get(f"{type}_referrals") or []
        total = len(referrals)
        page_items = _sort_referrals(referrals, sort)[(page - 1) * limit: page * limit]

        referee_ids = [r["referee"] for r in page_items if r.get("referee")]
        order_ids = [r["order"] for r in page_items if r.get("order")]

        referees = {}
        if referee_ids:
            cursor = users.find({"_id": {"$in": referee_ids}}, {"name": 1, "email": 1, "created_at": 1})
            referees = {u["_id"]: u for u in await cursor.to_list(length=None)}

        orders = {}
        if order_ids:
            cursor = get_orders_collection().find({"_id": {"$in": order_ids}}, {"order_id": 1, "total_price": 1})
            orders = {o["_id"]: o for o in await cursor.to_list(length=None)}

        items = []
        for referral in page_items:
            referee = referees.get(referral.get("referee")) or {}
            order = orders.get(referral.get("order"))
            amount = referral.get("amount") or 0
            items.append({
                "id": str(referral.get("referral_id")) if referral.get("referral_id") else None,
                "referee": {
                    "id": str(referee["_id"]) if referee.get("_id") else "",
                    "name": referee.get("name") or "Unknown",
                    "email": referee.get("email") or "",
                    "join_date": referee.get("created_at"),
                },
                "date": referral.get("date"),
                "amount": amount,
                "formatted_amount": format_naira(amount),
                "order": {
                    "id": str(order["_id"]),
                    "order_id": order.get("order_id"),
                    "total_price": order.get("total_price") or 0,
                    "formatted_total": format_naira(order.get("total_price")),
                } if order else None,
                "has_purchased": referral.get("has_purchased", type == "completed"),
                "status": referral.get("status") or ReferralStatus.PENDING.value,
                "payment_status": referral.get("payment_status"),
            })

        pages = (total + limit - 1) // limit
        return ActionResult.ok(
            f"{type} referrals retrieved successfully",
            data={"referrals": items, "total": total, "page": page, "pages": pages},
        )

    except Exception as e:
        logger.error(f"Get referral list error: {e}", exc_info=True)
        return ActionResult.fail(f"Failed to retrieve {type} referrals", detail=str(e))


async def update_bank_details(user_id, account_number: str, bank_code: str) -> ActionResult:
    """
    Verifies a bank account with Paystack and stores it.

    The cached Paystack recipient code is cleared so the next payout
    registers the new account.
    """
    user_oid = to_object_id(user_id)
    if user_oid is None:
        return ActionResult.fail("Invalid user ID")

    account_number = (account_number or "").strip()
    bank_code = (bank_code or "").strip()

    errors = bank_details_errors(account_number, bank_code)
    if errors:
        return ActionResult.fail("Invalid bank details", errors=errors)

    with LogContext(user_id=str(user_oid)):
        try:
            resolution = await get_paystack_service().resolve_account(account_number, bank_code)
        except PaymentGatewayError as e:
            logger.warning(f"Account verification failed: {e.message}")
            return ActionResult.fail(
                e.message or "Account verification failed",
                errors={"account_number": ["Could not verify this account"]},
            )

        bank_details = new_bank_details(resolution["account_name"], account_number, bank_code)

        result = await get_users_collection().update_one(
            {"_id": user_oid},
            {
                "$set": {
                    "referral_program.bank_details": bank_details,
                    "referral_program.paystack_recipient_code": None,
                    "updated_at": datetime.utcnow(),
                }
            },
        )
        if result.matched_count == 0:
            return ActionResult.fail("User not found")

        logger.info("🏦 Bank details verified and saved")
        return ActionResult.ok(
            "Bank details updated and verified successfully",
            data=serialize_document(bank_details),
        )


async def check_payout_eligibility(user_id) -> ActionResult:
    """
    Whether the user's unpaid credits reach the minimum payout with no
    earlier payout still outstanding.

    Returns:
        ActionResult with data = {"eligible", "has_pending_payments",
        "unpaid_amount", "min_payout", "account_verified"}
    """
    user_oid = to_object_id(user_id)
    if user_oid is None:
        return ActionResult.fail("Invalid user ID")

    try:
        user = await get_users_collection().find_one({"_id": user_oid})
        if not user:
            return ActionResult.fail("User not found")

        settings_doc = await get_or_create_settings()
        program = user.get("referral_program") or {}
        unpaid = sum_amounts(eligible_referrals(program))
        min_payout = settings_doc.get("min_payout_amount")

        pending = has_outstanding_payments(program)

        return ActionResult.ok(data={
            "eligible": unpaid >= min_payout and not pending,
            "has_pending_payments": pending,
            "unpaid_amount": unpaid,
            "min_payout": min_payout,
            "account_verified": bool((program.get("bank_details") or {}).get("verified")),
        })

    except Exception as e:
        logger.error(f"Eligibility check error: {e}", exc_info=True)
        return ActionResult.fail("Failed to check eligibility")


async def update_referral_status(user_id, referral_id, action: str) -> ActionResult:
    """
    Admin approval or rejection of a referral credit.

    approve: status completed, payment_status pending
    reject: status rejected, payment_status rejected

    Credits that are being paid or were already paid cannot be changed.
    """
    if action not in ("approve", "reject"):
        return ActionResult.fail("Invalid action")

    user_oid = to_object_id(user_id)
    referral_oid = to_object_id(referral_id)
    if user_oid is None or referral_oid is None:
        return ActionResult.fail("Invalid user or referral ID")

    with LogContext(user_id=str(user_oid)):
        try:
            async with start_transaction_session() as session:
                users = get_users_collection()
                query = {
                    "_id": user_oid,
                    "referral_program.completed_referrals.referral_id": referral_oid,
                }

                user = await users.find_one(query, session=session)
                record = find_referral((user or {}).get("referral_program"), referral_oid)
                if not record:
                    await abort_transaction(session)
                    return ActionResult.fail("User or referral not found")

                if record.get("payment_status") in (
                    ReferralPaymentStatus.PROCESSING.value,
                    ReferralPaymentStatus.SUCCESS.value,
                ):
                    await abort_transaction(session)
                    return ActionResult.fail("Referral is already being paid out")

                approve = action == "approve"
                result = await users.update_one(
                    query,
                    {
                        "$set": {
                            "referral_program.completed_referrals.$.status": (
                                ReferralStatus.COMPLETED.value if approve else ReferralStatus.REJECTED.value
                            ),
                            "referral_program.completed_referrals.$.payment_status": (
                                ReferralPaymentStatus.PENDING.value if approve else ReferralPaymentStatus.REJECTED.value
                            ),
                            "referral_program.completed_referrals.$.payment_request": False,
                            "updated_at": datetime.utcnow(),
                        }
                    },
                    session=session,
                )

                if result.modified_count == 0:
                    await abort_transaction(session)
                    return ActionResult.fail("Failed to update referral")

            logger.info(f"Referral {referral_oid} {'approved' if approve else 'rejected'}")
            return ActionResult.ok(f"Referral {'approved' if approve else 'rejected'}")

        except Exception as e:
            logger.error(f"Referral update error: {e}", exc_info=True)
            return ActionResult.fail("Server error during referral update")
