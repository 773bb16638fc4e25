"""
app/models/referral.py

Purpose: Referral ledger states and helpers

- Status enums for completed-referral records
- Ledger record builders
- Eligibility and balance calculations over the embedded ledger
"""

from enum import Enum
from datetime import datetime
from typing import Any, Dict, List, Optional
from bson import ObjectId


class ReferralStatus(str, Enum):
    """Approval state of a completed-referral record."""

    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class ReferralPaymentStatus(str, Enum):
    """Payment state of a completed-referral record."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    REJECTED = "rejected"
    FAILED = "failed"


def new_pending_referral(referee_id: ObjectId) -> Dict[str, Any]:
    """Entry added to the referrer when a referee signs up with their code."""
    return {
        "referral_id": ObjectId(),
        "referee": referee_id,
        "order": None,
        "date": datetime.utcnow(),
        "has_purchased": False,
    }


def new_completed_referral(
    referee_id: ObjectId,
    order_id: ObjectId,
    amount: float,
) -> Dict[str, Any]:
    """
    Credit earned when a referee completes their first purchase.

    The record is requestable immediately: completed, payment pending,
    not yet part of a payout request.
    """
    return {
        "referral_id": ObjectId(),
        "referee": referee_id,
        "order": order_id,
        "amount": amount,
        "date": datetime.utcnow(),
        "status": ReferralStatus.COMPLETED.value,
        "payment_status": ReferralPaymentStatus.PENDING.value,
        "payment_request": False,
        "paid_at": None,
    }


def compute_referral_bonus(amount: float, percentage: float) -> float:
    """Referral credit for an order amount, rounded to 2 decimal places."""
    if not amount or not percentage:
        return 0.0
    return round(float(amount) * float(percentage) / 100, 2)


def is_eligible(record: Dict[str, Any]) -> bool:
    return (
        record.get("status") == ReferralStatus.COMPLETED.value
        and record.get("payment_status") == ReferralPaymentStatus.PENDING.value
        and not record.get("payment_request", False)
    )


def eligible_referrals(program: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Completed credits that have not been requested or paid yet."""
    if not program:
        return []
    return [r for r in program.get("completed_referrals") or [] if is_eligible(r)]


def sum_amounts(records: List[Dict[str, Any]]) -> float:
    return round(sum(r.get("amount") or 0 for r in records), 2)


def outstanding_payment_count(program: Optional[Dict[str, Any]]) -> int:
    """
    Number of payouts and referral credits still awaiting settlement.

    A payout is outstanding until it reaches a terminal state; a credit is
    outstanding while a payout for it is being processed.
    """
    if not program:
        return 0

    payouts = [
        p for p in program.get("payout_history") or []
        if p.get("status") in ("pending", "processing", "otp")
        or p.get("payment_status") in ("pending", "processing")
    ]
    credits = [
        r for r in program.get("completed_referrals") or []
        if r.get("payment_status") == ReferralPaymentStatus.PROCESSING.value
    ]
    return len(payouts) + len(credits)


def has_outstanding_payments(program: Optional[Dict[str, Any]]) -> bool:
    return outstanding_payment_count(program) > 0


def referral_stats(program: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Ledger totals shown on the referral dashboard.

    total_earned: credits already paid out
    pending_earnings: credits eligible for the next payout request
    """
    completed = (program or {}).get("completed_referrals") or []

    paid = [
        r for r in completed
        if r.get("status") == ReferralStatus.COMPLETED.value
        and r.get("payment_status") == ReferralPaymentStatus.SUCCESS.value
    ]
    processing = [
        r for r in completed
        if r.get("payment_status") == ReferralPaymentStatus.PROCESSING.value
    ]

    return {
        "total_earned": sum_amounts(paid),
        "pending_earnings": sum_amounts(eligible_referrals(program)),
        "processing_earnings": sum_amounts(processing),
        "total_completed": len([r for r in completed if r.get("status") == ReferralStatus.COMPLETED.value]),
        "total_rejected": len([r for r in completed if r.get("status") == ReferralStatus.REJECTED.value]),
        "total_pending": len((program or {}).get("pending_referrals") or []),
    }


def find_referral(program: Optional[Dict[str, Any]], referral_id: ObjectId) -> Optional[Dict[str, Any]]:
    for record in (program or {}).get("completed_referrals") or []:
        if record.get("referral_id") == referral_id:
            return record
    return None
