"""
app/models/payout.py

Purpose: Payout history states

- Status enums for payout records embedded in the referral program
- Allowed status transitions
- Mapping of Paystack transfer statuses to local state
"""

from enum import Enum
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from bson import ObjectId


class PayoutStatus(str, Enum):
    """
    Lifecycle of a payout request.
    `otp` means the transfer is waiting for the OTP Paystack sent to the
    account owner.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    OTP = "otp"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PayoutPaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    REJECTED = "rejected"


# Allowed state transitions
PAYOUT_TRANSITIONS: Dict[PayoutStatus, List[PayoutStatus]] = {
    PayoutStatus.PENDING: [
        PayoutStatus.PROCESSING,
        PayoutStatus.OTP,
        PayoutStatus.COMPLETED,  # Manual bank transfer
        PayoutStatus.FAILED,
        PayoutStatus.CANCELLED,
    ],
    PayoutStatus.PROCESSING: [
        PayoutStatus.PROCESSING,  # Re-poll
        PayoutStatus.OTP,
        PayoutStatus.COMPLETED,
        PayoutStatus.FAILED,
    ],
    PayoutStatus.OTP: [
        PayoutStatus.OTP,  # OTP resent
        PayoutStatus.PROCESSING,
        PayoutStatus.COMPLETED,
        PayoutStatus.FAILED,
    ],
    PayoutStatus.FAILED: [
        PayoutStatus.PENDING,  # Retry
        PayoutStatus.CANCELLED,
    ],
    PayoutStatus.COMPLETED: [],
    PayoutStatus.CANCELLED: [],
}

IN_FLIGHT_STATUSES = (PayoutStatus.PROCESSING, PayoutStatus.OTP)


def is_valid_payout_transition(
    from_status: Union[PayoutStatus, str],
    to_status: Union[PayoutStatus, str],
) -> bool:
    """
    Checks if a payout status transition is allowed.

    Args:
        from_status: Current status
        to_status: Target status

    Returns:
        True if transition is allowed, False otherwise
    """
    try:
        from_status = PayoutStatus(from_status)
        to_status = PayoutStatus(to_status)
    except ValueError:
        return False

    return to_status in PAYOUT_TRANSITIONS.get(from_status, [])


def new_payout_record(amount: float, bank_details: Dict[str, Any]) -> Dict[str, Any]:
    """Payout history entry created when a user requests their earnings."""
    return {
        "payout_id": ObjectId(),
        "amount": amount,
        "requested_at": datetime.utcnow(),
        "status": PayoutStatus.PENDING.value,
        "payment_status": PayoutPaymentStatus.PENDING.value,
        "bank_details": {
            "account_name": bank_details.get("account_name"),
            "account_number": bank_details.get("account_number"),
            "bank_code": bank_details.get("bank_code"),
        },
        "paystack_reference": None,
        "transfer_code": None,
        "processed_at": None,
        "completed_at": None,
        "last_attempt": None,
        "error": None,
    }


def status_update_for_gateway(gateway_status: Optional[str], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Maps a Paystack transfer status to local payout fields.

    Returns a dict of payout fields to set (keys relative to the payout
    record).
    """
    now = now or datetime.utcnow()

    if gateway_status == "success":
        return {
            "status": PayoutStatus.COMPLETED.value,
            "payment_status": PayoutPaymentStatus.SUCCESS.value,
            "completed_at": now,
        }

    if gateway_status in ("failed", "reversed"):
        return {
            "status": PayoutStatus.FAILED.value,
            "payment_status": PayoutPaymentStatus.FAILED.value,
            "last_attempt": now,
        }

    if gateway_status == "otp":
        return {
            "status": PayoutStatus.OTP.value,
            "payment_status": PayoutPaymentStatus.PROCESSING.value,
        }

    # pending, processing, queued, received...
    return {
        "status": PayoutStatus.PROCESSING.value,
        "payment_status": PayoutPaymentStatus.PROCESSING.value,
        "last_attempt": now,
    }


def find_payout(program: Optional[Dict[str, Any]], payout_id: ObjectId) -> Optional[Dict[str, Any]]:
    for payout in (program or {}).get("payout_history") or []:
        if payout.get("payout_id") == payout_id:
            return payout
    return None


def generate_transfer_reference(payout_id: ObjectId, now: Optional[datetime] = None) -> str:
    """Unique transfer reference: payout_<payout id>_<epoch milliseconds>."""
    now = now or datetime.utcnow()
    millis = int((now - datetime(1970, 1, 1)).total_seconds() * 1000)
    return f"payout_{payout_id}_{millis}"
