"""
app/models/settings.py

Purpose: Referral payout settings document

- One document holds the minimum payout amount and referral percentage
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from app.core.config import settings

MIN_PAYOUT_FLOOR = 1000


def default_settings_document() -> Dict[str, Any]:
    now = datetime.utcnow()
    return {
        "min_payout_amount": settings.DEFAULT_MIN_PAYOUT_AMOUNT,
        "referral_percentage": settings.DEFAULT_REFERRAL_PERCENTAGE,
        "created_at": now,
        "updated_at": now,
    }


def validate_settings_update(
    min_payout_amount: Optional[float],
    referral_percentage: Optional[float],
) -> Dict[str, List[str]]:
    """Returns a field-keyed error map (empty when valid)."""
    errors: Dict[str, List[str]] = {}

    if min_payout_amount is None:
        errors["min_payout_amount"] = ["Minimum payout amount is required"]
    elif min_payout_amount < MIN_PAYOUT_FLOOR:
        errors["min_payout_amount"] = [f"Minimum payout amount must be at least {MIN_PAYOUT_FLOOR}"]

    if referral_percentage is None:
        errors["referral_percentage"] = ["Referral percentage is required"]
    elif not 0 <= referral_percentage <= 100:
        errors["referral_percentage"] = ["Referral percentage must be between 0 and 100"]

    return errors
