"""
app/models/user.py

Purpose: User document model

- Profile fields and purchase tracking
- Embedded referral program (code, referrer, ledgers, bank details,
  cached Paystack recipient, payout history)
"""

import secrets
import string
from enum import Enum
from datetime import datetime
from typing import Any, Dict, Optional
from bson import ObjectId

REFERRAL_CODE_LENGTH = 8
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits


class UserRole(str, Enum):
    ADMIN = "Admin"
    USER = "User"
    CUSTOMER = "Customer"


class UserStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


def generate_referral_code() -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


def new_referral_program(referred_by: Optional[ObjectId] = None) -> Dict[str, Any]:
    return {
        "referral_code": generate_referral_code(),
        "referred_by": referred_by,
        "pending_referrals": [],
        "completed_referrals": [],
        "referral_earnings": 0,
        "total_earned": 0,
        "paystack_recipient_code": None,
        "bank_details": None,
        "payout_history": [],
        "min_payout_settings": None,
    }


def new_user_document(
    name: str,
    email: str,
    referred_by: Optional[ObjectId] = None,
    phone: str = "",
    role: UserRole = UserRole.CUSTOMER,
) -> Dict[str, Any]:
    now = datetime.utcnow()
    return {
        "name": name.strip().upper(),
        "email": email.strip().lower(),
        "phone": phone.strip(),
        "role": role.value,
        "status": UserStatus.ACTIVE.value,
        "has_made_purchase": False,
        "first_purchase_date": None,
        "last_purchase_date": None,
        "referral_program": new_referral_program(referred_by),
        "created_at": now,
        "updated_at": now,
    }


def new_bank_details(account_name: str, account_number: str, bank_code: str) -> Dict[str, Any]:
    """Bank details verified against Paystack account resolution."""
    return {
        "account_name": account_name,
        "account_number": account_number,
        "bank_code": bank_code,
        "verified": True,
        "last_verified": datetime.utcnow(),
    }


def bank_details_complete(bank_details: Optional[Dict[str, Any]]) -> bool:
    if not bank_details:
        return False
    return all(bank_details.get(field) for field in ("account_name", "account_number", "bank_code"))
