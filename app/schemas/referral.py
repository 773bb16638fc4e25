"""
app/schemas/referral.py

Pydantic models for referral program requests.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Literal, Optional
import re


class RegisterUserRequest(BaseModel):
    """Account creation, optionally through a referral link."""

    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3)
    phone: str = Field(default="")
    referral_code: Optional[str] = Field(default=None, description="Referrer's code from ?ref=")

    @field_validator("referral_code")
    @classmethod
    def clean_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        return v or None


class BankDetailsRequest(BaseModel):
    """Bank account to verify with Paystack."""

    account_number: str = Field(..., description="10-digit NUBAN")
    bank_code: str = Field(..., description="Paystack bank code")

    @field_validator("account_number")
    @classmethod
    def validate_account_number(cls, v: str) -> str:
        v = v.strip()
        if not re.match(r"^\d{10}$", v):
            raise ValueError("Account number must be 10 digits")
        return v

    @field_validator("bank_code")
    @classmethod
    def validate_bank_code(cls, v: str) -> str:
        v = v.strip()
        if not re.match(r"^\d{3,6}$", v):
            raise ValueError("Invalid bank code")
        return v

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"account_number": "0123456789", "bank_code": "058"}
        }
    )


class ReferralStatusRequest(BaseModel):
    action: Literal["approve", "reject"]


class ReferralSettingsRequest(BaseModel):
    """Admin update of the referral payout settings."""

    min_payout_amount: float = Field(..., ge=1000)
    referral_percentage: float = Field(..., ge=0, le=100)
