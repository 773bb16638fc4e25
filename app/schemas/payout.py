"""
app/schemas/payout.py

Pydantic models for payout requests.
"""

from pydantic import BaseModel, Field, field_validator
import re

from app.models.payout import PayoutStatus


class PayoutRequest(BaseModel):
    auto_transfer: bool = Field(default=False, description="Start the Paystack transfer immediately")


class SubmitOTPRequest(BaseModel):
    """OTP Paystack sent to the account owner for a transfer."""

    otp: str = Field(..., description="4-8 digit OTP")

    @field_validator("otp")
    @classmethod
    def validate_otp(cls, v: str) -> str:
        v = v.strip()
        if not re.match(r"^\d{4,8}$", v):
            raise ValueError("OTP must be 4 to 8 digits")
        return v


class UpdatePayoutStatusRequest(BaseModel):
    status: PayoutStatus


class ManualTransferRequest(BaseModel):
    """Bank transfer made outside Paystack."""

    reference: str = Field(..., min_length=1, description="Bank transfer reference")

    @field_validator("reference")
    @classmethod
    def clean_reference(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Reference is required")
        return v
