"""
app/schemas/address.py

Pydantic models for saved address requests.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
import re

from app.models.address import AddressType, DEFAULT_COUNTRY

PHONE_PATTERN = re.compile(r"^\+?\d{10,14}$")


def _clean_phone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = re.sub(r"[\s-]", "", v)
    if not PHONE_PATTERN.match(v):
        raise ValueError("Phone number must be 10 to 14 digits")
    return v


class AddressRequest(BaseModel):
    """New saved address."""

    full_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(...)
    address: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: Optional[str] = None
    country: str = Field(default=DEFAULT_COUNTRY)
    email: Optional[str] = None
    type: AddressType = AddressType.HOME
    is_default: bool = False

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return _clean_phone(v)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "full_name": "Ada Obi",
                "phone": "08012345678",
                "address": "12 Allen Avenue",
                "city": "Ikeja",
                "state": "Lagos",
                "is_default": True,
            }
        }
    )


class AddressUpdateRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = None
    address: Optional[str] = Field(default=None, min_length=1, max_length=200)
    city: Optional[str] = Field(default=None, min_length=1)
    state: Optional[str] = Field(default=None, min_length=1)
    postal_code: Optional[str] = None
    country: Optional[str] = None
    email: Optional[str] = None
    type: Optional[AddressType] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _clean_phone(v)
