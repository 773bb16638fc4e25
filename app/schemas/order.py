"""
app/schemas/order.py

Pydantic models for order API requests.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional

from app.models.order import OrderStatus


class OrderItemRequest(BaseModel):
    """One line of a new order."""

    product_id: str = Field(..., description="Product id")
    quantity: int = Field(..., ge=1, description="Units ordered")
    discounted_price: Optional[float] = Field(default=None, ge=0, description="Price charged per unit")


class CreateOrderRequest(BaseModel):
    """Request schema for order creation."""

    user_id: str = Field(..., description="Buyer id")
    shipping_address_id: str = Field(..., description="Saved address id of the buyer")
    items: List[OrderItemRequest] = Field(..., min_length=1)
    shipping_price: Optional[float] = Field(default=None, ge=0, description="Quoted when omitted")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user_id": "65f1c0a2e4b0a1b2c3d4e5f6",
                "shipping_address_id": "65f1c0a2e4b0a1b2c3d4e5f7",
                "items": [{"product_id": "65f1c0a2e4b0a1b2c3d4e5f8", "quantity": 2}],
            }
        }
    )


class VerifyPaymentRequest(BaseModel):
    """Request schema for payment verification after Paystack checkout."""

    reference: str = Field(..., min_length=1, description="Paystack transaction reference")

    @field_validator("reference")
    @classmethod
    def clean_reference(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Reference is required")
        return v


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus


class ShippingAddressRequest(BaseModel):
    """Replacement shipping address for an unpaid order."""

    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: Optional[str] = None
    country: str = Field(default="Nigeria")


class ShippingQuoteRequest(BaseModel):
    state: str = Field(..., min_length=1)
    city: Optional[str] = None
    order_total: float = Field(default=0, ge=0)
