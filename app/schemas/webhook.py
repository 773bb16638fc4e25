"""
app/schemas/webhook.py

Purpose: Paystack webhook payloads

- Event envelope sent by Paystack: {"event": "...", "data": {...}}
- Event names the webhook acts on
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict

CHARGE_SUCCESS = "charge.success"
TRANSFER_EVENTS = ("transfer.success", "transfer.failed", "transfer.reversed")


class PaystackEvent(BaseModel):
    """
    Paystack webhook event.
    Only `event` and `data` are read; other keys are ignored.
    """
    event: str = Field(..., description="Event name, e.g. charge.success")
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "event": "charge.success",
                "data": {
                    "reference": "T123456789",
                    "amount": 1550000,
                    "metadata": {"order_id": "ORD-12345678"},
                },
            }
        }
    )
