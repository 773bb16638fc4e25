"""
app/models/address.py

Purpose: Saved shipping addresses

- Address documents owned by a user
- The user's default address sorts first
"""

from enum import Enum
from datetime import datetime
from typing import Any, Dict
from bson import ObjectId

from app.models.order import SHIPPING_ADDRESS_FIELDS

DEFAULT_COUNTRY = "Nigeria"
ADDRESS_FIELDS = SHIPPING_ADDRESS_FIELDS + ("email", "type", "is_default")

# Default first, then newest
ADDRESS_SORT = [("is_default", -1), ("created_at", -1)]


class AddressType(str, Enum):
    HOME = "home"
    WORK = "work"
    OTHER = "other"


def new_address_document(user_id: ObjectId, fields: Dict[str, Any]) -> Dict[str, Any]:
    now = datetime.utcnow()
    doc = {field: fields.get(field) for field in ADDRESS_FIELDS}
    doc["country"] = doc.get("country") or DEFAULT_COUNTRY
    doc["type"] = doc.get("type") or AddressType.HOME.value
    doc["is_default"] = bool(doc.get("is_default"))
    doc.update({"user": user_id, "created_at": now, "updated_at": now})
    return doc
