"""
utils/serialization.py

Purpose: Client-safe documents

- Converts ObjectIds (top level, nested, in lists) to strings
- Renames `_id` to `id`
"""

from typing import Any
from bson import ObjectId


def serialize_document(value: Any) -> Any:
    """
    Makes a Mongo document JSON friendly.

    Datetimes are left as-is; the response layer renders them as ISO
    strings.
    """
    if isinstance(value, ObjectId):
        return str(value)

    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if key == "_id":
                result["id"] = serialize_document(item)
            else:
                result[key] = serialize_document(item)
        return result

    if isinstance(value, (list, tuple)):
        return [serialize_document(item) for item in value]

    return value
