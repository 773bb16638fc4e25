"""
app/services/address_service.py

Purpose: Saved shipping addresses

- Create, list, update and delete a user's addresses
- One default address per user
- Every operation is scoped to the owning user
"""

from datetime import datetime
from typing import Any, Dict
from pymongo import ReturnDocument

from app.db.mongo import get_addresses_collection, get_users_collection
from app.models.address import ADDRESS_FIELDS, ADDRESS_SORT, new_address_document
from app.schemas.response import ActionResult
from app.core.logging import get_logger, LogContext
from utils.serialization import serialize_document
from utils.validation_utils import to_object_id

logger = get_logger(__name__)


def _ids(user_id, address_id=None):
    user_oid = to_object_id(user_id)
    address_oid = to_object_id(address_id) if address_id is not None else None
    return user_oid, address_oid


async def _clear_default(user_oid, keep=None):
    query: Dict[str, Any] = {"user": user_oid, "is_default": True}
    if keep is not None:
        query["_id"] = {"$ne": keep}
    await get_addresses_collection().update_many(query, {"$set": {"is_default": False}})


async def create_address(user_id, fields: Dict[str, Any]) -> ActionResult:
    """
    Saves a new address for the user.

    The first address a user saves becomes the default; a new address
    marked default takes over from the previous one.
    """
    user_oid, _ = _ids(user_id)
    if user_oid is None:
        return ActionResult.fail("Invalid user ID")

    with LogContext(user_id=str(user_oid)):
        try:
            if not await get_users_collection().find_one({"_id": user_oid}):
                return ActionResult.fail("User not found")

            addresses = get_addresses_collection()
            doc = new_address_document(user_oid, fields)
            if not await addresses.count_documents({"user": user_oid}):
                doc["is_default"] = True

            result = await addresses.insert_one(doc)
            doc["_id"] = result.inserted_id
            if doc["is_default"]:
                await _clear_default(user_oid, keep=doc["_id"])

            logger.info("📍 Address created")
            return ActionResult.ok("Address created successfully", data=serialize_document(doc))

        except Exception as e:
            logger.error(f"Address creation failed: {e}", exc_info=True)
            return ActionResult.fail("Failed to create address", detail=str(e))


async def get_user_addresses(user_id) -> ActionResult:
    user_oid, _ = _ids(user_id)
    if user_oid is None:
        return ActionResult.fail("Invalid user ID")

    try:
        cursor = get_addresses_collection().find({"user": user_oid}).sort(ADDRESS_SORT)
        addresses = await cursor.to_list(length=None)
        return ActionResult.ok(data=[serialize_document(a) for a in addresses])

    except Exception as e:
        logger.error(f"Error fetching addresses: {e}", exc_info=True)
        return ActionResult.fail("Failed to fetch addresses", detail=str(e))


async def get_address(user_id, address_id) -> ActionResult:
    user_oid, address_oid = _ids(user_id, address_id)
    if user_oid is None or address_oid is None:
        return ActionResult.fail("Invalid user or address ID")

    address = await get_addresses_collection().find_one({"_id": address_oid, "user": user_oid})
    if not address:
        return ActionResult.fail("Address not found")
    return ActionResult.ok(data=serialize_document(address))


async def update_address(user_id, address_id, fields: Dict[str, Any]) -> ActionResult:
    """
    Updates the given address fields.

    Orders keep the address snapshot taken when they were placed, so
    editing a saved address never changes an existing order.
    """
    user_oid, address_oid = _ids(user_id, address_id)
    if user_oid is None or address_oid is None:
        return ActionResult.fail("Invalid user or address ID")

    changes = {
        key: value for key, value in fields.items()
        if key in ADDRESS_FIELDS and key != "is_default" and value is not None
    }
    if not changes:
        return ActionResult.fail("No address fields to update")

    with LogContext(user_id=str(user_oid)):
        try:
            changes["updated_at"] = datetime.utcnow()
            address = await get_addresses_collection().find_one_and_update(
                {"_id": address_oid, "user": user_oid},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
            if not address:
                return ActionResult.fail("Address not found")

            return ActionResult.ok("Address updated successfully", data=serialize_document(address))

        except Exception as e:
            logger.error(f"Error updating address: {e}", exc_info=True)
            return ActionResult.fail("Failed to update address", detail=str(e))


async def set_default_address(user_id, address_id) -> ActionResult:
    user_oid, address_oid = _ids(user_id, address_id)
    if user_oid is None or address_oid is None:
        return ActionResult.fail("Invalid user or address ID")

    with LogContext(user_id=str(user_oid)):
        try:
            address = await get_addresses_collection().find_one_and_update(
                {"_id": address_oid, "user": user_oid},
                {"$set": {"is_default": True, "updated_at": datetime.utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
            if not address:
                return ActionResult.fail("Address not found")

            await _clear_default(user_oid, keep=address_oid)
            return ActionResult.ok("Default address updated", data=serialize_document(address))

        except Exception as e:
            logger.error(f"Error setting default address: {e}", exc_info=True)
            return ActionResult.fail("Failed to set default address", detail=str(e))


async def delete_address(user_id, address_id) -> ActionResult:
    """
    Deletes an address. When it was the default, the newest remaining
    address becomes the default.
    """
    user_oid, address_oid = _ids(user_id, address_id)
    if user_oid is None or address_oid is None:
        return ActionResult.fail("Invalid user or address ID")

    with LogContext(user_id=str(user_oid)):
        try:
            addresses = get_addresses_collection()
            address = await addresses.find_one({"_id": address_oid, "user": user_oid})
            if not address:
                return ActionResult.fail("Address not found")

            await addresses.delete_one({"_id": address_oid, "user": user_oid})

            if address.get("is_default"):
                remaining = await addresses.find({"user": user_oid}).sort("created_at", -1).to_list(length=1)
                if remaining:
                    await addresses.update_one({"_id": remaining[0]["_id"]}, {"$set": {"is_default": True}})

            logger.info("🗑️ Address deleted")
            return ActionResult.ok("Address deleted successfully", data=serialize_document(address))

        except Exception as e:
            logger.error(f"Error deleting address: {e}", exc_info=True)
            return ActionResult.fail("Failed to delete address", detail=str(e))
