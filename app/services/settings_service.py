"""
app/services/settings_service.py

Purpose: Referral payout settings

- Fetch-or-create the settings document
- Validated admin updates
"""

from datetime import datetime
from typing import Any, Dict, Optional
from pymongo import ReturnDocument

from app.db.mongo import get_settings_collection
from app.models.settings import default_settings_document, validate_settings_update
from app.schemas.response import ActionResult
from app.core.logging import get_logger
from utils.serialization import serialize_document

logger = get_logger(__name__)


async def get_or_create_settings(session=None) -> Dict[str, Any]:
    """
    Returns the settings document, creating it with defaults when absent.

    The upsert keeps concurrent first calls from creating two documents.
    """
    collection = get_settings_collection()

    existing = await collection.find_one({}, session=session)
    if existing:
        return existing

    logger.info("Creating default referral payout settings")
    return await collection.find_one_and_update(
        {},
        {"$setOnInsert": default_settings_document()},
        upsert=True,
        return_document=ReturnDocument.AFTER,
        session=session,
    )


async def get_referral_settings() -> ActionResult:
    try:
        doc = await get_or_create_settings()
        return ActionResult.ok(data=_public_settings(doc))
    except Exception as e:
        logger.error(f"Failed to load referral settings: {e}", exc_info=True)
        return ActionResult.fail("Failed to load referral settings")


async def update_referral_settings(
    min_payout_amount: Optional[float],
    referral_percentage: Optional[float],
) -> ActionResult:
    """
    Updates the minimum payout amount and referral percentage.

    Args:
        min_payout_amount: At least 1000
        referral_percentage: Between 0 and 100
    """
    errors = validate_settings_update(min_payout_amount, referral_percentage)
    if errors:
        return ActionResult.fail("Invalid settings", errors=errors)

    try:
        existing = await get_or_create_settings()

        doc = await get_settings_collection().find_one_and_update(
            {"_id": existing["_id"]},
            {
                "$set": {
                    "min_payout_amount": float(min_payout_amount),
                    "referral_percentage": float(referral_percentage),
                    "updated_at": datetime.utcnow(),
                }
            },
            return_document=ReturnDocument.AFTER,
        )

        logger.info(
            f"Referral settings updated: min_payout={min_payout_amount}, "
            f"percentage={referral_percentage}"
        )
        return ActionResult.ok("Settings updated successfully", data=_public_settings(doc))

    except Exception as e:
        logger.error(f"Failed to update referral settings: {e}", exc_info=True)
        return ActionResult.fail("Failed to update settings")


def _public_settings(doc: Dict[str, Any]) -> Dict[str, Any]:
    return serialize_document({
        "_id": doc.get("_id"),
        "min_payout_amount": doc.get("min_payout_amount"),
        "referral_percentage": doc.get("referral_percentage"),
        "updated_at": doc.get("updated_at"),
    })
