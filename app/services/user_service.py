"""
app/services/user_service.py

Purpose: User data management

- Register users, resolving an optional referral code
- Record the pending referral on the referrer
- User retrieval
"""

from app.db.mongo import get_users_collection
from app.models.referral import new_pending_referral
from app.models.user import new_user_document, generate_referral_code
from app.schemas.response import ActionResult
from app.core.logging import get_logger
from utils.serialization import serialize_document
from utils.validation_utils import to_object_id
from pymongo.errors import DuplicateKeyError
from datetime import datetime
from typing import Optional, Dict, Any

logger = get_logger(__name__)

MAX_CODE_ATTEMPTS = 5


async def get_user_by_id(user_id) -> Optional[Dict[str, Any]]:
    """
    Retrieves a user by ID.

    Args:
        user_id: ObjectId or its string form

    Returns:
        User document or None if not found
    """
    oid = to_object_id(user_id)
    if oid is None:
        return None
    users = get_users_collection()
    return await users.find_one({"_id": oid})


async def get_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    if not email:
        return None
    users = get_users_collection()
    return await users.find_one({"email": email.strip().lower()})


async def get_user_by_referral_code(code: str) -> Optional[Dict[str, Any]]:
    if not code:
        return None
    users = get_users_collection()
    return await users.find_one({"referral_program.referral_code": code.strip().upper()})


async def validate_referral_code(code: str) -> ActionResult:
    """
    Checks that a referral code belongs to a user.

    Returns:
        ActionResult with the referrer's name on success
    """
    referrer = await get_user_by_referral_code(code)
    if not referrer:
        return ActionResult.fail(
            "Invalid referral code",
            errors={"referral_code": ["Invalid referral code"]},
        )
    return ActionResult.ok("Valid referral code", data={"referrer_name": referrer.get("name")})


async def _unique_referral_code() -> str:
    users = get_users_collection()
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_referral_code()
        if not await users.find_one({"referral_program.referral_code": code}):
            return code
    raise RuntimeError("Could not generate a unique referral code")


async def register_user(
    name: str,
    email: str,
    referral_code: Optional[str] = None,
    phone: str = "",
) -> ActionResult:
    """
    Creates a user account.

    When referral_code is given, the new user is linked to the referrer
    and a pending referral is added to the referrer's program.

    Args:
        name: Full name
        email: Email address (unique)
        referral_code: Optional code of the referring user
        phone: Optional phone number

    Returns:
        ActionResult with the new user's id and referral code
    """
    users = get_users_collection()

    if not name or not name.strip():
        return ActionResult.fail("Name is required", errors={"name": ["Name is required"]})
    if not email or "@" not in email:
        return ActionResult.fail("A valid email is required", errors={"email": ["A valid email is required"]})

    if await get_user_by_email(email):
        return ActionResult.fail(
            "Email already in use",
            errors={"email": ["Email already in use"]},
        )

    referrer = None
    if referral_code:
        referrer = await get_user_by_referral_code(referral_code)
        if not referrer:
            return ActionResult.fail(
                "Invalid referral code",
                errors={"referral_code": ["Invalid referral code"]},
            )

    user = new_user_document(name, email, referred_by=referrer["_id"] if referrer else None, phone=phone)
    user["referral_program"]["referral_code"] = await _unique_referral_code()

    try:
        result = await users.insert_one(user)
    except DuplicateKeyError:
        logger.warning(f"Duplicate user registration for {email}")
        return ActionResult.fail(
            "Email already in use",
            errors={"email": ["Email already in use"]},
        )

    user_id = result.inserted_id
    logger.info("New user created successfully", extra={"user_id": str(user_id)})

    if referrer:
        await users.update_one(
            {"_id": referrer["_id"]},
            {
                "$push": {"referral_program.pending_referrals": new_pending_referral(user_id)},
                "$set": {"updated_at": datetime.utcnow()},
            },
        )
        logger.info(
            f"Pending referral recorded for referrer {referrer['_id']}",
            extra={"user_id": str(user_id)},
        )

    return ActionResult.ok(
        "Account created successfully",
        data=serialize_document({
            "_id": user_id,
            "referral_code": user["referral_program"]["referral_code"],
            "referred_by": user["referral_program"]["referred_by"],
        }),
    )
