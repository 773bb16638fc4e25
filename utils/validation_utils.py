"""
utils/validation_utils.py

Purpose: Input validation

- Nigerian bank account (NUBAN) and bank code validation
- Transfer OTP format
- ObjectId parsing for ids received over HTTP
- Input sanitization for search terms
"""

import re
from typing import Any, Dict, List, Optional
from bson import ObjectId
from bson.errors import InvalidId


def validate_account_number(account_number: str) -> bool:
    """
    Validates a NUBAN account number (exactly 10 digits).

    Args:
        account_number: Account number string

    Returns:
        True if valid, False otherwise
    """
    if not account_number:
        return False

    return bool(re.match(r"^\d{10}$", account_number.strip()))


def validate_bank_code(bank_code: str) -> bool:
    """
    Validates a Paystack bank code (3 to 6 digits).
    """
    if not bank_code:
        return False

    return bool(re.match(r"^\d{3,6}$", bank_code.strip()))


def bank_details_errors(account_number: Optional[str], bank_code: Optional[str]) -> Dict[str, List[str]]:
    """
    Field-keyed errors for a bank details form.

    Returns:
        Empty dict when both fields are valid
    """
    errors: Dict[str, List[str]] = {}

    if not account_number:
        errors["account_number"] = ["Account number is required"]
    elif not validate_account_number(account_number):
        errors["account_number"] = ["Account number must be exactly 10 digits"]

    if not bank_code:
        errors["bank_code"] = ["Bank code is required"]
    elif not validate_bank_code(bank_code):
        errors["bank_code"] = ["Bank code must be 3 to 6 digits"]

    return errors


def validate_otp_format(otp: str) -> bool:
    """
    Validates transfer OTP format (4 to 8 digits).

    Args:
        otp: OTP string

    Returns:
        True if the OTP looks valid
    """
    if not otp:
        return False

    return bool(re.match(r"^\d{4,8}$", otp.strip()))


def is_valid_object_id(value: Any) -> bool:
    if isinstance(value, ObjectId):
        return True
    return isinstance(value, str) and ObjectId.is_valid(value)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """
    Converts a string id to ObjectId.

    Returns:
        ObjectId, or None if the value is not a valid id
    """
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def sanitize_input(text: str, max_length: int = 100) -> str:
    """
    Sanitizes user search input.

    Args:
        text: Input text
        max_length: Maximum allowed length

    Returns:
        Sanitized text
    """
    if not text:
        return ""

    # Trim to max length
    text = text[:max_length]

    # Remove potentially dangerous characters
    text = re.sub(r"[<>{}\[\]$]", "", text)

    # Normalize whitespace
    text = " ".join(text.split())

    return text.strip()


def search_regex(text: str) -> Optional[Dict[str, str]]:
    """Case-insensitive Mongo regex for a sanitized search term."""
    text = sanitize_input(text)
    if not text:
        return None
    return {"$regex": re.escape(text), "$options": "i"}
