"""
utils/money_utils.py

Purpose: Money helpers

- Naira <-> kobo conversion for Paystack amounts
- Tolerant amount comparison
- Paystack transaction charge estimates
"""

from typing import Optional

# Paystack local fees
CARD_PERCENTAGE = 1.5
CARD_FLAT_FEE = 100
INTERNATIONAL_PERCENTAGE = 3.9
FLAT_CHANNEL_FEE = 100
MINIMUM_CHARGE = 100

FLAT_FEE_CHANNELS = ("bank", "bank_transfer", "ussd", "qr", "mobile_money")


def to_kobo(amount: float) -> int:
    """Naira amount to the integer kobo value Paystack expects."""
    return int(round(float(amount) * 100))


def from_kobo(amount: Optional[int]) -> float:
    if not amount:
        return 0.0
    return round(amount / 100, 2)


def amounts_match(paid: float, expected: float, tolerance: float = 0.01) -> bool:
    """True when two amounts differ by no more than tolerance."""
    return abs(float(paid) - float(expected)) <= tolerance + 1e-9


def format_naira(amount: Optional[float]) -> str:
    return f"₦{float(amount or 0):,.2f}"


def calculate_paystack_charges(amount: float, channel: Optional[str] = "card") -> float:
    """
    Estimated Paystack fee for a transaction.

    - card: 1.5% + ₦100
    - international: 3.9%
    - bank, ussd, qr, mobile_money: flat ₦100
    Charges are never below ₦100.
    """
    amount = float(amount or 0)
    channel = (channel or "card").lower()

    if channel in FLAT_FEE_CHANNELS:
        charge = FLAT_CHANNEL_FEE
    elif channel in ("international", "international_card"):
        charge = amount * INTERNATIONAL_PERCENTAGE / 100
    else:
        charge = amount * CARD_PERCENTAGE / 100 + CARD_FLAT_FEE

    return round(max(charge, MINIMUM_CHARGE), 2)
