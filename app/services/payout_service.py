"""
app/services/payout_service.py

Purpose: Referral payout workflow

- Payout requests from eligible referral credits
- Paystack transfers (recipient, transfer, OTP finalize/resend)
- Status reconciliation by polling and by webhook
- Admin overrides (status, manual transfer, retry)
- Payout history

Payout guards are check-then-act; two concurrent requests for the same
user can both pass the outstanding check. Paystack's reference
deduplication is the backstop for transfers.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from app.db.mongo import get_users_collection
from app.models.payout import (
    PayoutStatus,
    PayoutPaymentStatus,
    IN_FLIGHT_STATUSES,
    find_payout,
    generate_transfer_reference,
    is_valid_payout_transition,
    new_payout_record,
    status_update_for_gateway,
)
from app.models.referral import (
    ReferralPaymentStatus,
    eligible_referrals,
    outstanding_payment_count,
    sum_amounts,
)
from app.models.user import bank_details_complete
from app.services.paystack_service import get_paystack_service
from app.services.settings_service import get_or_create_settings
from app.schemas.response import ActionResult
from app.core.exceptions import PaymentGatewayError
from app.core.logging import get_logger, LogContext
from utils.money_utils import format_naira
from utils.serialization import serialize_document
from utils.validation_utils import to_object_id, validate_otp_format

logger = get_logger(__name__)

PAYOUT_HISTORY = "referral_program.payout_history"
COMPLETED_REFERRALS = "referral_program.completed_referrals"

PAYOUT_SORT_FIELDS = ("requested_at", "amount", "processed_at")
PAYOUT_HISTORY_STATUSES = ("pending", "processing", "otp", "completed", "failed", "cancelled")

# Eligible credit: completed, unpaid, not part of a request
ELIGIBLE_FILTER = {
    "elem.status": "completed",
    "elem.payment_status": "pending",
    "elem.payment_request": False,
}
PROCESSING_FILTER = {"elem.payment_status": "processing"}


# ==============================================
# Helpers
# ==============================================

def _payout_query(user_oid, payout_oid) -> Dict[str, Any]:
    return {"_id": user_oid, f"{PAYOUT_HISTORY}.payout_id": payout_oid}


def _payout_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Prefixes payout fields with the positional payout path."""
    return {f"{PAYOUT_HISTORY}.$.{key}": value for key, value in fields.items()}


def _referral_fields(referrals: Optional[str], now: datetime) -> Tuple[Dict[str, Any], Optional[List[Dict[str, Any]]]]:
    """
    Updates applied to the credits locked by the in-flight payout.

    settle: processing -> success, paid_at set
    release: processing -> pending, payment_request False
    lock: eligible -> processing, payment_request True
    """
    if referrals == "settle":
        return {
            f"{COMPLETED_REFERRALS}.$[elem].payment_status": ReferralPaymentStatus.SUCCESS.value,
            f"{COMPLETED_REFERRALS}.$[elem].paid_at": now,
        }, [PROCESSING_FILTER]

    if referrals == "release":
        return {
            f"{COMPLETED_REFERRALS}.$[elem].payment_status": ReferralPaymentStatus.PENDING.value,
            f"{COMPLETED_REFERRALS}.$[elem].payment_request": False,
        }, [PROCESSING_FILTER]

    if referrals == "lock":
        return {
            f"{COMPLETED_REFERRALS}.$[elem].payment_status": ReferralPaymentStatus.PROCESSING.value,
            f"{COMPLETED_REFERRALS}.$[elem].payment_request": True,
        }, [ELIGIBLE_FILTER]

    return {}, None


async def _update_payout(
    user_oid,
    payout_oid,
    fields: Dict[str, Any],
    referrals: Optional[str] = None,
    session=None,
):
    """
    Sets payout fields and, in the same write, moves the locked credits.

    Args:
        fields: Payout fields (relative to the payout record)
        referrals: None, "settle", "release" or "lock"
    """
    now = datetime.utcnow()
    update = _payout_fields(fields)
    referral_update, array_filters = _referral_fields(referrals, now)
    update.update(referral_update)
    update["updated_at"] = now

    kwargs = {"session": session}
    if array_filters:
        kwargs["array_filters"] = array_filters

    return await get_users_collection().update_one(
        _payout_query(user_oid, payout_oid),
        {"$set": update},
        **kwargs,
    )


def _referrals_for_status(status: str) -> Optional[str]:
    if status == PayoutStatus.COMPLETED.value:
        return "settle"
    if status in (PayoutStatus.FAILED.value, PayoutStatus.CANCELLED.value):
        return "release"
    return None


async def _load_payout(user_id, payout_id):
    """
    Returns (user, payout, error_result).
    """
    user_oid = to_object_id(user_id)
    payout_oid = to_object_id(payout_id)
    if user_oid is None or payout_oid is None:
        return None, None, ActionResult.fail("Invalid user or payout ID")

    user = await get_users_collection().find_one(_payout_query(user_oid, payout_oid))
    payout = find_payout((user or {}).get("referral_program"), payout_oid)
    if not payout:
        return None, None, ActionResult.fail("Payout not found")

    return user, payout, None


def _public_payout(payout: Dict[str, Any]) -> Dict[str, Any]:
    data = serialize_document(payout)
    data["formatted_amount"] = format_naira(payout.get("amount"))
    return data


# ==============================================
# User actions
# ==============================================

async def request_payout(user_id, auto_transfer: bool = False) -> ActionResult:
    """
    Requests a payout of all eligible referral credits.

    Refused while an earlier payout or credit is still outstanding, when
    bank details are missing or unverified, and when the eligible total
    is below the minimum payout.

    Args:
        user_id: Requesting user
        auto_transfer: Start the Paystack transfer immediately

    Returns:
        ActionResult with the payout record; failures for the outstanding
        guard carry data = {"has_pending_payments": True, "pending_count"}
    """
    user_oid = to_object_id(user_id)
    if user_oid is None:
        return ActionResult.fail("Invalid user ID")

    with LogContext(user_id=str(user_oid)):
        try:
            users = get_users_collection()
            user = await users.find_one({"_id": user_oid})
            if not user:
                return ActionResult.fail("User not found")

            program = user.get("referral_program") or {}

            pending_count = outstanding_payment_count(program)
            if pending_count:
                plural = "s" if pending_count > 1 else ""
                return ActionResult.fail(
                    f"You have {pending_count} pending payment{plural} awaiting approval. "
                    "Please wait for approval before requesting another payout.",
                    data={"has_pending_payments": True, "pending_count": pending_count},
                )

            bank_details = program.get("bank_details")
            if not bank_details or not bank_details.get("account_number"):
                return ActionResult.fail("Bank details not set up")
            if not bank_details_complete(bank_details):
                return ActionResult.fail("Bank details incomplete")
            if not bank_details.get("verified"):
                return ActionResult.fail("Bank details not verified")

            settings_doc = await get_or_create_settings()
            min_payout = settings_doc.get("min_payout_amount")

            credits = eligible_referrals(program)
            amount = sum_amounts(credits)

            if amount < min_payout:
                return ActionResult.fail(
                    f"Minimum payout amount is {format_naira(min_payout)}. "
                    f"You have {format_naira(amount)} eligible for payout."
                )

            payout = new_payout_record(amount, bank_details)
            now = datetime.utcnow()
            lock_fields, array_filters = _referral_fields("lock", now)

            result = await users.update_one(
                {"_id": user_oid},
                {
                    "$push": {PAYOUT_HISTORY: payout},
                    "$set": {**lock_fields, "updated_at": now},
                },
                array_filters=array_filters,
            )
            if result.modified_count == 0:
                return ActionResult.fail("Failed to submit payout request")

            logger.info(f"💸 Payout of {amount} requested ({len(credits)} referrals)")

            data = _public_payout(payout)
            data["updated_referrals_count"] = len(credits)

            if auto_transfer:
                transfer = await initiate_payout_transfer(user_oid, payout["payout_id"])
                data["transfer"] = transfer.model_dump()

            return ActionResult.ok("Payout request submitted successfully", data=data)

        except Exception as e:
            logger.error(f"Request payout error: {e}", exc_info=True)
            return ActionResult.fail("Failed to request payout", detail=str(e))


async def initiate_payout_transfer(user_id, payout_id) -> ActionResult:
    """
    Sends a pending payout to the user's bank account via Paystack.

    The recipient code is created once and cached on the user. The
    payout moves to `otp` when Paystack asks for an OTP, otherwise to
    `processing`.
    """
    with LogContext(user_id=str(user_id), payout_id=str(payout_id)):
        try:
            user, payout, error = await _load_payout(user_id, payout_id)
            if error:
                return error

            status = payout.get("status")
            if status == PayoutStatus.COMPLETED.value:
                return ActionResult.fail("Payout has already been completed")
            if status in [s.value for s in IN_FLIGHT_STATUSES] or payout.get("payment_status") == PayoutPaymentStatus.PROCESSING.value:
                return ActionResult.fail("Payout is already being processed")
            if not is_valid_payout_transition(status, PayoutStatus.PROCESSING):
                return ActionResult.fail(f"Payout cannot be transferred from status {status}")

            program = user.get("referral_program") or {}
            bank_details = program.get("bank_details")
            if not bank_details:
                return ActionResult.fail("User bank details not found")

            paystack = get_paystack_service()
            users = get_users_collection()

            recipient_code = program.get("paystack_recipient_code")
            if not recipient_code:
                try:
                    recipient_code = await paystack.create_transfer_recipient(bank_details, user.get("name"))
                except PaymentGatewayError as e:
                    return ActionResult.fail(e.message or "Failed to create recipient")

                await users.update_one(
                    {"_id": user["_id"]},
                    {"$set": {"referral_program.paystack_recipient_code": recipient_code}},
                )

            reference = generate_transfer_reference(payout["payout_id"])
            try:
                transfer = await paystack.initiate_transfer(
                    recipient_code,
                    payout["amount"],
                    f"Payout for {user.get('name')}",
                    reference,
                )
            except PaymentGatewayError as e:
                await _update_payout(
                    user["_id"],
                    payout["payout_id"],
                    {"last_attempt": datetime.utcnow(), "error": e.message},
                )
                return ActionResult.fail(e.message or "Failed to initiate transfer")

            requires_otp = transfer["status"] == "otp_required"
            now = datetime.utcnow()
            await _update_payout(
                user["_id"],
                payout["payout_id"],
                {
                    "status": PayoutStatus.OTP.value if requires_otp else PayoutStatus.PROCESSING.value,
                    "payment_status": PayoutPaymentStatus.PROCESSING.value,
                    "paystack_reference": transfer["reference"],
                    "transfer_code": transfer.get("transfer_code"),
                    "last_attempt": now,
                    "processed_at": now,
                    "error": None,
                },
            )

            logger.info(f"Transfer initiated, requires_otp={requires_otp}", extra={"reference": transfer["reference"]})
            return ActionResult.ok(
                transfer.get("message") or "Transfer initiated successfully",
                data={"requires_otp": requires_otp, "reference": transfer["reference"]},
            )

        except Exception as e:
            logger.error(f"Error initiating transfer: {e}", exc_info=True)
            return ActionResult.fail("Failed to initiate transfer", detail=str(e))


async def submit_payout_otp(user_id, payout_id, otp: str) -> ActionResult:
    """
    Finalizes an OTP-protected transfer.

    A rejected OTP leaves the payout in `otp` so the user can retry.
    """
    if not validate_otp_format(otp):
        return ActionResult.fail("Invalid OTP", errors={"otp": ["Enter the OTP sent by Paystack"]})

    with LogContext(user_id=str(user_id), payout_id=str(payout_id)):
        try:
            user, payout, error = await _load_payout(user_id, payout_id)
            if error:
                return error

            if payout.get("status") != PayoutStatus.OTP.value:
                return ActionResult.fail(f"Payout is not in OTP state. Current status: {payout.get('status')}")

            if not payout.get("transfer_code"):
                return ActionResult.fail("No transfer code found for OTP submission")

            try:
                result = await get_paystack_service().finalize_transfer(payout["transfer_code"], otp.strip())
            except PaymentGatewayError as e:
                logger.warning(f"OTP rejected: {e.message}")
                return ActionResult.fail(e.message or "Failed to submit OTP")

            fields = status_update_for_gateway(result.get("status"))
            await _update_payout(
                user["_id"],
                payout["payout_id"],
                fields,
                referrals=_referrals_for_status(fields["status"]),
            )

            logger.info(f"OTP accepted, transfer status: {result.get('status')}")
            return ActionResult.ok("OTP verified successfully", data={"status": result.get("status")})

        except Exception as e:
            logger.error(f"Error submitting OTP: {e}", exc_info=True)
            return ActionResult.fail("Failed to submit OTP", detail=str(e))


async def resend_payout_otp(user_id, payout_id) -> ActionResult:
    """
    Asks Paystack to resend the transfer OTP.

    When the transfer code was never stored, it is fetched from Paystack
    using the payout reference.
    """
    with LogContext(user_id=str(user_id), payout_id=str(payout_id)):
        try:
            user, payout, error = await _load_payout(user_id, payout_id)
            if error:
                return error

            if payout.get("status") not in [s.value for s in IN_FLIGHT_STATUSES]:
                return ActionResult.fail(
                    f"Payout is not in a state that allows OTP resend. Current status: {payout.get('status')}"
                )

            paystack = get_paystack_service()
            transfer_code = payout.get("transfer_code")

            if not transfer_code and payout.get("paystack_reference"):
                try:
                    details = await paystack.verify_transfer(payout["paystack_reference"])
                except PaymentGatewayError as e:
                    logger.warning(f"Could not fetch transfer code: {e.message}")
                    details = {}
                if details.get("transfer_code"):
                    transfer_code = details["transfer_code"]
                    await _update_payout(
                        user["_id"],
                        payout["payout_id"],
                        {"transfer_code": transfer_code, "last_attempt": datetime.utcnow()},
                    )

            if not transfer_code:
                return ActionResult.fail("No transfer code found for OTP resend. Please initiate a new transfer.")

            try:
                message = await paystack.resend_transfer_otp(transfer_code)
            except PaymentGatewayError as e:
                return ActionResult.fail(e.message or "Failed to resend OTP")

            await _update_payout(user["_id"], payout["payout_id"], {"last_attempt": datetime.utcnow()})

            logger.info("🔁 Transfer OTP resent")
            return ActionResult.ok(message or "OTP resent successfully")

        except Exception as e:
            logger.error(f"Error resending OTP: {e}", exc_info=True)
            return ActionResult.fail("Failed to resend OTP", detail=str(e))


async def check_payout_status(user_id, payout_id) -> ActionResult:
    """
    Polls Paystack for the transfer and updates the payout.

    An invalid or unknown reference marks an in-flight payout failed and
    releases its credits; settled payouts are left as they are.
    """
    with LogContext(user_id=str(user_id), payout_id=str(payout_id)):
        try:
            user, payout, error = await _load_payout(user_id, payout_id)
            if error:
                return error

            reference = payout.get("paystack_reference")
            if not reference:
                return ActionResult.fail("No Paystack reference found for this payout")

            try:
                result = await get_paystack_service().verify_transfer(reference)
            except PaymentGatewayError as e:
                message = (e.message or "").lower()
                if "invalid" not in message and "not found" not in message:
                    return ActionResult.fail(e.message or "Failed to check payout status")

                if not is_valid_payout_transition(payout.get("status"), PayoutStatus.FAILED):
                    logger.warning(
                        f"Transfer not found on Paystack; payout left {payout.get('status')}",
                        extra={"reference": reference},
                    )
                    return ActionResult.fail(
                        f"Transfer not found on Paystack. Payout remains {payout.get('status')}."
                    )

                await _update_payout(
                    user["_id"],
                    payout["payout_id"],
                    {
                        "status": PayoutStatus.FAILED.value,
                        "payment_status": PayoutPaymentStatus.FAILED.value,
                        "error": "Invalid Paystack reference - transfer may not have been created",
                        "last_attempt": datetime.utcnow(),
                    },
                    referrals="release",
                )
                logger.warning("Payout marked failed: invalid Paystack reference", extra={"reference": reference})
                return ActionResult.fail(
                    "Invalid Paystack reference. The transfer may not have been created successfully."
                )

            gateway_status = result.get("status")
            fields = status_update_for_gateway(gateway_status)

            if is_valid_payout_transition(payout.get("status"), fields["status"]):
                await _update_payout(
                    user["_id"],
                    payout["payout_id"],
                    fields,
                    referrals=_referrals_for_status(fields["status"]),
                )
            else:
                logger.info(f"Ignoring gateway status {gateway_status} for payout in {payout.get('status')}")

            return ActionResult.ok(
                f"Transfer status: {gateway_status}",
                data={"status": gateway_status, "details": serialize_document(result.get("data"))},
            )

        except Exception as e:
            logger.error(f"Error checking payout status: {e}", exc_info=True)
            return ActionResult.fail("Failed to check payout status", detail=str(e))


async def reconcile_transfer_event(event: str, data: Dict[str, Any]) -> ActionResult:
    """
    Applies a Paystack transfer webhook to the matching payout.

    Args:
        event: transfer.success, transfer.failed or transfer.reversed
        data: Webhook data (must carry the transfer reference)
    """
    reference = (data or {}).get("reference")
    if not reference:
        return ActionResult.fail("Missing transfer reference")

    with LogContext(reference=reference):
        users = get_users_collection()
        user = await users.find_one({f"{PAYOUT_HISTORY}.paystack_reference": reference})
        if not user:
            logger.warning("No payout found for transfer reference")
            return ActionResult.fail("Payout not found")

        payout = next(
            (p for p in (user.get("referral_program") or {}).get("payout_history") or []
             if p.get("paystack_reference") == reference),
            None,
        )

        gateway_status = event.split(".", 1)[1] if "." in event else event
        fields = status_update_for_gateway(gateway_status)

        if not is_valid_payout_transition(payout.get("status"), fields["status"]):
            logger.info(f"Ignoring {event} for payout in status {payout.get('status')}")
            return ActionResult.ok("Event already applied", data={"status": payout.get("status")})

        if gateway_status in ("failed", "reversed"):
            fields["error"] = (data.get("reason") or data.get("gateway_response") or f"Transfer {gateway_status}")

        await _update_payout(
            user["_id"],
            payout["payout_id"],
            fields,
            referrals=_referrals_for_status(fields["status"]),
        )

        logger.info(f"Payout reconciled from {event}: {fields['status']}")
        return ActionResult.ok(
            "Payout updated",
            data={"payout_id": str(payout["payout_id"]), "status": fields["status"]},
        )


# ==============================================
# Admin actions
# ==============================================

async def update_payout_status(user_id, payout_id, status: str) -> ActionResult:
    """
    Admin override of a payout's status.

    completed settles the locked credits; failed and cancelled release
    them. Only moves allowed by the payout transition table are applied,
    so completed and cancelled payouts cannot be changed.
    """
    try:
        new_status = PayoutStatus(status)
    except ValueError:
        return ActionResult.fail("Invalid status value")

    with LogContext(user_id=str(user_id), payout_id=str(payout_id)):
        try:
            user, payout, error = await _load_payout(user_id, payout_id)
            if error:
                return error

            if payout.get("status") in (PayoutStatus.COMPLETED.value, PayoutStatus.CANCELLED.value):
                return ActionResult.fail(f"{payout.get('status').capitalize()} payouts cannot be changed")

            # Failed payouts released their credits; retry_failed_payout relocks them
            if payout.get("status") == PayoutStatus.FAILED.value and new_status != PayoutStatus.CANCELLED:
                return ActionResult.fail("Failed payouts must be retried before they can be processed again")

            if not is_valid_payout_transition(payout.get("status"), new_status):
                return ActionResult.fail(
                    f"Cannot change payout from {payout.get('status')} to {new_status.value}",
                    errors={"status": [f"Not allowed from {payout.get('status')}"]},
                )

            if new_status == PayoutStatus.OTP and not payout.get("transfer_code"):
                return ActionResult.fail("Payout has no transfer awaiting an OTP")

            now = datetime.utcnow()
            fields = {"status": new_status.value, "processed_at": now}

            if new_status == PayoutStatus.COMPLETED:
                fields["payment_status"] = PayoutPaymentStatus.SUCCESS.value
                fields["completed_at"] = now
            elif new_status == PayoutStatus.FAILED:
                fields["payment_status"] = PayoutPaymentStatus.FAILED.value
            elif new_status == PayoutStatus.CANCELLED:
                fields["payment_status"] = PayoutPaymentStatus.REJECTED.value
            elif new_status == PayoutStatus.PENDING:
                fields["payment_status"] = PayoutPaymentStatus.PENDING.value
            else:
                fields["payment_status"] = PayoutPaymentStatus.PROCESSING.value

            await _update_payout(
                user["_id"],
                payout["payout_id"],
                fields,
                referrals=_referrals_for_status(new_status.value),
            )

            logger.info(f"Payout status set to {new_status.value} by admin")
            payout.update(fields)
            return ActionResult.ok(
                f"Payout {new_status.value} successfully",
                data={
                    "user": serialize_document({"_id": user["_id"], "name": user.get("name"), "email": user.get("email")}),
                    "payout": _public_payout(payout),
                },
            )

        except Exception as e:
            logger.error(f"Error updating payout status: {e}", exc_info=True)
            return ActionResult.fail("Failed to update payout status", detail=str(e))


async def mark_manual_transfer_complete(user_id, payout_id, reference: str) -> ActionResult:
    """
    Records a payout the admin paid outside Paystack transfers.
    """
    if not reference or not reference.strip():
        return ActionResult.fail("Transfer reference is required", errors={"reference": ["Transfer reference is required"]})

    with LogContext(user_id=str(user_id), payout_id=str(payout_id), reference=reference):
        try:
            user, payout, error = await _load_payout(user_id, payout_id)
            if error:
                return error

            if payout.get("status") == PayoutStatus.COMPLETED.value:
                return ActionResult.fail("Payout has already been completed")
            if not is_valid_payout_transition(payout.get("status"), PayoutStatus.COMPLETED):
                return ActionResult.fail(f"Payout cannot be completed from status {payout.get('status')}")

            program = user.get("referral_program") or {}
            settled = len([
                r for r in program.get("completed_referrals") or []
                if r.get("payment_status") == ReferralPaymentStatus.PROCESSING.value
            ])

            now = datetime.utcnow()
            await _update_payout(
                user["_id"],
                payout["payout_id"],
                {
                    "status": PayoutStatus.COMPLETED.value,
                    "payment_status": PayoutPaymentStatus.SUCCESS.value,
                    "paystack_reference": reference.strip(),
                    "processed_at": now,
                    "completed_at": now,
                    "error": None,
                },
                referrals="settle",
            )

            logger.info(f"Manual transfer recorded, {settled} referrals settled")
            return ActionResult.ok(
                f"Transfer marked as completed successfully. Updated {settled} referrals.",
                data={
                    "payout_id": str(payout["payout_id"]),
                    "status": PayoutStatus.COMPLETED.value,
                    "payment_status": PayoutPaymentStatus.SUCCESS.value,
                    "paystack_reference": reference.strip(),
                    "updated_referrals": settled,
                },
            )

        except Exception as e:
            logger.error(f"Error marking manual transfer complete: {e}", exc_info=True)
            return ActionResult.fail("Failed to mark transfer as complete", detail=str(e))


async def retry_failed_payout(payout_id) -> ActionResult:
    """
    Puts a failed payout back to pending so the transfer can be retried.

    Failed payouts release their credits, so the retry locks the user's
    currently eligible credits again and updates the amount to match.
    """
    payout_oid = to_object_id(payout_id)
    if payout_oid is None:
        return ActionResult.fail("Invalid payout ID")

    with LogContext(payout_id=str(payout_oid)):
        try:
            user = await get_users_collection().find_one({f"{PAYOUT_HISTORY}.payout_id": payout_oid})
            program = (user or {}).get("referral_program") or {}
            payout = find_payout(program, payout_oid)

            if not payout or payout.get("status") != PayoutStatus.FAILED.value:
                return ActionResult.fail("Payout not found or not in failed status")

            if outstanding_payment_count(program):
                return ActionResult.fail("Another payout is already in progress for this user")

            amount = sum_amounts(eligible_referrals(program))
            if amount <= 0:
                return ActionResult.fail("No unpaid referral earnings left for this payout")

            await _update_payout(
                user["_id"],
                payout_oid,
                {
                    "status": PayoutStatus.PENDING.value,
                    "payment_status": PayoutPaymentStatus.PENDING.value,
                    "amount": amount,
                    "last_attempt": datetime.utcnow(),
                    "error": None,
                },
                referrals="lock",
            )

            logger.info(f"Failed payout queued for retry, amount={amount}")
            return ActionResult.ok(
                "Payout marked for retry. Please initiate the transfer again.",
                data={"payout_id": str(payout_oid), "status": PayoutStatus.PENDING.value, "amount": amount},
            )

        except Exception as e:
            logger.error(f"Error retrying failed payout: {e}", exc_info=True)
            return ActionResult.fail("An error occurred while retrying payout", detail=str(e))


# ==============================================
# History
# ==============================================

def build_payout_history_pipeline(
    user_oid,
    status: str = "",
    sort_field: str = "requested_at",
    direction: int = -1,
    skip: int = 0,
    limit: int = 10,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Aggregation for one page of a user's payouts, plus its count pipeline.
    """
    base: List[Dict[str, Any]] = [
        {"$match": {"_id": user_oid}},
        {"$project": {"payout": {"$ifNull": [f"${PAYOUT_HISTORY}", []]}}},
        {"$unwind": "$payout"},
    ]
    if status:
        base.append({"$match": {"payout.status": status}})

    pipeline = base + [
        {"$sort": {f"payout.{sort_field}": direction}},
        {"$skip": skip},
        {"$limit": limit},
        {"$replaceRoot": {"newRoot": "$payout"}},
    ]
    count_pipeline = base + [{"$count": "total"}]
    return pipeline, count_pipeline


async def get_payout_history(
    user_id,
    page: int = 1,
    limit: int = 10,
    status: str = "",
    sort: str = "-requested_at",
) -> ActionResult:
    """
    One page of a user's payout history.

    Args:
        status: Optional status filter
        sort: requested_at, amount or processed_at, "-" prefix for
            descending
    """
    user_oid = to_object_id(user_id)
    if user_oid is None:
        return ActionResult.fail("Invalid user ID")

    status = status or ""
    if status and status not in PAYOUT_HISTORY_STATUSES:
        return ActionResult.fail("Invalid status filter")

    direction = -1 if sort.startswith("-") else 1
    sort_field = sort.lstrip("-")
    if sort_field not in PAYOUT_SORT_FIELDS:
        return ActionResult.fail("Invalid sort parameter")

    try:
        page = max(1, int(page or 1))
        limit = max(1, min(100, int(limit or 10)))
    except (TypeError, ValueError):
        page, limit = 1, 10

    try:
        pipeline, count_pipeline = build_payout_history_pipeline(
            user_oid, status, sort_field, direction, (page - 1) * limit, limit
        )
        users = get_users_collection()
        payouts = await users.aggregate(pipeline).to_list(length=None)
        counts = await users.aggregate(count_pipeline).to_list(length=None)
        total = counts[0]["total"] if counts else 0

        return ActionResult.ok(
            "Payout history retrieved successfully",
            data={
                "payouts": [_public_payout(p) for p in payouts],
                "total": total,
                "page": page,
                "pages": (total + limit - 1) // limit,
            },
        )

    except Exception as e:
        logger.error(f"Get payout history error: {e}", exc_info=True)
        return ActionResult.fail("Failed to retrieve payout history", detail=str(e))
