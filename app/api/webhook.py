"""
app/api/webhook.py

Purpose: Paystack webhook endpoint

- Verifies the x-paystack-signature HMAC over the raw body
- charge.success settles the order the charge belongs to
- transfer.success / transfer.failed / transfer.reversed update the payout
- Any other event is acknowledged
"""

from fastapi import APIRouter, Request, HTTPException
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
import json

from app.core.logging import get_logger, LogContext
from app.schemas.webhook import PaystackEvent, CHARGE_SUCCESS, TRANSFER_EVENTS
from app.services.paystack_service import get_paystack_service
from app.services.payment_service import extract_order_id, verify_order_payment
from app.services.payout_service import reconcile_transfer_event

logger = get_logger(__name__)
router = APIRouter()


@router.post("/paystack/webhook")
async def paystack_webhook(request: Request):
    """
    Paystack webhook receiver.

    Returns:
        200 once the event is handled or acknowledged. Signature problems
        are 401, a malformed body or an unverifiable charge is 400.
    """
    signature = request.headers.get("x-paystack-signature")
    if not signature:
        logger.warning("Webhook received without signature")
        raise HTTPException(status_code=401, detail="No signature provided")

    paystack = get_paystack_service()
    if not paystack.secret_key:
        logger.error("PAYSTACK_SECRET_KEY is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")

    raw_body = await request.body()
    if not paystack.verify_webhook_signature(raw_body, signature):
        logger.warning("Invalid webhook signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = PaystackEvent(**json.loads(raw_body))
    except (ValueError, TypeError, PydanticValidationError) as e:
        logger.error(f"Failed to parse webhook payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    logger.info(f"📨 Paystack webhook: {payload.event}")

    if payload.event == CHARGE_SUCCESS:
        return await _handle_charge_success(payload.data)

    if payload.event in TRANSFER_EVENTS:
        result = await reconcile_transfer_event(payload.event, payload.data)
        if not result.success:
            logger.warning(f"Transfer event not applied: {result.message}")
        return {"received": True, "event": payload.event, "reconciled": result.success}

    return {"received": True, "event": payload.event}


async def _handle_charge_success(data: dict):
    reference = data.get("reference")
    order_id = extract_order_id(data.get("metadata"))

    if not order_id:
        logger.error(f"No order id in charge metadata for reference {reference}")
        raise HTTPException(status_code=400, detail="Order ID not found in metadata")

    with LogContext(order_id=order_id, reference=reference):
        result = await verify_order_payment(order_id, reference)

        if not result.success:
            logger.error(f"Webhook payment verification failed: {result.message}")
            return JSONResponse(
                status_code=400,
                content={"verified": False, "error": result.message, "detail": result.detail},
            )

        logger.info("✅ Webhook payment verified")
        return {"verified": True, "order_id": order_id, "reference": reference}
