"""
app/services/paystack_service.py

Purpose: Paystack REST API integration

- Transaction verification for order payments
- Bank account resolution
- Transfer recipients, transfers, OTP finalize/resend, transfer status
- Webhook signature verification
"""

import hmac
import hashlib
import httpx
from typing import Any, Dict, Optional
from urllib.parse import quote
from app.core.config import settings
from app.core.exceptions import PaymentGatewayError
from app.core.logging import get_logger
from utils.money_utils import to_kobo

logger = get_logger(__name__)

GENERIC_FAILURE = "Payment gateway request failed. Please try again."


class PaystackService:
    """
    Service for talking to the Paystack API.

    Failed calls raise PaymentGatewayError with Paystack's own message
    when it supplies one.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self._timeout = timeout or settings.PAYSTACK_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.secret_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client


    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """
        Sends a request and unwraps the Paystack envelope.

        Returns:
            {"data": ..., "message": ...}

        Raises:
            PaymentGatewayError: On missing configuration, transport errors
                and any response Paystack does not mark successful
        """
        if not self.secret_key:
            logger.error("Paystack secret key is not configured")
            raise PaymentGatewayError("Payment gateway is not configured")

        try:
            response = await self._get_client().request(method, path, **kwargs)
        except httpx.TimeoutException:
            logger.error(f"Paystack timeout: {method} {path}")
            raise PaymentGatewayError("Payment gateway is taking too long to respond. Please try again.")
        except httpx.RequestError as e:
            logger.error(f"Network error calling Paystack {method} {path}: {e}")
            raise PaymentGatewayError(GENERIC_FAILURE)

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not isinstance(body, dict):
            body = {}

        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message") or GENERIC_FAILURE
            logger.warning(
                f"Paystack {method} {path} failed: HTTP {response.status_code} - {message}"
            )
            raise PaymentGatewayError(message, gateway_status=response.status_code)

        return {"message": body.get("message"), "data": body.get("data") or {}}

    async def verify_transaction(self, reference: str) -> Dict[str, Any]:
        """
        Verifies a charge by reference.

        Returns:
            The Paystack transaction; status is "success" for a completed
            charge and amount is in kobo
        """
        logger.info(f"🔍 Verifying Paystack transaction {reference}")
        result = await self._request("GET", f"/transaction/verify/{quote(reference, safe='')}")
        return result["data"]

    async def resolve_account(self, account_number: str, bank_code: str) -> Dict[str, Any]:
        """
        Resolves a bank account to its registered name.

        Returns:
            {"account_name": ..., "account_number": ..., "bank_id": ...}
        """
        result = await self._request(
            "GET",
            "/bank/resolve",
            params={"account_number": account_number, "bank_code": bank_code},
        )

        data = result["data"]
        return {
            "account_name": data.get("account_name"),
            "account_number": data.get("account_number") or account_number,
            "bank_id": data.get("bank_id"),
        }

    async def create_transfer_recipient(
        self,
        bank_details: Dict[str, Any],
        fallback_name: Optional[str] = None,
    ) -> str:
        """
        Registers a bank account as a transfer recipient.

        Returns:
            The recipient code ("RCP_...")
        """
        payload = {
            "type": "nuban",
            "name": bank_details.get("account_name") or fallback_name,
            "account_number": bank_details.get("account_number"),
            "bank_code": bank_details.get("bank_code"),
            "currency": settings.CURRENCY,
        }

        result = await self._request("POST", "/transferrecipient", json=payload)

        recipient_code = result["data"].get("recipient_code")
        logger.info(f"✅ Transfer recipient created: {recipient_code}")
        return recipient_code

    async def initiate_transfer(
        self,
        recipient_code: str,
        amount: float,
        reason: str,
        reference: str,
    ) -> Dict[str, Any]:
        """
        Starts a balance transfer.

        Args:
            recipient_code: Paystack recipient code
            amount: Amount in Naira (sent as kobo)
            reason: Transfer narration
            reference: Unique transfer reference

        Returns:
            {"status": "otp_required" | <paystack status>, "reference": ...,
             "transfer_code": ..., "message": ...}
        """
        payload = {
            "source": "balance",
            "amount": to_kobo(amount),
            "recipient": recipient_code,
            "reason": reason,
            "reference": reference,
        }

        logger.info(f"📤 Initiating Paystack transfer {reference}")
        result = await self._request("POST", "/transfer", json=payload)

        data = result["data"]
        status = data.get("status")
        if data.get("requires_otp") or status == "otp":
            status = "otp_required"

        return {
            "status": status,
            "reference": data.get("reference") or reference,
            "transfer_code": data.get("transfer_code"),
            "message": result.get("message"),
        }

    async def finalize_transfer(self, transfer_code: str, otp: str) -> Dict[str, Any]:
        """
        Completes an OTP-protected transfer.

        Returns:
            {"status": <paystack status>, "data": ...}
        """
        result = await self._request(
            "POST",
            "/transfer/finalize_transfer",
            json={"transfer_code": transfer_code, "otp": otp},
        )
        return {"status": result["data"].get("status"), "data": result["data"]}

    async def resend_transfer_otp(self, transfer_code: str) -> str:
        result = await self._request(
            "POST",
            "/transfer/resend_otp",
            json={"transfer_code": transfer_code, "reason": "transfer"},
        )
        return result.get("message") or "OTP resent"

    async def verify_transfer(self, reference: str) -> Dict[str, Any]:
        """
        Fetches the current state of a transfer.

        Returns:
            {"status": ..., "transfer_code": ..., "data": ...}
        """
        result = await self._request("GET", f"/transfer/verify/{quote(reference, safe='')}")

        data = result["data"]
        return {
            "status": data.get("status"),
            "transfer_code": data.get("transfer_code"),
            "data": data,
        }

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """
        Checks the x-paystack-signature header.

        Paystack signs the raw request body with HMAC-SHA512 using the
        secret key.
        """
        if not signature or not self.secret_key:
            return False

        expected = hmac.new(
            self.secret_key.encode("utf-8"),
            raw_body,
            hashlib.sha512,
        ).hexdigest()

        return hmac.compare_digest(expected, signature)

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Global Paystack service instance
_paystack_service: Optional[PaystackService] = None


def get_paystack_service() -> PaystackService:
    """Get or create the global Paystack service instance."""
    global _paystack_service
    if _paystack_service is None:
        _paystack_service = PaystackService()
    return _paystack_service


async def close_paystack_service():
    """Close Paystack service and cleanup resources."""
    global _paystack_service
    if _paystack_service:
        await _paystack_service.close()
        _paystack_service = None
