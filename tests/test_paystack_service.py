import hashlib
import hmac

import httpx
import pytest

from app.core.exceptions import PaymentGatewayError
from app.services.paystack_service import PaystackService


def make_service(handler, secret_key="sk_test_secret"):
    return PaystackService(
        secret_key=secret_key,
        base_url="https://api.paystack.test",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.anyio
async def test_verify_transaction_sends_bearer_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["authorization"]
        seen["path"] = request.url.path
        return httpx.Response(200, json={"status": True, "message": "Verification successful", "data": {"status": "success", "amount": 100000}})

    transaction = await make_service(handler).verify_transaction("T123")

    assert transaction["amount"] == 100000
    assert seen == {"auth": "Bearer sk_test_secret", "path": "/transaction/verify/T123"}


@pytest.mark.anyio
async def test_provider_message_is_surfaced_on_failure():
    def handler(request):
        return httpx.Response(400, json={"status": False, "message": "Transaction reference not found"})

    with pytest.raises(PaymentGatewayError) as exc_info:
        await make_service(handler).verify_transaction("missing")

    assert exc_info.value.message == "Transaction reference not found"
    assert exc_info.value.gateway_status == 400
    assert exc_info.value.code == "PAYMENT_GATEWAY_ERROR"


@pytest.mark.anyio
async def test_network_errors_become_generic_failures():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentGatewayError) as exc_info:
        await make_service(handler).verify_transaction("T123")

    assert "try again" in exc_info.value.message
    assert exc_info.value.gateway_status is None


@pytest.mark.anyio
async def test_missing_secret_key_fails_without_calling_paystack():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"status": True, "data": {}})

    with pytest.raises(PaymentGatewayError):
        await make_service(handler, secret_key="").verify_transaction("T123")

    assert calls == []


@pytest.mark.anyio
async def test_resolve_account():
    def handler(request):
        assert request.url.params["account_number"] == "0123456789"
        assert request.url.params["bank_code"] == "058"
        return httpx.Response(200, json={
            "status": True,
            "data": {"account_name": "ADA OBI", "account_number": "0123456789", "bank_id": 9},
        })

    result = await make_service(handler).resolve_account("0123456789", "058")

    assert result == {"account_name": "ADA OBI", "account_number": "0123456789", "bank_id": 9}


@pytest.mark.anyio
async def test_initiate_transfer_sends_kobo_and_flags_otp():
    bodies = []

    def handler(request):
        bodies.append(request.read())
        return httpx.Response(200, json={
            "status": True,
            "message": "Transfer requires OTP to continue",
            "data": {"status": "otp", "transfer_code": "TRF_1", "reference": "payout_x_1"},
        })

    result = await make_service(handler).initiate_transfer("RCP_1", 5000.5, "Referral payout", "payout_x_1")

    assert result["status"] == "otp_required"
    assert result["transfer_code"] == "TRF_1"
    assert b'"amount":500050' in bodies[0].replace(b" ", b"")


@pytest.mark.anyio
async def test_verify_transfer():
    def handler(request):
        assert request.url.path == "/transfer/verify/payout_x_1"
        return httpx.Response(200, json={"status": True, "data": {"status": "success", "transfer_code": "TRF_1"}})

    result = await make_service(handler).verify_transfer("payout_x_1")

    assert result["status"] == "success"
    assert result["transfer_code"] == "TRF_1"


def test_webhook_signature():
    service = make_service(lambda request: httpx.Response(200))
    body = b'{"event":"charge.success"}'
    signature = hmac.new(b"sk_test_secret", body, hashlib.sha512).hexdigest()

    assert service.verify_webhook_signature(body, signature)
    assert not service.verify_webhook_signature(body + b" ", signature)
    assert not service.verify_webhook_signature(body, None)


@pytest.mark.anyio
async def test_references_are_encoded_into_a_single_path_segment():
    paths = []

    def handler(request):
        paths.append(request.url.raw_path)
        return httpx.Response(200, json={"status": True, "data": {"status": "success"}})

    service = make_service(handler)
    await service.verify_transaction("abc/../../bank/resolve?account_number=1")
    await service.verify_transfer("payout_1/../../balance")

    assert paths == [
        b"/transaction/verify/abc%2F..%2F..%2Fbank%2Fresolve%3Faccount_number%3D1",
        b"/transfer/verify/payout_1%2F..%2F..%2Fbalance",
    ]
