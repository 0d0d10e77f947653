import base64
import json

import httpx
import pytest

from application.dtos.payments import GatewayOrderRequest
from core.settings import PaymentRetry, payment_settings
from domain.payment.exceptions import GatewayRejectedException, GatewayUnavailableException
from infrastructure.external.payments.razorpay_client import RazorpayClient


def _client(handler) -> RazorpayClient:
    settings = payment_settings.model_copy(update={"retry": PaymentRetry(max=2, base_backoff=0.01)})
    return RazorpayClient(settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_create_order_sends_minor_units_and_auto_capture():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_ABC", "amount": 49900, "currency": "INR", "status": "created"})

    client = _client(handler)
    try:
        order = await client.create_order(
            GatewayOrderRequest(amount_minor=49900, currency="INR", receipt="order_1_1", notes={"user_id": "1"})
        )
    finally:
        await client.aclose()

    assert order.order_id == "order_ABC" and order.status == "created"
    assert seen["path"] == "/v1/orders"
    assert seen["body"] == {
        "amount": 49900,
        "currency": "INR",
        "receipt": "order_1_1",
        "payment_capture": 1,
        "notes": {"user_id": "1"},
    }
    expected = base64.b64encode(b"rzp_test_key:test_key_secret").decode()
    assert seen["auth"] == f"Basic {expected}"


@pytest.mark.asyncio
async def test_fetch_payment_maps_gateway_status():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/payments/pay_1"
        return httpx.Response(200, json={
            "id": "pay_1", "order_id": "order_1", "amount": 49900, "currency": "INR",
            "status": "captured", "method": "card", "notes": {"credits": "100"},
        })

    client = _client(handler)
    payment = await client.fetch_payment("pay_1")
    await client.aclose()

    assert payment.status == "completed"
    assert payment.gateway_status == "captured"
    assert payment.method == "card"
    assert payment.notes == {"credits": "100"}


@pytest.mark.asyncio
async def test_server_errors_are_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream down")

    client = _client(handler)
    with pytest.raises(GatewayUnavailableException) as exc_info:
        await client.fetch_payment("pay_1")
    await client.aclose()
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_unavailable():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(GatewayUnavailableException):
        await client.fetch_payment("pay_1")
    await client.aclose()
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_client_errors_are_rejected_with_description():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"code": "BAD_REQUEST_ERROR", "description": "The id provided does not exist"}})

    client = _client(handler)
    with pytest.raises(GatewayRejectedException) as exc_info:
        await client.fetch_payment("pay_missing")
    await client.aclose()
    assert exc_info.value.details["reason"] == "The id provided does not exist"
    assert exc_info.value.details["status_code"] == 400
