from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from api import dependencies as deps
from application.services.refund_service import RefundService
from application.services.token_service import TokenService
from application.services.webhook_service import WebhookService
from conftest import payment_entity, sign_body, sign_order, webhook_body
from core.settings import payment_settings
from main import app
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


@pytest_asyncio.fixture
async def client(uow_factory, order_service, verification_service, query_service, alerter, notifier):
    app.dependency_overrides[deps.get_order_service] = lambda: order_service
    app.dependency_overrides[deps.get_verification_service] = lambda: verification_service
    app.dependency_overrides[deps.get_query_service] = lambda: query_service
    app.dependency_overrides[deps.get_webhook_service] = lambda: WebhookService(
        uow_factory, settings=payment_settings, notifier=notifier, alerter=alerter
    )
    app.dependency_overrides[deps.get_refund_service] = lambda: RefundService(
        uow_factory, settings=payment_settings, notifier=notifier, alerter=alerter
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _auth(user_id: int, admin: bool = False) -> dict:
    return {"Authorization": f"Bearer {TokenService().issue(user_id, is_superuser=admin)}"}


@pytest.mark.asyncio
async def test_health_and_request_id(client):
    resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}
    assert resp.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_authentication_required(client):
    resp = await client.get("/api/v1/payments/credits")
    assert resp.status_code == 401
    body = resp.json()
    assert body["code"] == BusinessCode.UNAUTHORIZED
    assert body["error"]["type"] == "Unauthorized"

    expired = TokenService().issue(1, expires_minutes=-5)
    resp = await client.get("/api/v1/payments/credits", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401
    assert resp.json()["code"] == BusinessCode.TOKEN_EXPIRED


@pytest.mark.asyncio
async def test_purchase_flow_over_http(client, make_user, gateway):
    user_id = await make_user()

    resp = await client.post("/api/v1/payments/create-order", json={"packageType": "BASIC"}, headers=_auth(user_id))
    assert resp.status_code == 200
    order = resp.json()["data"]
    assert order["amount"] == 49900
    assert order["creditsAwarded"] == 100
    assert order["gatewayPublicKey"] == "rzp_test_key"

    order_id = order["gatewayOrderId"]
    gateway.capture("pay_1", order_id, 49900)
    verify = {"gatewayOrderId": order_id, "gatewayPaymentId": "pay_1", "signature": sign_order(order_id, "pay_1")}
    resp = await client.post("/api/v1/payments/verify", json=verify, headers=_auth(user_id))
    assert resp.status_code == 200
    assert resp.json()["data"]["creditsAwarded"] == 100
    assert resp.json()["data"]["alreadyProcessed"] is False

    resp = await client.post("/api/v1/payments/verify", json=verify, headers=_auth(user_id))
    assert resp.json()["data"]["alreadyProcessed"] is True

    resp = await client.get("/api/v1/payments/credits", headers=_auth(user_id))
    data = resp.json()["data"]
    assert data["credits"] == 100
    assert data["subscription"]["packageType"] == "BASIC"

    resp = await client.get("/api/v1/payments/history", params={"page": 1, "limit": 10}, headers=_auth(user_id))
    page = resp.json()["data"]
    assert page["total"] == 1 and page["pages"] == 1
    assert page["items"][0]["status"] == "completed"
    assert Decimal(page["items"][0]["amount"]) == Decimal("499")

    resp = await client.get(f"/api/v1/payments/transactions/{order_id}/events", headers=_auth(user_id))
    assert resp.status_code == 200
    assert "completed" in [e["eventType"] for e in resp.json()["data"]]


@pytest.mark.asyncio
async def test_snake_case_request_bodies_are_accepted(client, make_user):
    user_id = await make_user()
    resp = await client.post("/api/v1/payments/create-order", json={"credits": 3}, headers=_auth(user_id))
    assert resp.status_code == 200

    resp = await client.post(
        "/api/v1/payments/verify",
        json={"gateway_order_id": "order_x", "gateway_payment_id": "pay_x", "signature": "bad"},
        headers=_auth(user_id),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == PaymentCode.INVALID_SIGNATURE


@pytest.mark.asyncio
async def test_order_validation_errors(client, make_user):
    user_id = await make_user()
    resp = await client.post("/api/v1/payments/create-order", json={"currency": "INR"}, headers=_auth(user_id))
    assert resp.status_code == 422
    assert resp.json()["code"] == BusinessCode.PARAM_VALIDATION_ERROR

    resp = await client.post("/api/v1/payments/create-order", json={"packageType": "GOLD"}, headers=_auth(user_id))
    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "InvalidPackage"


@pytest.mark.asyncio
async def test_gateway_outage_is_retryable_503(client, make_user, gateway):
    from domain.payment.exceptions import GatewayUnavailableException

    user_id = await make_user()
    gateway.fail_with = GatewayUnavailableException("create_order", "timeout")
    resp = await client.post("/api/v1/payments/create-order", json={"packageType": "BASIC"}, headers=_auth(user_id))
    assert resp.status_code == 503
    assert resp.json()["error"]["retryable"] is True
    assert "Retry-After" in resp.headers


@pytest.mark.asyncio
async def test_webhook_http_semantics(client, make_user, place_order):
    user_id = await make_user()
    order = await place_order(user_id, "BASIC")
    body = webhook_body("payment.captured", payment=payment_entity("pay_1", order.gateway_order_id, 49900))

    resp = await client.post("/api/v1/payments/webhook", content=body)
    assert resp.status_code == 400

    resp = await client.post("/api/v1/payments/webhook", content=body, headers={"X-Razorpay-Signature": "0" * 64})
    assert resp.status_code == 200
    assert resp.json()["data"]["outcome"] == "rejected"

    signed = {"X-Razorpay-Signature": sign_body(body), "X-Razorpay-Event-Id": "evt_1"}
    resp = await client.post("/api/v1/payments/webhook", content=body, headers=signed)
    assert resp.status_code == 200
    assert resp.json()["data"]["outcome"] == "processed"

    resp = await client.post("/api/v1/payments/webhook", content=body, headers=signed)
    assert resp.json()["data"]["outcome"] == "duplicate"

    resp = await client.post("/api/v1/payments/webhook", content=b"not json",
                             headers={"X-Razorpay-Signature": sign_body(b"not json")})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_admin_endpoints(client, make_user, completed_purchase, place_order):
    user_id = await make_user()
    admin_id = await make_user(is_superuser=True)
    order_id = await completed_purchase(user_id, "BASIC")

    payload = {"transactionId": order_id, "amount": "249.50", "reason": "duplicate charge"}
    resp = await client.post("/api/v1/payments/refunds", json=payload, headers=_auth(user_id))
    assert resp.status_code == 403

    resp = await client.post("/api/v1/payments/refunds", json=payload, headers=_auth(admin_id, admin=True))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["type"] == "refund"
    assert data["parentTransactionId"] == order_id
    assert data["reversedCredits"] == 50 and data["created"] is True
    assert Decimal(data["amount"]) == Decimal("249.50")

    over = {"transactionId": order_id, "amount": "300.00"}
    resp = await client.post("/api/v1/payments/refunds", json=over, headers=_auth(admin_id, admin=True))
    assert resp.status_code == 409

    pending = await place_order(user_id, "BASIC")
    resp = await client.post(
        f"/api/v1/payments/transactions/{pending.gateway_order_id}/review",
        json={"reason": "manual check"},
        headers=_auth(admin_id, admin=True),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "under_review"


@pytest.mark.asyncio
async def test_events_are_private_to_owner(client, make_user, place_order):
    owner = await make_user()
    other = await make_user()
    admin_id = await make_user(is_superuser=True)
    order = await place_order(owner, "BASIC")
    path = f"/api/v1/payments/transactions/{order.gateway_order_id}/events"

    assert (await client.get(path, headers=_auth(other))).status_code == 404
    assert (await client.get(path, headers=_auth(admin_id, admin=True))).status_code == 200
