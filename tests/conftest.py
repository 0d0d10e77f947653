"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Optional

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault(
    "DATABASE__URL",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "avatar-billing-import.db"),
)
os.environ.setdefault("RAZORPAY__KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY__KEY_SECRET", "test_key_secret")
os.environ.setdefault("RAZORPAY__WEBHOOK_SECRET", "test_webhook_secret")

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from application.dtos.payments import (
    CreateOrderRequest,
    GatewayOrder,
    GatewayOrderRequest,
    GatewayPayment,
    VerifyPaymentRequest,
)
from application.services.order_service import OrderService
from application.services.payment_service import PaymentQueryService
from application.services.verification_service import VerificationService
from core.settings import payment_settings
from domain.payment import signature
from domain.payment.exceptions import GatewayRejectedException
from infrastructure.database import build_engine, create_tables, drop_tables
from infrastructure.models import UserModel, WebhookDeliveryModel
from infrastructure.unit_of_work import uow_factory_for


# 11:30 in Asia/Kolkata: inside business hours for the risk policy
DAYTIME = datetime(2026, 10, 18, 6, 0, tzinfo=timezone.utc)


class StubGateway:
    """In-memory stand-in for the Razorpay adapter."""

    provider = "razorpay"
    public_key = "rzp_test_key"

    def __init__(self) -> None:
        self.orders: list[GatewayOrderRequest] = []
        self.payments: dict[str, GatewayPayment] = {}
        self.fetch_calls = 0
        self.fail_with: Optional[Exception] = None

    async def create_order(self, req: GatewayOrderRequest) -> GatewayOrder:
        if self.fail_with is not None:
            raise self.fail_with
        self.orders.append(req)
        order_id = f"order_T{len(self.orders):04d}"
        return GatewayOrder(
            order_id=order_id,
            amount_minor=req.amount_minor,
            currency=req.currency,
            status="created",
            raw={"id": order_id, "amount": req.amount_minor, "notes": req.notes},
        )

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        self.fetch_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        if payment_id not in self.payments:
            raise GatewayRejectedException("fetch_payment", 400, "The id provided does not exist")
        return self.payments[payment_id]

    def capture(self, payment_id: str, order_id: Optional[str], amount_minor: int, status: str = "captured",
                **extra: Any) -> GatewayPayment:
        entity = payment_entity(payment_id, order_id, amount_minor, status=status, **extra)
        self.payments[payment_id] = GatewayPayment.from_entity(entity)
        return self.payments[payment_id]


class RecordingAlerter:
    def __init__(self) -> None:
        self.alerts: list[tuple[str, dict]] = []

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.alerts]

    async def alert(self, name: str, **context: Any) -> None:
        self.alerts.append((name, context))


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.completed = []
        self.refunds = []

    async def payment_completed(self, event) -> None:
        if self.fail:
            raise ConnectionError("smtp down")
        self.completed.append(event)

    async def refund_created(self, event) -> None:
        if self.fail:
            raise ConnectionError("smtp down")
        self.refunds.append(event)


def payment_entity(payment_id: str, order_id: Optional[str], amount_minor: int, status: str = "captured",
                   **extra: Any) -> dict:
    entity = {
        "id": payment_id,
        "entity": "payment",
        "order_id": order_id,
        "amount": amount_minor,
        "currency": "INR",
        "status": status,
        "method": "upi",
    }
    entity.update(extra)
    return entity


def webhook_body(event: str, **entities: dict) -> bytes:
    return json.dumps(
        {"entity": "event", "event": event, "payload": {k: {"entity": v} for k, v in entities.items()}}
    ).encode("utf-8")


def sign_body(body: bytes) -> str:
    return signature.compute_signature(body, payment_settings.razorpay.webhook_secret)


def sign_order(order_id: str, payment_id: str) -> str:
    return signature.compute_signature(signature.order_payload(order_id, payment_id), payment_settings.razorpay.key_secret)


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    await create_tables(eng)
    yield eng
    await drop_tables(eng)
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    return uow_factory_for(session_factory)


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def alerter():
    return RecordingAlerter()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_user(session_factory):
    counter = {"n": 0}

    async def _make(credits: int = 0, *, is_superuser: bool = False) -> int:
        counter["n"] += 1
        async with session_factory() as session:
            user = UserModel(
                email=f"user{counter['n']}@example.com",
                full_name=f"User {counter['n']}",
                credits=credits,
                is_superuser=is_superuser,
            )
            session.add(user)
            await session.commit()
            return user.id

    return _make


@pytest.fixture
def order_service(uow_factory, gateway, alerter):
    return OrderService(uow_factory, gateway, settings=payment_settings, alerter=alerter)


@pytest.fixture
def verification_service(uow_factory, gateway, notifier, alerter):
    return VerificationService(
        uow_factory, gateway, settings=payment_settings, notifier=notifier, alerter=alerter
    )


@pytest.fixture
def query_service(uow_factory):
    return PaymentQueryService(uow_factory)


@pytest.fixture
def place_order(order_service):
    async def _place(user_id: int, package_type: Optional[str] = "BASIC", credits: Optional[int] = None,
                     country: Optional[str] = None, now: datetime = DAYTIME):
        return await order_service.create_order(
            user_id,
            CreateOrderRequest(package_type=package_type, credits=credits, country=country),
            now=now,
        )

    return _place


@pytest.fixture
def completed_purchase(place_order, gateway, verification_service):
    """Place an order and confirm it through the client path; returns the order id."""

    async def _complete(user_id: int, package_type: str = "BASIC", payment_id: Optional[str] = None) -> str:
        order = await place_order(user_id, package_type)
        payment_id = payment_id or f"pay_{order.gateway_order_id}"
        gateway.capture(payment_id, order.gateway_order_id, order.amount)
        await verification_service.verify_payment(
            user_id,
            VerifyPaymentRequest(
                gateway_order_id=order.gateway_order_id,
                gateway_payment_id=payment_id,
                signature=sign_order(order.gateway_order_id, payment_id),
            ),
        )
        return order.gateway_order_id

    return _complete


@pytest.fixture
def balance(query_service):
    async def _balance(user_id: int) -> int:
        return (await query_service.credits(user_id)).credits

    return _balance


@pytest.fixture
def deliveries(session_factory):
    async def _deliveries() -> list[WebhookDeliveryModel]:
        async with session_factory() as session:
            result = await session.execute(select(WebhookDeliveryModel).order_by(WebhookDeliveryModel.id))
            return list(result.scalars().all())

    return _deliveries
