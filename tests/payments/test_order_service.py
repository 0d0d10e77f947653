from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import DAYTIME
from domain.common.exceptions import UserNotFoundException
from domain.payment.entity import PaymentStatus, TransactionEventType, TransactionStatus
from domain.payment.exceptions import GatewayUnavailableException, InvalidPackageException
from domain.payment.metadata import GatewayPayload, OrderContext


@pytest.mark.asyncio
async def test_create_order_persists_pending_payment_and_purchase(make_user, place_order, gateway, uow_factory):
    user_id = await make_user()
    result = await place_order(user_id, "BASIC")

    assert result.amount == 49900
    assert result.credits_awarded == 100
    assert result.gateway_public_key == "rzp_test_key"

    sent = gateway.orders[0]
    assert sent.amount_minor == 49900 and sent.payment_capture
    assert sent.notes == {"user_id": str(user_id), "package_type": "BASIC", "credits": "100"}
    assert sent.receipt == f"order_{user_id}_{int(DAYTIME.timestamp() * 1000)}"

    async with uow_factory(readonly=True) as uow:
        payment = await uow.payment_repository.get_by_order_id(result.gateway_order_id)
        tx = await uow.transaction_repository.get(result.gateway_order_id)
        events = await uow.transaction_event_repository.list_for(result.gateway_order_id)

    assert payment.status == PaymentStatus.PENDING
    assert payment.amount == Decimal("499.00")
    assert {type(m) for m in payment.metadata} == {OrderContext, GatewayPayload}

    assert tx.status == TransactionStatus.INITIATED
    assert tx.net_amount + tx.platform_fee + tx.gateway_fee + tx.tax == tx.amount
    assert tx.risk_score == 15  # first purchase
    assert not tx.is_high_risk
    assert {e.event_type for e in events} == {TransactionEventType.INITIATED, TransactionEventType.RISK_ASSESSED}


@pytest.mark.asyncio
async def test_custom_credit_order(make_user, place_order):
    user_id = await make_user()
    result = await place_order(user_id, None, credits=12)
    assert result.amount == 6000
    assert result.package_type is None


@pytest.mark.asyncio
async def test_high_risk_order_is_flagged_and_alerted(make_user, place_order, alerter, uow_factory):
    user_id = await make_user()
    night = datetime(2026, 10, 18, 20, 0, tzinfo=timezone.utc)
    result = await place_order(user_id, None, credits=20001, country="CN", now=night)

    async with uow_factory(readonly=True) as uow:
        tx = await uow.transaction_repository.get(result.gateway_order_id)
        events = await uow.transaction_event_repository.list_for(result.gateway_order_id)

    assert tx.risk_score == 100 and tx.is_high_risk
    assert TransactionEventType.RISK_FLAGGED in {e.event_type for e in events}
    assert alerter.names == ["high_risk_order"]


@pytest.mark.asyncio
async def test_gateway_outage_leaves_no_local_state(make_user, place_order, gateway, order_service):
    user_id = await make_user()
    gateway.fail_with = GatewayUnavailableException("create_order", "timeout")

    with pytest.raises(GatewayUnavailableException):
        await place_order(user_id, "PREMIUM")

    items, total = await order_service.history(user_id)
    assert items == [] and total == 0


@pytest.mark.asyncio
async def test_invalid_package_and_unknown_user(make_user, place_order, gateway):
    user_id = await make_user()
    with pytest.raises(InvalidPackageException):
        await place_order(user_id, "PLATINUM")
    with pytest.raises(UserNotFoundException):
        await place_order(9999, "BASIC")
    assert gateway.orders == []


@pytest.mark.asyncio
async def test_history_is_paginated_and_scoped_to_caller(make_user, place_order, order_service):
    alice = await make_user()
    bob = await make_user()
    for _ in range(3):
        await place_order(alice, "BASIC")
    await place_order(bob, "BASIC")

    first, total = await order_service.history(alice, page=1, limit=2)
    second, _ = await order_service.history(alice, page=2, limit=2)

    assert total == 3
    assert len(first) == 2 and len(second) == 1
    ids = [t.transaction_id for t in first + second]
    assert len(set(ids)) == 3
    assert ids == sorted(ids, reverse=True)
