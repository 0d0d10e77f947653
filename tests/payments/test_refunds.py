from decimal import Decimal

import pytest

from application.services.credit_ledger import CreditLedger
from application.services.refund_service import RefundService
from application.services.transaction_log import TransactionLog
from core.settings import payment_settings
from domain.payment.entity import TransactionEventType, TransactionStatus, TransactionType
from domain.payment.exceptions import (
    InvalidStatusTransitionException,
    NotRefundableException,
    TransactionNotFoundException,
)
from domain.payment.metadata import RefundNote


@pytest.fixture
def refunds(uow_factory, notifier, alerter):
    return RefundService(uow_factory, settings=payment_settings, notifier=notifier, alerter=alerter)


@pytest.mark.asyncio
async def test_half_refund_reverses_half_the_credits(make_user, completed_purchase, refunds, balance, uow_factory,
                                                     notifier):
    user_id = await make_user()
    order_id = await completed_purchase(user_id, "BASIC")

    outcome = await refunds.create_refund(order_id, Decimal("249.50"), reason="requested", actor="admin:1")

    assert outcome.created
    assert outcome.reversed_credits == 50 and outcome.shortfall_credits == 0
    assert outcome.refund.type == TransactionType.REFUND
    assert outcome.refund.parent_transaction_id == order_id
    assert outcome.refund.transaction_id.startswith(f"REF_{order_id}_")
    refund = outcome.refund
    assert refund.net_amount + refund.platform_fee + refund.gateway_fee + refund.tax == refund.amount
    assert await balance(user_id) == 50
    assert len(notifier.refunds) == 1

    async with uow_factory(readonly=True) as uow:
        parent = await uow.transaction_repository.get(order_id)
        parent_events = await uow.transaction_event_repository.list_for(order_id)
    assert parent.status == TransactionStatus.PARTIALLY_REFUNDED
    assert parent.refunded_amount == Decimal("249.50")
    assert parent_events[0].event_type == TransactionEventType.REFUNDED
    assert parent_events[0].status == TransactionStatus.PARTIALLY_REFUNDED


@pytest.mark.asyncio
async def test_refund_of_spent_credits_is_clamped_and_flagged(make_user, completed_purchase, refunds, balance,
                                                              uow_factory, alerter):
    user_id = await make_user()
    order_id = await completed_purchase(user_id, "BASIC")
    async with uow_factory() as uow:
        assert await CreditLedger(uow, TransactionLog(uow)).deduct(user_id, 80, "gen_1")

    outcome = await refunds.create_refund(order_id, Decimal("249.50"), refund_transaction_id="rf_1")

    assert outcome.reversed_credits == 20
    assert outcome.shortfall_credits == 30
    assert await balance(user_id) == 0
    assert "refund_credit_shortfall" in alerter.names

    async with uow_factory(readonly=True) as uow:
        refund = await uow.transaction_repository.get("rf_1")
        events = await uow.transaction_event_repository.list_for("rf_1")
    notes = [m for m in refund.metadata if isinstance(m, RefundNote)]
    assert notes[0].shortfall_credits == 30
    assert TransactionEventType.RECONCILIATION_REQUIRED in {e.event_type for e in events}


@pytest.mark.asyncio
async def test_cumulative_refunds_are_bounded(make_user, completed_purchase, refunds, uow_factory, balance):
    user_id = await make_user()
    order_id = await completed_purchase(user_id, "BASIC")

    with pytest.raises(NotRefundableException):
        await refunds.create_refund(order_id, Decimal("499.01"))

    for amount in ("166.33", "166.33", "166.34"):
        await refunds.create_refund(order_id, Decimal(amount))

    with pytest.raises(NotRefundableException):
        await refunds.create_refund(order_id, Decimal("0.01"))

    async with uow_factory(readonly=True) as uow:
        parent = await uow.transaction_repository.get(order_id)
    assert parent.status == TransactionStatus.REFUNDED
    assert parent.refunded_amount == parent.amount
    assert await balance(user_id) == 0


@pytest.mark.asyncio
async def test_repeated_refund_id_returns_existing(make_user, completed_purchase, refunds, balance):
    user_id = await make_user()
    order_id = await completed_purchase(user_id, "BASIC")

    first = await refunds.create_refund(order_id, Decimal("100.00"), refund_transaction_id="rf_1")
    again = await refunds.create_refund(order_id, Decimal("100.00"), refund_transaction_id="rf_1")

    assert first.created and not again.created
    assert again.refund.transaction_id == "rf_1"
    assert await balance(user_id) == 100 - first.reversed_credits


@pytest.mark.asyncio
async def test_pending_purchase_is_not_refundable(make_user, place_order, refunds):
    user_id = await make_user()
    order = await place_order(user_id, "BASIC")
    with pytest.raises(NotRefundableException):
        await refunds.create_refund(order.gateway_order_id, Decimal("10.00"))
    with pytest.raises(TransactionNotFoundException):
        await refunds.create_refund("order_missing", Decimal("10.00"))


@pytest.mark.asyncio
async def test_flag_for_review(make_user, place_order, completed_purchase, refunds, uow_factory):
    user_id = await make_user()
    order = await place_order(user_id, "BASIC")

    tx = await refunds.flag_for_review(order.gateway_order_id, "velocity check", actor="admin:1")
    assert tx.status == TransactionStatus.UNDER_REVIEW
    assert tx.review_notes == "velocity check"

    completed = await completed_purchase(user_id, "BASIC")
    with pytest.raises(InvalidStatusTransitionException):
        await refunds.flag_for_review(completed, "too late")
    with pytest.raises(TransactionNotFoundException):
        await refunds.flag_for_review("order_missing", "nothing")

    async with uow_factory(readonly=True) as uow:
        events = await uow.transaction_event_repository.list_for(order.gateway_order_id)
    assert events[0].event_type == TransactionEventType.REVIEW_STARTED
    assert events[0].actor == "admin:1"
