from datetime import datetime, timedelta, timezone

import pytest

from application.services.credit_ledger import CreditLedger
from application.services.subscription_service import SubscriptionManager
from application.services.transaction_log import TransactionLog
from domain.common.exceptions import UserNotFoundException
from domain.payment.entity import (
    SubscriptionStatus,
    TransactionEventType,
    TransactionStatus,
    TransactionType,
)


NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_award_and_balance(make_user, uow_factory, balance):
    user_id = await make_user(credits=10)
    async with uow_factory() as uow:
        ledger = CreditLedger(uow, TransactionLog(uow))
        await ledger.award(user_id, 25, "order_1")
        assert await ledger.balance(user_id) == 35
        with pytest.raises(UserNotFoundException):
            await ledger.award(4242, 5, "order_2")
    assert await balance(user_id) == 35


@pytest.mark.asyncio
async def test_deduct_is_idempotent_per_ref(make_user, uow_factory, balance):
    user_id = await make_user(credits=100)
    async with uow_factory() as uow:
        ledger = CreditLedger(uow, TransactionLog(uow))
        assert await ledger.deduct(user_id, 30, "gen_1")
        assert await ledger.deduct(user_id, 30, "gen_1")
        usage = await uow.transaction_repository.get("gen_1")
    assert usage.type == TransactionType.CREDIT_USAGE
    assert usage.credits == 30 and usage.status == TransactionStatus.COMPLETED
    assert await balance(user_id) == 70


@pytest.mark.asyncio
async def test_deduct_never_goes_negative(make_user, uow_factory, balance):
    user_id = await make_user(credits=20)
    async with uow_factory() as uow:
        ledger = CreditLedger(uow, TransactionLog(uow))
        assert not await ledger.deduct(user_id, 21, "gen_big")
        # the usage row is rolled back with the failed deduction
        assert await uow.transaction_repository.get("gen_big") is None
        with pytest.raises(UserNotFoundException):
            await ledger.deduct(4242, 1, "gen_ghost")
    assert await balance(user_id) == 20


@pytest.mark.asyncio
async def test_deduct_up_to_clamps_at_balance(make_user, uow_factory, balance):
    user_id = await make_user(credits=20)
    async with uow_factory() as uow:
        log = TransactionLog(uow)
        ledger = CreditLedger(uow, log)
        assert await ledger.deduct_up_to(user_id, 50, "REF_x") == 20
        assert await ledger.deduct_up_to(user_id, 50, "REF_y") == 0
        events = await log.events("REF_x")
    assert await balance(user_id) == 0
    assert events[0].data == {"user_id": user_id, "credits": 20, "requested": 50, "clamped": True}


@pytest.mark.asyncio
async def test_usage_counts_against_active_subscription(make_user, uow_factory):
    user_id = await make_user(credits=100)
    async with uow_factory() as uow:
        log = TransactionLog(uow)
        subscriptions = SubscriptionManager(uow, log)
        await subscriptions.activate_or_extend(user_id, "BASIC", 100, "order_1")
        ledger = CreditLedger(uow, log, subscriptions=subscriptions)
        await ledger.deduct(user_id, 15, "gen_1")
        current = await subscriptions.current(user_id)
    assert current.credits_used == 15
    assert current.credits_remaining == 85


@pytest.mark.asyncio
async def test_transaction_log_failure_is_swallowed_and_alerted(make_user, uow_factory, alerter, monkeypatch):
    async with uow_factory() as uow:
        log = TransactionLog(uow, alerter)

        async def broken_append(event):
            raise RuntimeError("disk full")

        monkeypatch.setattr(uow.transaction_event_repository, "append", broken_append)
        assert await log.record("order_1", TransactionEventType.INITIATED) is None
    assert alerter.names == ["transaction_event_lost"]
    assert alerter.alerts[0][1]["transaction_id"] == "order_1"


@pytest.mark.asyncio
async def test_replay_status_follows_latest_status_event(uow_factory):
    async with uow_factory() as uow:
        log = TransactionLog(uow)
        await log.record("order_1", TransactionEventType.INITIATED, status=TransactionStatus.INITIATED)
        await log.record("order_1", TransactionEventType.RISK_ASSESSED, data={"score": 15})
        await log.record("order_1", TransactionEventType.COMPLETED, status=TransactionStatus.COMPLETED)
        await log.record("order_1", TransactionEventType.CREDITS_AWARDED, data={"credits": 100})

        events = await log.events("order_1")
        assert events[0].event_type == TransactionEventType.CREDITS_AWARDED
        assert await log.replay_status("order_1") == TransactionStatus.COMPLETED
        assert await log.replay_status("order_missing") is None


@pytest.mark.asyncio
async def test_subscription_extends_while_current(make_user, uow_factory):
    user_id = await make_user()
    async with uow_factory() as uow:
        subscriptions = SubscriptionManager(uow, TransactionLog(uow), period_days=30)
        first = await subscriptions.activate_or_extend(user_id, "BASIC", 100, "order_1", now=NOW)
        second = await subscriptions.activate_or_extend(user_id, "PREMIUM", 500, "order_2", now=NOW)
        current = await subscriptions.current(user_id, NOW)

    assert second.id == first.id
    assert current.ends_at == NOW + timedelta(days=60)
    assert current.credits_included == 600


@pytest.mark.asyncio
async def test_stale_subscription_is_replaced(make_user, uow_factory):
    user_id = await make_user()
    long_ago = NOW - timedelta(days=45)
    async with uow_factory() as uow:
        subscriptions = SubscriptionManager(uow, TransactionLog(uow))
        stale = await subscriptions.activate_or_extend(user_id, "BASIC", 100, "order_1", now=long_ago)
        fresh = await subscriptions.activate_or_extend(user_id, "BASIC", 100, "order_2", now=NOW)
        current = await subscriptions.current(user_id, NOW)

    assert fresh.id != stale.id
    assert current.id == fresh.id
    assert current.status == SubscriptionStatus.ACTIVE
    assert current.credits_included == 100


@pytest.mark.asyncio
async def test_cancel_subscription(make_user, uow_factory):
    user_id = await make_user()
    async with uow_factory() as uow:
        subscriptions = SubscriptionManager(uow, TransactionLog(uow))
        assert not await subscriptions.cancel(user_id)
        await subscriptions.activate_or_extend(user_id, "BASIC", 100, "order_1")
        assert await subscriptions.cancel(user_id)
        assert await subscriptions.current(user_id) is None


@pytest.mark.asyncio
async def test_concurrent_extensions_each_add_a_full_period(make_user, uow_factory):
    user_id = await make_user()
    async with uow_factory() as uow:
        repo = uow.subscription_repository
        subscriptions = SubscriptionManager(uow, TransactionLog(uow), period_days=30)
        await subscriptions.activate_or_extend(user_id, "BASIC", 100, "order_1", now=NOW)

        # both settlements read the subscription before either extends it
        first_view = await repo.get_active(user_id)
        second_view = await repo.get_active(user_id)
        await subscriptions._extend(first_view, 100, "order_2", NOW)
        await subscriptions._extend(second_view, 100, "order_3", NOW)

        current = await subscriptions.current(user_id, NOW)
        stale_write = await repo.extend(
            current.id,
            expected_ends_at=NOW + timedelta(days=30),
            ends_at=NOW + timedelta(days=60),
            credits=1,
        )

    assert current.ends_at == NOW + timedelta(days=90)
    assert current.credits_included == 300
    assert not stale_write
