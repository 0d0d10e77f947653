"""
Package subscriptions derived from package purchases.

A user holds at most one ACTIVE subscription; the partial unique index on
``subscriptions`` is the final arbiter when two purchases race. Extensions
compare-and-set the end date, so concurrent purchases each add a full period.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from application.services.transaction_log import TransactionLog
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Subscription, SubscriptionStatus, TransactionEventType


logger = get_logger(__name__)


class SubscriptionManager:
    MAX_ATTEMPTS = 3

    def __init__(self, uow: AbstractUnitOfWork, log: TransactionLog, *, period_days: int = 30) -> None:
        self._uow = uow
        self._log = log
        self._period = timedelta(days=period_days)

    async def current(self, user_id: int, now: Optional[datetime] = None) -> Optional[Subscription]:
        subscription = await self._uow.subscription_repository.get_active(user_id)
        if subscription is None or not subscription.is_current(now):
            return None
        return subscription

    async def activate_or_extend(
        self,
        user_id: int,
        package_type: str,
        credits: int,
        transaction_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> Subscription:
        now = now or datetime.now(timezone.utc)
        repo = self._uow.subscription_repository

        for _ in range(self.MAX_ATTEMPTS):
            active = await repo.get_active(user_id)
            if active is not None and active.is_current(now):
                extended = await self._extend(active, credits, transaction_id, now)
                if extended is not None:
                    return extended
                continue

            if active is not None:
                # 过期但仍标记为 ACTIVE，先关闭再开新订阅
                await repo.set_status(active.id, SubscriptionStatus.EXPIRED)
                logger.info("subscription_expired", user_id=user_id, subscription_id=active.id)

            created = await repo.create(
                Subscription(
                    id=None,
                    user_id=user_id,
                    package_type=package_type,
                    status=SubscriptionStatus.ACTIVE,
                    credits_included=credits,
                    starts_at=now,
                    ends_at=now + self._period,
                )
            )
            if created is None:
                # lost the race to a concurrent activation, extend the winner
                continue

            logger.info(
                "subscription_activated",
                user_id=user_id,
                subscription_id=created.id,
                package_type=package_type,
                ends_at=created.ends_at.isoformat(),
            )
            await self._log.record(
                transaction_id,
                TransactionEventType.SUBSCRIPTION_ACTIVATED,
                data={
                    "subscription_id": created.id,
                    "package_type": package_type,
                    "credits_included": credits,
                    "ends_at": created.ends_at.isoformat(),
                },
            )
            return created

        raise RuntimeError(f"subscription for user {user_id} kept changing during activation")

    async def record_usage(self, user_id: int, credits: int, now: Optional[datetime] = None) -> bool:
        subscription = await self.current(user_id, now)
        if subscription is None:
            return False
        return await self._uow.subscription_repository.add_usage(subscription.id, credits)

    async def cancel(self, user_id: int) -> bool:
        active = await self._uow.subscription_repository.get_active(user_id)
        if active is None:
            return False
        cancelled = await self._uow.subscription_repository.set_status(active.id, SubscriptionStatus.CANCELLED)
        if cancelled:
            logger.info("subscription_cancelled", user_id=user_id, subscription_id=active.id)
        return cancelled

    async def _extend(
        self,
        subscription: Subscription,
        credits: int,
        transaction_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        """
        Push the end date out by one period.

        The write is conditional on the end date that was read, so a concurrent
        extension makes it miss and the row is re-read. Returns None when the
        subscription was cancelled or expired meanwhile.
        """
        repo = self._uow.subscription_repository
        for _ in range(self.MAX_ATTEMPTS):
            ends_at = subscription.ends_at + self._period
            if await repo.extend(
                subscription.id,
                expected_ends_at=subscription.ends_at,
                ends_at=ends_at,
                credits=credits,
            ):
                break
            fresh = await repo.get_active(subscription.user_id)
            if fresh is None or fresh.id != subscription.id or not fresh.is_current(now):
                return None
            subscription = fresh
        else:
            return None

        subscription.ends_at = ends_at
        subscription.credits_included += credits
        logger.info(
            "subscription_extended",
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            ends_at=ends_at.isoformat(),
        )
        await self._log.record(
            transaction_id,
            TransactionEventType.SUBSCRIPTION_EXTENDED,
            data={"subscription_id": subscription.id, "credits_added": credits, "ends_at": ends_at.isoformat()},
        )
        return subscription
