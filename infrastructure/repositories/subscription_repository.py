"""
订阅仓储实现
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.entity import Subscription, SubscriptionStatus
from domain.payment.repository import SubscriptionRepository
from infrastructure.models.subscription import SubscriptionModel


class SQLAlchemySubscriptionRepository(SubscriptionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: SubscriptionModel) -> Subscription:
        return Subscription(
            id=model.id,
            user_id=model.user_id,
            package_type=model.package_type,
            status=SubscriptionStatus(model.status),
            credits_included=model.credits_included,
            credits_used=model.credits_used,
            starts_at=model.starts_at,
            ends_at=model.ends_at,
            auto_renew=model.auto_renew,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def get_active(self, user_id: int) -> Optional[Subscription]:
        result = await self.session.execute(
            select(SubscriptionModel)
            .where(
                SubscriptionModel.user_id == user_id,
                SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
            )
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def create(self, subscription: Subscription) -> Optional[Subscription]:
        model = SubscriptionModel(
            user_id=subscription.user_id,
            package_type=subscription.package_type,
            status=subscription.status.value,
            credits_included=subscription.credits_included,
            credits_used=subscription.credits_used,
            starts_at=subscription.starts_at,
            ends_at=subscription.ends_at,
            auto_renew=subscription.auto_renew,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(model)
                await self.session.flush()
        except IntegrityError:
            return None
        return self._to_entity(model)

    async def extend(
        self,
        subscription_id: int,
        *,
        expected_ends_at: datetime,
        ends_at: datetime,
        credits: int,
    ) -> bool:
        # ends_at 作为比较值：读取之后被其他请求延长过则更新 0 行
        result = await self.session.execute(
            update(SubscriptionModel)
            .where(
                SubscriptionModel.id == subscription_id,
                SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
                SubscriptionModel.ends_at == expected_ends_at,
            )
            .values(
                ends_at=ends_at,
                credits_included=SubscriptionModel.credits_included + credits,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_status(
        self,
        subscription_id: int,
        status: SubscriptionStatus,
        *,
        expected: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> bool:
        result = await self.session.execute(
            update(SubscriptionModel)
            .where(SubscriptionModel.id == subscription_id, SubscriptionModel.status == expected.value)
            .values(status=status.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def add_usage(self, subscription_id: int, credits: int) -> bool:
        result = await self.session.execute(
            update(SubscriptionModel)
            .where(
                SubscriptionModel.id == subscription_id,
                SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
            )
            .values(
                credits_used=SubscriptionModel.credits_used + credits,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
