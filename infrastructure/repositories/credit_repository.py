"""
积分余额仓储实现

所有写操作都是单条条件 UPDATE，余额判断在数据库内完成，不做先读后写。
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.repository import CreditRepository
from infrastructure.models.user import UserModel


class SQLAlchemyCreditRepository(CreditRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_balance(self, user_id: int) -> Optional[int]:
        result = await self.session.execute(select(UserModel.credits).where(UserModel.id == user_id))
        value = result.scalar_one_or_none()
        return int(value) if value is not None else None

    async def _update(self, *criteria, credits) -> bool:
        result = await self.session.execute(
            update(UserModel)
            .where(*criteria)
            .values(credits=credits, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increment(self, user_id: int, amount: int) -> bool:
        return await self._update(UserModel.id == user_id, credits=UserModel.credits + amount)

    async def decrement_if_sufficient(self, user_id: int, amount: int) -> bool:
        return await self._update(
            UserModel.id == user_id,
            UserModel.credits >= amount,
            credits=UserModel.credits - amount,
        )

    async def compare_and_set(self, user_id: int, expected: int, new_balance: int) -> bool:
        return await self._update(
            UserModel.id == user_id,
            UserModel.credits == expected,
            credits=new_balance,
        )
