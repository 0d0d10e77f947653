"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.credit_repository import SQLAlchemyCreditRepository
from infrastructure.repositories.payment_repository import (
    SQLAlchemyPaymentRepository,
    SQLAlchemyWebhookDeliveryRepository,
)
from infrastructure.repositories.subscription_repository import SQLAlchemySubscriptionRepository
from infrastructure.repositories.transaction_repository import (
    SQLAlchemyTransactionEventRepository,
    SQLAlchemyTransactionRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.payment_repository = SQLAlchemyPaymentRepository(self.session)
        self.transaction_repository = SQLAlchemyTransactionRepository(self.session)
        self.transaction_event_repository = SQLAlchemyTransactionEventRepository(self.session)
        self.subscription_repository = SQLAlchemySubscriptionRepository(self.session)
        self.credit_repository = SQLAlchemyCreditRepository(self.session)
        self.webhook_delivery_repository = SQLAlchemyWebhookDeliveryRepository(self.session)
        # 只读模式依赖自动开启的事务，退出时回滚即可
        if not self._readonly:
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        async with self.session.begin_nested():
            yield

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def uow_factory_for(session_factory: Callable[[], AsyncSession]) -> Callable[..., SQLAlchemyUnitOfWork]:
    """绑定会话工厂，返回与 SQLAlchemyUnitOfWork 同签名的工厂（测试与脚本使用）"""

    def _factory(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory=session_factory, readonly=readonly)

    return _factory
