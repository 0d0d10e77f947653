"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager

from domain.payment.repository import (
    CreditRepository,
    PaymentRepository,
    SubscriptionRepository,
    TransactionEventRepository,
    TransactionRepository,
    WebhookDeliveryRepository,
)


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    payment_repository: PaymentRepository
    transaction_repository: TransactionRepository
    transaction_event_repository: TransactionEventRepository
    subscription_repository: SubscriptionRepository
    credit_repository: CreditRepository
    webhook_delivery_repository: WebhookDeliveryRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    def savepoint(self) -> AbstractAsyncContextManager:
        """嵌套事务：块内异常只回滚块内写入，外层事务继续"""
        ...

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
