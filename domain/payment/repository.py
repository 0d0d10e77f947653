"""
支付仓储接口 - 定义数据访问契约

所有状态变更方法都是条件更新：返回 False/None 表示条件不满足（已被其他请求处理），
调用方据此实现幂等，而不是先读后写。
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .entity import (
    Payment,
    Subscription,
    SubscriptionStatus,
    Transaction,
    TransactionEvent,
    TransactionStatus,
    WebhookDelivery,
)
from .metadata import MetadataEntry


class PaymentRepository(ABC):
    """支付仓储接口"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录（订单号重复时抛出异常）"""
        pass

    @abstractmethod
    async def get_by_order_id(self, gateway_order_id: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_by_gateway_payment_id(self, gateway_payment_id: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def mark_completed_if_pending(
        self,
        gateway_order_id: str,
        *,
        gateway_payment_id: str,
        method: Optional[str],
        completed_at: datetime,
        metadata: Optional[MetadataEntry] = None,
    ) -> bool:
        """UPDATE ... WHERE status = 'pending'；返回是否由本次调用完成"""
        pass

    @abstractmethod
    async def mark_failed_if_pending(
        self,
        gateway_order_id: str,
        *,
        reason: Optional[str],
        gateway_payment_id: Optional[str] = None,
    ) -> bool:
        pass


class TransactionRepository(ABC):
    """交易流水仓储接口"""

    @abstractmethod
    async def create(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def create_if_absent(self, transaction: Transaction) -> Optional[Transaction]:
        """按 transaction_id 幂等创建；已存在时返回 None"""
        pass

    @abstractmethod
    async def get(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def get_by_gateway_payment_id(self, gateway_payment_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def transition_status(
        self,
        transaction_id: str,
        target: TransactionStatus,
        *,
        gateway_payment_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        review_notes: Optional[str] = None,
    ) -> bool:
        """UPDATE ... WHERE status IN (target 的合法前驱)"""
        pass

    @abstractmethod
    async def apply_refund(self, transaction_id: str, amount: Decimal) -> Optional[Transaction]:
        """累计退款金额并更新状态；超额或状态不符时返回 None"""
        pass

    @abstractmethod
    async def list_by_user(self, user_id: int, *, offset: int = 0, limit: int = 20) -> List[Transaction]:
        pass

    @abstractmethod
    async def count_by_user(self, user_id: int) -> int:
        pass

    @abstractmethod
    async def add_metadata(self, transaction_id: str, entry: MetadataEntry) -> None:
        pass


class TransactionEventRepository(ABC):
    """审计事件仓储接口（只追加）"""

    @abstractmethod
    async def append(self, event: TransactionEvent) -> TransactionEvent:
        pass

    @abstractmethod
    async def list_for(self, transaction_id: str) -> List[TransactionEvent]:
        """按时间倒序返回"""
        pass


class SubscriptionRepository(ABC):

    @abstractmethod
    async def get_active(self, user_id: int) -> Optional[Subscription]:
        pass

    @abstractmethod
    async def create(self, subscription: Subscription) -> Optional[Subscription]:
        """用户已有 active 订阅时返回 None（唯一索引冲突）"""
        pass

    @abstractmethod
    async def extend(
        self,
        subscription_id: int,
        *,
        expected_ends_at: datetime,
        ends_at: datetime,
        credits: int,
    ) -> bool:
        """仅当 ends_at 仍等于 expected_ends_at 时延长；返回 False 表示读取后已被并发修改"""
        pass

    @abstractmethod
    async def set_status(
        self,
        subscription_id: int,
        status: SubscriptionStatus,
        *,
        expected: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> bool:
        pass

    @abstractmethod
    async def add_usage(self, subscription_id: int, credits: int) -> bool:
        pass


class CreditRepository(ABC):
    """用户积分余额（users.credits）的唯一写入口"""

    @abstractmethod
    async def get_balance(self, user_id: int) -> Optional[int]:
        """用户不存在时返回 None"""
        pass

    @abstractmethod
    async def increment(self, user_id: int, amount: int) -> bool:
        pass

    @abstractmethod
    async def decrement_if_sufficient(self, user_id: int, amount: int) -> bool:
        """UPDATE ... WHERE credits >= amount"""
        pass

    @abstractmethod
    async def compare_and_set(self, user_id: int, expected: int, new_balance: int) -> bool:
        pass


class WebhookDeliveryRepository(ABC):

    @abstractmethod
    async def add(self, delivery: WebhookDelivery) -> WebhookDelivery:
        pass

    @abstractmethod
    async def was_processed(self, event_id: str) -> bool:
        pass
