"""
支付领域实体 - 支付、交易流水、审计事件、订阅
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.metadata import MetadataEntry


class PaymentStatus(str, Enum):
    """支付状态枚举（只会从 pending 变更一次）"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    REFUND = "refund"
    CREDIT_USAGE = "credit_usage"
    CREDIT_ADJUSTMENT = "credit_adjustment"


class TransactionStatus(str, Enum):
    """交易状态枚举"""
    INITIATED = "initiated"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    DISPUTED = "disputed"
    UNDER_REVIEW = "under_review"


class TransactionEventType(str, Enum):
    INITIATED = "initiated"
    STATUS_UPDATED = "status_updated"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CREDITS_AWARDED = "credits_awarded"
    CREDITS_DEDUCTED = "credits_deducted"
    REFUND_CREATED = "refund_created"
    REFUNDED = "refunded"
    RISK_ASSESSED = "risk_assessed"
    RISK_FLAGGED = "risk_flagged"
    REVIEW_STARTED = "review_started"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_EXTENDED = "subscription_extended"
    RECONCILIATION_REQUIRED = "reconciliation_required"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REJECTED = "rejected"
    FAILED = "failed"


_S = TransactionStatus

# 允许的状态转换：主路径单调向前，UNDER_REVIEW / DISPUTED 为旁路状态
ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    _S.INITIATED: frozenset({_S.PROCESSING, _S.COMPLETED, _S.FAILED, _S.UNDER_REVIEW}),
    _S.PROCESSING: frozenset({_S.COMPLETED, _S.FAILED, _S.UNDER_REVIEW}),
    _S.UNDER_REVIEW: frozenset({_S.PROCESSING, _S.COMPLETED, _S.FAILED}),
    _S.COMPLETED: frozenset({_S.REFUNDED, _S.PARTIALLY_REFUNDED, _S.DISPUTED}),
    _S.PARTIALLY_REFUNDED: frozenset({_S.REFUNDED, _S.PARTIALLY_REFUNDED, _S.DISPUTED}),
    _S.DISPUTED: frozenset({_S.REFUNDED, _S.PARTIALLY_REFUNDED}),
    _S.FAILED: frozenset(),
    _S.REFUNDED: frozenset(),
}


def allowed_predecessors(target: TransactionStatus) -> frozenset[TransactionStatus]:
    """返回可以转换到 target 的所有状态（用于条件更新的 WHERE status IN (...)）"""
    return frozenset(src for src, targets in ALLOWED_TRANSITIONS.items() if target in targets)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _validate_currency(currency: str) -> None:
    if not currency or len(currency) != 3 or not currency.isalpha():
        raise DomainValidationException(f"Invalid currency code: {currency}", field="currency")


@dataclass
class Payment:
    """
    支付聚合根 - 一次购买意图

    业务规则：
    1. gateway_order_id 唯一
    2. 状态只允许 pending -> completed 或 pending -> failed，且只发生一次
    3. 重复的状态变更是无操作，而不是错误（吸收重复投递）
    4. user_id / gateway_order_id 只有在网关回调孤儿记录时才可能为空
    """

    id: Optional[int]
    gateway_order_id: Optional[str]
    amount: Decimal
    currency: str
    status: PaymentStatus
    credits: int
    user_id: Optional[int]
    gateway_payment_id: Optional[str] = None
    package_type: Optional[str] = None
    method: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: list[MetadataEntry] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount < 0:
            raise DomainValidationException(f"Payment amount must not be negative: {self.amount}", field="amount")
        if self.credits < 0:
            raise DomainValidationException(f"Credits must not be negative: {self.credits}", field="credits")
        _validate_currency(self.currency)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.completed_at = _ensure_utc(self.completed_at)
        if self.metadata is None:
            self.metadata = []

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED


@dataclass
class Transaction:
    """
    交易流水 - 每一次资金变动一条

    业务规则：
    1. transaction_id 唯一，作为幂等键
    2. net_amount = amount - platform_fee - gateway_fee - tax，创建时计算，此后不变
    3. 状态沿 ALLOWED_TRANSITIONS 单调前进
    4. 累计退款不超过原始金额
    """

    id: Optional[int]
    transaction_id: str
    type: TransactionType
    status: TransactionStatus
    amount: Decimal
    currency: str
    platform_fee: Decimal = Decimal("0")
    gateway_fee: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    net_amount: Decimal = Decimal("0")
    credits: int = 0
    user_id: Optional[int] = None
    gateway: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    parent_transaction_id: Optional[str] = None
    refunded_amount: Decimal = Decimal("0")
    risk_score: int = 0
    is_high_risk: bool = False
    country: Optional[str] = None
    failure_reason: Optional[str] = None
    review_notes: Optional[str] = None
    metadata: list[MetadataEntry] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount < 0:
            raise DomainValidationException(f"Transaction amount must not be negative: {self.amount}", field="amount")
        if not 0 <= self.risk_score <= 100:
            raise DomainValidationException(f"Risk score out of range: {self.risk_score}", field="risk_score")
        _validate_currency(self.currency)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.completed_at = _ensure_utc(self.completed_at)
        if self.metadata is None:
            self.metadata = []

    def can_transition_to(self, target: TransactionStatus) -> bool:
        return target in ALLOWED_TRANSITIONS.get(self.status, frozenset())

    def refundable_amount(self) -> Decimal:
        """计算可退款金额"""
        return self.amount - self.refunded_amount

    def is_refundable(self) -> bool:
        return (
            self.type == TransactionType.PURCHASE
            and self.status in (TransactionStatus.COMPLETED, TransactionStatus.PARTIALLY_REFUNDED)
            and self.refunded_amount < self.amount
        )


@dataclass
class TransactionEvent:
    """审计事件：只追加，永不更新或删除"""

    id: Optional[int]
    transaction_id: str
    event_type: TransactionEventType
    status: Optional[TransactionStatus] = None
    data: dict[str, Any] = field(default_factory=dict)
    actor: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = _ensure_utc(self.created_at)
        if self.data is None:
            self.data = {}


@dataclass
class Subscription:
    """
    套餐订阅

    业务规则：每个用户同一时间最多一个 ACTIVE 订阅（由部分唯一索引保证）
    """

    id: Optional[int]
    user_id: int
    package_type: str
    status: SubscriptionStatus
    credits_included: int
    starts_at: datetime
    ends_at: datetime
    credits_used: int = 0
    auto_renew: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.starts_at = _ensure_utc(self.starts_at)
        self.ends_at = _ensure_utc(self.ends_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.ends_at <= self.starts_at:
            raise DomainValidationException("Subscription must end after it starts", field="ends_at")

    def is_current(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.status == SubscriptionStatus.ACTIVE and self.ends_at > now

    @property
    def credits_remaining(self) -> int:
        return max(self.credits_included - self.credits_used, 0)


@dataclass
class WebhookDelivery:
    """一次 webhook 投递记录（与业务结果无关，总会写入）"""

    id: Optional[int]
    event_type: str
    signature_valid: bool
    outcome: WebhookOutcome
    event_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    error: Optional[str] = None
    payload: Optional[dict[str, Any]] = None
    received_at: Optional[datetime] = None

    def __post_init__(self):
        self.received_at = _ensure_utc(self.received_at)
