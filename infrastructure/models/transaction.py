"""
交易流水与审计事件数据库模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON, Boolean,
    Index, ForeignKey, CheckConstraint
)
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionModel(Base):
    """交易流水：每次资金变动一行，transaction_id 为幂等键"""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String(100), unique=True, nullable=False, comment="交易ID（幂等键）")
    type = Column(String(32), nullable=False, index=True, comment="purchase/refund/credit_usage/credit_adjustment")
    status = Column(String(32), nullable=False, index=True, comment="交易状态")

    # 金额（创建后不再修改，refunded_amount 除外）
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="毛金额")
    currency = Column(String(3), nullable=False, default="INR", comment="货币代码")
    platform_fee = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="平台费")
    gateway_fee = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="网关费")
    tax = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="税费")
    net_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="净额")
    refunded_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="累计退款金额")
    credits = Column(Integer, nullable=False, default=0, comment="积分数量")

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="用户ID（系统流水为空）"
    )
    gateway = Column(String(32), nullable=True, comment="支付网关")
    gateway_order_id = Column(String(100), nullable=True, index=True, comment="网关订单ID")
    gateway_payment_id = Column(String(100), nullable=True, index=True, comment="网关支付ID")
    parent_transaction_id = Column(String(100), nullable=True, index=True, comment="原交易ID（退款）")

    # 风控
    risk_score = Column(Integer, nullable=False, default=0, comment="风险评分 0-100")
    is_high_risk = Column(Boolean, nullable=False, default=False, comment="是否高风险")
    country = Column(String(2), nullable=True, comment="国家代码")

    failure_reason = Column(Text, nullable=True, comment="失败原因")
    review_notes = Column(Text, nullable=True, comment="人工审核备注")
    extra_metadata = Column("metadata", JSON, nullable=True, comment="类型化元数据")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间")
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="完成时间")

    __table_args__ = (
        Index("ix_transactions_user_created", "user_id", "created_at"),
        CheckConstraint("refunded_amount <= amount", name="refund_bound"),
        CheckConstraint("risk_score >= 0 AND risk_score <= 100", name="risk_range"),
    )

    def __repr__(self):
        return (
            f"<TransactionModel(transaction_id='{self.transaction_id}', type='{self.type}', "
            f"status='{self.status}', amount={self.amount})>"
        )


class TransactionEventModel(Base):
    """审计事件：只追加，不更新不删除"""
    __tablename__ = "transaction_events"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String(100), nullable=False, comment="交易ID")
    event_type = Column(String(40), nullable=False, comment="事件类型")
    status = Column(String(32), nullable=True, comment="事件发生后的交易状态")
    data = Column(JSON, nullable=True, comment="事件数据")
    actor = Column(String(100), nullable=True, comment="触发者: user:<id>/webhook/system/admin:<id>")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")

    __table_args__ = (
        Index("ix_transaction_events_tx_created", "transaction_id", "created_at"),
    )

    def __repr__(self):
        return f"<TransactionEventModel(transaction_id='{self.transaction_id}', event_type='{self.event_type}')>"
