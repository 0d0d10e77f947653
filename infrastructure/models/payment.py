"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON, Boolean,
    Index, ForeignKey
)
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentModel(Base):
    """
    支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 网关订单信息（孤儿记录可能没有订单号）
    gateway_order_id = Column(String(100), unique=True, nullable=True, comment="网关订单ID")
    gateway_payment_id = Column(String(100), unique=True, nullable=True, comment="网关支付ID")
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="用户ID"
    )

    # 金额信息（主币种，Numeric 存储精确金额）
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="支付金额")
    currency = Column(String(3), nullable=False, default="INR", comment="货币代码 ISO-4217")
    credits = Column(Integer, nullable=False, default=0, comment="完成后发放的积分")
    package_type = Column(String(32), nullable=True, comment="套餐类型，自定义积分为空")
    method = Column(String(32), nullable=True, comment="支付方式: card/upi/netbanking")

    # 状态
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="支付状态: pending/completed/failed"
    )
    failure_reason = Column(Text, nullable=True, comment="失败原因")

    # 时间戳
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
        comment="更新时间"
    )
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")

    # 元数据（JSON 列表，使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突）
    extra_metadata = Column("metadata", JSON, nullable=True, comment="类型化元数据")

    __table_args__ = (
        Index("ix_payments_user_status", "user_id", "status"),
        Index("ix_payments_created_at", "created_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, gateway_order_id='{self.gateway_order_id}', "
            f"amount={self.amount}, status='{self.status}')>"
        )


class WebhookDeliveryModel(Base):
    """
    Webhook 投递日志

    每次投递一行，在独立事务中写入，与业务处理结果无关
    """
    __tablename__ = "webhook_deliveries"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(100), nullable=True, index=True, comment="网关事件ID")
    event_type = Column(String(64), nullable=False, comment="事件类型")
    gateway_payment_id = Column(String(100), nullable=True, index=True, comment="网关支付ID")
    signature_valid = Column(Boolean, nullable=False, default=False, comment="签名是否有效")
    outcome = Column(String(20), nullable=False, comment="processed/duplicate/ignored/rejected/failed")
    error = Column(Text, nullable=True, comment="错误信息")
    payload = Column(JSON, nullable=True, comment="原始负载")
    received_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="接收时间")

    __table_args__ = (
        Index("ix_webhook_deliveries_event_outcome", "event_id", "outcome"),
    )

    def __repr__(self):
        return f"<WebhookDeliveryModel(id={self.id}, event_type='{self.event_type}', outcome='{self.outcome}')>"
