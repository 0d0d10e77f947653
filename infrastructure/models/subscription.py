"""
订阅数据库模型
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Index, ForeignKey, text
)
from datetime import datetime, timezone

from .base import Base


class SubscriptionModel(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="用户ID"
    )
    package_type = Column(String(32), nullable=False, comment="套餐类型")
    status = Column(String(20), nullable=False, default="active", comment="active/expired/cancelled")
    credits_included = Column(Integer, nullable=False, default=0, comment="包含积分")
    credits_used = Column(Integer, nullable=False, default=0, comment="已用积分")
    starts_at = Column(DateTime(timezone=True), nullable=False, comment="开始时间")
    ends_at = Column(DateTime(timezone=True), nullable=False, comment="结束时间")
    auto_renew = Column(Boolean, nullable=False, default=False, comment="是否自动续费")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    __table_args__ = (
        # 每个用户最多一个 active 订阅
        Index(
            "uq_subscriptions_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    def __repr__(self):
        return f"<SubscriptionModel(id={self.id}, user_id={self.user_id}, status='{self.status}')>"
