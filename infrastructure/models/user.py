"""
用户数据库模型 - SQLAlchemy ORM模型

账户本身由认证服务管理，这里只关心积分余额；credits 只能由积分账本写入。
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, CheckConstraint
from datetime import datetime, timezone

from .base import Base


class UserModel(Base):
    """用户数据库模型"""
    __tablename__ = "users"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    email = Column(String(100), unique=True, index=True, nullable=False, comment="邮箱")
    full_name = Column(String(100), nullable=True, comment="全名")

    # 积分余额（非负）
    credits = Column(Integer, nullable=False, default=0, server_default="0", comment="积分余额")

    # 状态信息
    is_active = Column(Boolean, default=True, nullable=False, comment="是否激活")
    is_superuser = Column(Boolean, default=False, nullable=False, comment="是否超级管理员")

    # 时间信息
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
        CheckConstraint("credits >= 0", name="credits_non_negative"),
    )

    def __repr__(self):
        return f"<UserModel(id={self.id}, email='{self.email}', credits={self.credits})>"
