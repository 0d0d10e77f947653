"""create_billing_tables

Revision ID: 4b1f7e2a9c3d
Revises:
Create Date: 2026-10-18 09:10:42.118306

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4b1f7e2a9c3d'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(length=100), nullable=False, comment='邮箱'),
        sa.Column('full_name', sa.String(length=100), nullable=True, comment='全名'),
        sa.Column('credits', sa.Integer(), nullable=False, server_default='0', comment='积分余额'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true', comment='是否激活'),
        sa.Column('is_superuser', sa.Boolean(), nullable=False, server_default='false', comment='是否超级管理员'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.CheckConstraint('credits >= 0', name='ck_users_credits_non_negative'),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
    )
    op.create_index('ix_users_id', 'users', ['id'], unique=False)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Create payments table
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('gateway_order_id', sa.String(length=100), nullable=True, comment='网关订单ID'),
        sa.Column('gateway_payment_id', sa.String(length=100), nullable=True, comment='网关支付ID'),
        sa.Column('user_id', sa.Integer(), nullable=True, comment='用户ID'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='支付金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR', comment='货币代码 ISO-4217'),
        sa.Column('credits', sa.Integer(), nullable=False, server_default='0', comment='完成后发放的积分'),
        sa.Column('package_type', sa.String(length=32), nullable=True, comment='套餐类型，自定义积分为空'),
        sa.Column('method', sa.String(length=32), nullable=True, comment='支付方式: card/upi/netbanking'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='支付状态: pending/completed/failed'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True, comment='支付完成时间'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='类型化元数据'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_payments_user_id_users', ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        sa.UniqueConstraint('gateway_order_id', name='uq_payments_gateway_order_id'),
        sa.UniqueConstraint('gateway_payment_id', name='uq_payments_gateway_payment_id'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'], unique=False)
    op.create_index('ix_payments_user_id', 'payments', ['user_id'], unique=False)
    op.create_index('ix_payments_status', 'payments', ['status'], unique=False)
    op.create_index('ix_payments_user_status', 'payments', ['user_id', 'status'], unique=False)
    op.create_index('ix_payments_created_at', 'payments', ['created_at'], unique=False, postgresql_using='btree')

    # Create webhook_deliveries table
    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(length=100), nullable=True, comment='网关事件ID'),
        sa.Column('event_type', sa.String(length=64), nullable=False, comment='事件类型'),
        sa.Column('gateway_payment_id', sa.String(length=100), nullable=True, comment='网关支付ID'),
        sa.Column('signature_valid', sa.Boolean(), nullable=False, server_default='false', comment='签名是否有效'),
        sa.Column('outcome', sa.String(length=20), nullable=False, comment='processed/duplicate/ignored/rejected/failed'),
        sa.Column('error', sa.Text(), nullable=True, comment='错误信息'),
        sa.Column('payload', sa.JSON(), nullable=True, comment='原始负载'),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='接收时间'),
        sa.PrimaryKeyConstraint('id', name='pk_webhook_deliveries'),
    )
    op.create_index('ix_webhook_deliveries_id', 'webhook_deliveries', ['id'], unique=False)
    op.create_index('ix_webhook_deliveries_event_id', 'webhook_deliveries', ['event_id'], unique=False)
    op.create_index('ix_webhook_deliveries_gateway_payment_id', 'webhook_deliveries', ['gateway_payment_id'], unique=False)
    op.create_index('ix_webhook_deliveries_event_outcome', 'webhook_deliveries', ['event_id', 'outcome'], unique=False)

    # Create transactions table
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('transaction_id', sa.String(length=100), nullable=False, comment='交易ID（幂等键）'),
        sa.Column('type', sa.String(length=32), nullable=False, comment='purchase/refund/credit_usage/credit_adjustment'),
        sa.Column('status', sa.String(length=32), nullable=False, comment='交易状态'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='毛金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR', comment='货币代码'),
        sa.Column('platform_fee', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='平台费'),
        sa.Column('gateway_fee', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='网关费'),
        sa.Column('tax', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='税费'),
        sa.Column('net_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='净额'),
        sa.Column('refunded_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='累计退款金额'),
        sa.Column('credits', sa.Integer(), nullable=False, server_default='0', comment='积分数量'),
        sa.Column('user_id', sa.Integer(), nullable=True, comment='用户ID（系统流水为空）'),
        sa.Column('gateway', sa.String(length=32), nullable=True, comment='支付网关'),
        sa.Column('gateway_order_id', sa.String(length=100), nullable=True, comment='网关订单ID'),
        sa.Column('gateway_payment_id', sa.String(length=100), nullable=True, comment='网关支付ID'),
        sa.Column('parent_transaction_id', sa.String(length=100), nullable=True, comment='原交易ID（退款）'),
        sa.Column('risk_score', sa.Integer(), nullable=False, server_default='0', comment='风险评分 0-100'),
        sa.Column('is_high_risk', sa.Boolean(), nullable=False, server_default='false', comment='是否高风险'),
        sa.Column('country', sa.String(length=2), nullable=True, comment='国家代码'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('review_notes', sa.Text(), nullable=True, comment='人工审核备注'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='类型化元数据'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True, comment='完成时间'),
        sa.CheckConstraint('refunded_amount <= amount', name='ck_transactions_refund_bound'),
        sa.CheckConstraint('risk_score >= 0 AND risk_score <= 100', name='ck_transactions_risk_range'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_transactions_user_id_users', ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name='pk_transactions'),
        sa.UniqueConstraint('transaction_id', name='uq_transactions_transaction_id'),
    )
    op.create_index('ix_transactions_id', 'transactions', ['id'], unique=False)
    op.create_index('ix_transactions_type', 'transactions', ['type'], unique=False)
    op.create_index('ix_transactions_status', 'transactions', ['status'], unique=False)
    op.create_index('ix_transactions_user_id', 'transactions', ['user_id'], unique=False)
    op.create_index('ix_transactions_gateway_order_id', 'transactions', ['gateway_order_id'], unique=False)
    op.create_index('ix_transactions_gateway_payment_id', 'transactions', ['gateway_payment_id'], unique=False)
    op.create_index('ix_transactions_parent_transaction_id', 'transactions', ['parent_transaction_id'], unique=False)
    op.create_index('ix_transactions_user_created', 'transactions', ['user_id', 'created_at'], unique=False)

    # Create transaction_events table（只追加）
    op.create_table(
        'transaction_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('transaction_id', sa.String(length=100), nullable=False, comment='交易ID'),
        sa.Column('event_type', sa.String(length=40), nullable=False, comment='事件类型'),
        sa.Column('status', sa.String(length=32), nullable=True, comment='事件发生后的交易状态'),
        sa.Column('data', sa.JSON(), nullable=True, comment='事件数据'),
        sa.Column('actor', sa.String(length=100), nullable=True, comment='触发者: user:<id>/webhook/system/admin:<id>'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.PrimaryKeyConstraint('id', name='pk_transaction_events'),
    )
    op.create_index('ix_transaction_events_id', 'transaction_events', ['id'], unique=False)
    op.create_index('ix_transaction_events_tx_created', 'transaction_events', ['transaction_id', 'created_at'], unique=False)

    # Create subscriptions table
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='用户ID'),
        sa.Column('package_type', sa.String(length=32), nullable=False, comment='套餐类型'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active', comment='active/expired/cancelled'),
        sa.Column('credits_included', sa.Integer(), nullable=False, server_default='0', comment='包含积分'),
        sa.Column('credits_used', sa.Integer(), nullable=False, server_default='0', comment='已用积分'),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False, comment='开始时间'),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False, comment='结束时间'),
        sa.Column('auto_renew', sa.Boolean(), nullable=False, server_default='false', comment='是否自动续费'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_subscriptions_user_id_users', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_subscriptions'),
    )
    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'], unique=False)
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'], unique=False)
    # 每个用户最多一个 active 订阅（部分唯一索引）
    op.create_index(
        'uq_subscriptions_active_user',
        'subscriptions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    # Add table comments
    op.execute("COMMENT ON TABLE payments IS '支付订单表，每个网关订单一行'")
    op.execute("COMMENT ON TABLE webhook_deliveries IS 'Webhook 投递日志'")
    op.execute("COMMENT ON TABLE transactions IS '交易流水表，transaction_id 为幂等键'")
    op.execute("COMMENT ON TABLE transaction_events IS '交易审计事件，只追加'")
    op.execute("COMMENT ON TABLE subscriptions IS '套餐订阅表'")


def downgrade() -> None:
    # Drop indexes
    op.drop_index('uq_subscriptions_active_user', table_name='subscriptions', postgresql_where=sa.text("status = 'active'"))
    op.drop_index('ix_subscriptions_user_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_id', table_name='subscriptions')
    op.drop_index('ix_transaction_events_tx_created', table_name='transaction_events')
    op.drop_index('ix_transaction_events_id', table_name='transaction_events')
    for name in (
        'ix_transactions_user_created',
        'ix_transactions_parent_transaction_id',
        'ix_transactions_gateway_payment_id',
        'ix_transactions_gateway_order_id',
        'ix_transactions_user_id',
        'ix_transactions_status',
        'ix_transactions_type',
        'ix_transactions_id',
    ):
        op.drop_index(name, table_name='transactions')
    op.drop_index('ix_webhook_deliveries_event_outcome', table_name='webhook_deliveries')
    op.drop_index('ix_webhook_deliveries_gateway_payment_id', table_name='webhook_deliveries')
    op.drop_index('ix_webhook_deliveries_event_id', table_name='webhook_deliveries')
    op.drop_index('ix_webhook_deliveries_id', table_name='webhook_deliveries')
    op.drop_index('ix_payments_created_at', table_name='payments', postgresql_using='btree')
    op.drop_index('ix_payments_user_status', table_name='payments')
    op.drop_index('ix_payments_status', table_name='payments')
    op.drop_index('ix_payments_user_id', table_name='payments')
    op.drop_index('ix_payments_id', table_name='payments')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_id', table_name='users')

    # Drop tables（子表先删）
    op.drop_table('subscriptions')
    op.drop_table('transaction_events')
    op.drop_table('transactions')
    op.drop_table('webhook_deliveries')
    op.drop_table('payments')
    op.drop_table('users')
