"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.entity import Payment, PaymentStatus, WebhookDelivery, WebhookOutcome
from domain.payment.exceptions import PaymentAlreadyExistsException
from domain.payment.metadata import MetadataEntry, dump_metadata, load_metadata
from domain.payment.repository import PaymentRepository, WebhookDeliveryRepository
from infrastructure.models.payment import PaymentModel, WebhookDeliveryModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            gateway_order_id=model.gateway_order_id,
            gateway_payment_id=model.gateway_payment_id,
            user_id=model.user_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            credits=model.credits,
            package_type=model.package_type,
            method=model.method,
            failure_reason=model.failure_reason,
            metadata=load_metadata(model.extra_metadata),
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        """将领域实体转换为数据库模型"""
        return PaymentModel(
            id=entity.id,
            gateway_order_id=entity.gateway_order_id,
            gateway_payment_id=entity.gateway_payment_id,
            user_id=entity.user_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            credits=entity.credits,
            package_type=entity.package_type,
            method=entity.method,
            failure_reason=entity.failure_reason,
            extra_metadata=dump_metadata(entity.metadata),
            completed_at=entity.completed_at,
        )

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        db_payment = self._to_model(payment)
        try:
            # 放在保存点内，冲突时只回滚本次插入
            async with self.session.begin_nested():
                self.session.add(db_payment)
                await self.session.flush()
        except IntegrityError:
            logger.warning("payment_create_conflict", gateway_order_id=payment.gateway_order_id)
            raise PaymentAlreadyExistsException(payment.gateway_order_id)
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            gateway_order_id=db_payment.gateway_order_id,
            status=db_payment.status,
        )
        return self._to_entity(db_payment)

    async def _get_model(self, *criteria) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel).where(*criteria).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_order_id(self, gateway_order_id: str) -> Optional[Payment]:
        """根据网关订单ID获取支付"""
        db_payment = await self._get_model(PaymentModel.gateway_order_id == gateway_order_id)
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_gateway_payment_id(self, gateway_payment_id: str) -> Optional[Payment]:
        """根据网关支付ID获取支付"""
        db_payment = await self._get_model(PaymentModel.gateway_payment_id == gateway_payment_id)
        return self._to_entity(db_payment) if db_payment else None

    async def mark_completed_if_pending(
        self,
        gateway_order_id: str,
        *,
        gateway_payment_id: str,
        method: Optional[str],
        completed_at: datetime,
        metadata: Optional[MetadataEntry] = None,
    ) -> bool:
        result = await self.session.execute(
            update(PaymentModel)
            .where(
                PaymentModel.gateway_order_id == gateway_order_id,
                PaymentModel.status == PaymentStatus.PENDING.value,
            )
            .values(
                status=PaymentStatus.COMPLETED.value,
                gateway_payment_id=gateway_payment_id,
                method=method,
                completed_at=completed_at,
                updated_at=completed_at,
            )
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        if won and metadata is not None:
            # 条件更新成功后本事务持有该行，追加元数据是安全的
            await self._append_metadata(gateway_order_id, metadata)
        return won

    async def mark_failed_if_pending(
        self,
        gateway_order_id: str,
        *,
        reason: Optional[str],
        gateway_payment_id: Optional[str] = None,
    ) -> bool:
        values = {
            "status": PaymentStatus.FAILED.value,
            "failure_reason": reason,
            "updated_at": datetime.now(timezone.utc),
        }
        if gateway_payment_id:
            values["gateway_payment_id"] = gateway_payment_id
        result = await self.session.execute(
            update(PaymentModel)
            .where(
                PaymentModel.gateway_order_id == gateway_order_id,
                PaymentModel.status == PaymentStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _append_metadata(self, gateway_order_id: str, entry: MetadataEntry) -> None:
        db_payment = await self._get_model(PaymentModel.gateway_order_id == gateway_order_id)
        if db_payment is None:
            return
        db_payment.extra_metadata = list(db_payment.extra_metadata or []) + dump_metadata([entry])
        await self.session.flush()


class SQLAlchemyWebhookDeliveryRepository(WebhookDeliveryRepository):
    """Webhook 投递日志仓储"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, delivery: WebhookDelivery) -> WebhookDelivery:
        model = WebhookDeliveryModel(
            event_id=delivery.event_id,
            event_type=delivery.event_type,
            gateway_payment_id=delivery.gateway_payment_id,
            signature_valid=delivery.signature_valid,
            outcome=delivery.outcome.value,
            error=delivery.error,
            payload=delivery.payload,
        )
        self.session.add(model)
        await self.session.flush()
        delivery.id = model.id
        delivery.received_at = model.received_at
        return delivery

    async def was_processed(self, event_id: str) -> bool:
        result = await self.session.execute(
            select(
                exists().where(
                    WebhookDeliveryModel.event_id == event_id,
                    WebhookDeliveryModel.outcome == WebhookOutcome.PROCESSED.value,
                )
            )
        )
        return bool(result.scalar())
