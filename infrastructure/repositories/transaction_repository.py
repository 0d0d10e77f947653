"""
交易流水与审计事件仓储实现
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.entity import (
    Transaction,
    TransactionEvent,
    TransactionEventType,
    TransactionStatus,
    TransactionType,
    allowed_predecessors,
)
from domain.payment.metadata import MetadataEntry, dump_metadata, load_metadata
from domain.payment.repository import TransactionEventRepository, TransactionRepository
from infrastructure.models.transaction import TransactionEventModel, TransactionModel
from core.logging_config import get_logger


logger = get_logger(__name__)

_REFUNDABLE_STATES = (
    TransactionStatus.COMPLETED.value,
    TransactionStatus.PARTIALLY_REFUNDED.value,
    TransactionStatus.DISPUTED.value,
)


def _dec(value) -> Decimal:
    return Decimal(str(value if value is not None else 0))


class SQLAlchemyTransactionRepository(TransactionRepository):
    """交易流水仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TransactionModel) -> Transaction:
        return Transaction(
            id=model.id,
            transaction_id=model.transaction_id,
            type=TransactionType(model.type),
            status=TransactionStatus(model.status),
            amount=_dec(model.amount),
            currency=model.currency,
            platform_fee=_dec(model.platform_fee),
            gateway_fee=_dec(model.gateway_fee),
            tax=_dec(model.tax),
            net_amount=_dec(model.net_amount),
            credits=model.credits,
            user_id=model.user_id,
            gateway=model.gateway,
            gateway_order_id=model.gateway_order_id,
            gateway_payment_id=model.gateway_payment_id,
            parent_transaction_id=model.parent_transaction_id,
            refunded_amount=_dec(model.refunded_amount),
            risk_score=model.risk_score,
            is_high_risk=model.is_high_risk,
            country=model.country,
            failure_reason=model.failure_reason,
            review_notes=model.review_notes,
            metadata=load_metadata(model.extra_metadata),
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
        )

    def _to_model(self, entity: Transaction) -> TransactionModel:
        return TransactionModel(
            transaction_id=entity.transaction_id,
            type=entity.type.value,
            status=entity.status.value,
            amount=entity.amount,
            currency=entity.currency,
            platform_fee=entity.platform_fee,
            gateway_fee=entity.gateway_fee,
            tax=entity.tax,
            net_amount=entity.net_amount,
            credits=entity.credits,
            user_id=entity.user_id,
            gateway=entity.gateway,
            gateway_order_id=entity.gateway_order_id,
            gateway_payment_id=entity.gateway_payment_id,
            parent_transaction_id=entity.parent_transaction_id,
            refunded_amount=entity.refunded_amount,
            risk_score=entity.risk_score,
            is_high_risk=entity.is_high_risk,
            country=entity.country,
            failure_reason=entity.failure_reason,
            review_notes=entity.review_notes,
            extra_metadata=dump_metadata(entity.metadata),
            completed_at=entity.completed_at,
        )

    async def _get_model(self, *criteria) -> Optional[TransactionModel]:
        result = await self.session.execute(
            select(TransactionModel).where(*criteria).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def create(self, transaction: Transaction) -> Transaction:
        model = self._to_model(transaction)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        logger.info(
            "transaction_created",
            transaction_id=model.transaction_id,
            type=model.type,
            status=model.status,
        )
        return self._to_entity(model)

    async def create_if_absent(self, transaction: Transaction) -> Optional[Transaction]:
        model = self._to_model(transaction)
        try:
            async with self.session.begin_nested():
                self.session.add(model)
                await self.session.flush()
        except IntegrityError:
            logger.info("transaction_duplicate_ignored", transaction_id=transaction.transaction_id)
            return None
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        model = await self._get_model(TransactionModel.transaction_id == transaction_id)
        return self._to_entity(model) if model else None

    async def get_by_gateway_payment_id(self, gateway_payment_id: str) -> Optional[Transaction]:
        model = await self._get_model(
            TransactionModel.gateway_payment_id == gateway_payment_id,
            TransactionModel.type == TransactionType.PURCHASE.value,
        )
        return self._to_entity(model) if model else None

    async def transition_status(
        self,
        transaction_id: str,
        target: TransactionStatus,
        *,
        gateway_payment_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        review_notes: Optional[str] = None,
    ) -> bool:
        now = datetime.now(timezone.utc)
        values = {"status": target.value, "updated_at": now}
        if target == TransactionStatus.COMPLETED:
            values["completed_at"] = now
        if gateway_payment_id:
            values["gateway_payment_id"] = gateway_payment_id
        if failure_reason is not None:
            values["failure_reason"] = failure_reason
        if review_notes is not None:
            values["review_notes"] = review_notes

        sources = [s.value for s in allowed_predecessors(target)]
        result = await self.session.execute(
            update(TransactionModel)
            .where(
                TransactionModel.transaction_id == transaction_id,
                TransactionModel.status.in_(sources),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def apply_refund(self, transaction_id: str, amount: Decimal) -> Optional[Transaction]:
        new_refunded = TransactionModel.refunded_amount + amount
        result = await self.session.execute(
            update(TransactionModel)
            .where(
                TransactionModel.transaction_id == transaction_id,
                TransactionModel.type == TransactionType.PURCHASE.value,
                TransactionModel.status.in_(_REFUNDABLE_STATES),
                new_refunded <= TransactionModel.amount,
            )
            .values(
                refunded_amount=new_refunded,
                status=case(
                    (new_refunded >= TransactionModel.amount, TransactionStatus.REFUNDED.value),
                    else_=TransactionStatus.PARTIALLY_REFUNDED.value,
                ),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return await self.get(transaction_id)

    async def list_by_user(self, user_id: int, *, offset: int = 0, limit: int = 20) -> List[Transaction]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.user_id == user_id)
            .order_by(TransactionModel.created_at.desc(), TransactionModel.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_user(self, user_id: int) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(TransactionModel).where(TransactionModel.user_id == user_id)
        )
        return int(result.scalar() or 0)

    async def add_metadata(self, transaction_id: str, entry: MetadataEntry) -> None:
        model = await self._get_model(TransactionModel.transaction_id == transaction_id)
        if model is None:
            return
        model.extra_metadata = list(model.extra_metadata or []) + dump_metadata([entry])
        await self.session.flush()


class SQLAlchemyTransactionEventRepository(TransactionEventRepository):
    """审计事件仓储：只提供追加与查询"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TransactionEventModel) -> TransactionEvent:
        return TransactionEvent(
            id=model.id,
            transaction_id=model.transaction_id,
            event_type=TransactionEventType(model.event_type),
            status=TransactionStatus(model.status) if model.status else None,
            data=model.data or {},
            actor=model.actor,
            created_at=model.created_at,
        )

    async def append(self, event: TransactionEvent) -> TransactionEvent:
        model = TransactionEventModel(
            transaction_id=event.transaction_id,
            event_type=event.event_type.value,
            status=event.status.value if event.status else None,
            data=event.data,
            actor=event.actor,
        )
        self.session.add(model)
        await self.session.flush()
        return self._to_entity(model)

    async def list_for(self, transaction_id: str) -> List[TransactionEvent]:
        result = await self.session.execute(
            select(TransactionEventModel)
            .where(TransactionEventModel.transaction_id == transaction_id)
            .order_by(TransactionEventModel.created_at.desc(), TransactionEventModel.id.desc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]
