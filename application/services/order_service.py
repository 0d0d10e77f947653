"""
Order creation and purchase history.

The gateway is called before any local write: if it is unavailable the user
gets a retryable error and nothing is persisted. Payment, purchase
transaction and their audit events are then written in one unit of work.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from application.dtos.payments import (
    CreateOrderRequest,
    CreateOrderResult,
    GatewayOrderRequest,
    TransactionDTO,
)
from application.ports.notifications import Alerter
from application.ports.payment_gateway import PaymentGateway
from application.services.notify import safe_alert
from application.services.transaction_log import TransactionLog
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import UserNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    Payment,
    PaymentStatus,
    Transaction,
    TransactionEventType,
    TransactionStatus,
    TransactionType,
)
from domain.payment.fees import calculate_fees
from domain.payment.metadata import GatewayPayload, OrderContext
from domain.payment.risk import RiskContext, assess_risk
from domain.payment.service import resolve_purchase


logger = get_logger(__name__)

UnitOfWorkFactory = Callable[..., AbstractUnitOfWork]


def to_transaction_dto(tx: Transaction) -> TransactionDTO:
    return TransactionDTO(
        transaction_id=tx.transaction_id,
        type=tx.type.value,
        status=tx.status.value,
        amount=tx.amount,
        currency=tx.currency,
        platform_fee=tx.platform_fee,
        gateway_fee=tx.gateway_fee,
        tax=tx.tax,
        net_amount=tx.net_amount,
        credits=tx.credits,
        refunded_amount=tx.refunded_amount,
        risk_score=tx.risk_score,
        parent_transaction_id=tx.parent_transaction_id,
        gateway_order_id=tx.gateway_order_id,
        gateway_payment_id=tx.gateway_payment_id,
        created_at=tx.created_at,
        completed_at=tx.completed_at,
    )


class OrderService:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        gateway: PaymentGateway,
        *,
        settings: PaymentSettings = payment_settings,
        alerter: Optional[Alerter] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._settings = settings
        self._alerter = alerter

    async def create_order(
        self,
        user_id: int,
        req: CreateOrderRequest,
        *,
        now: Optional[datetime] = None,
    ) -> CreateOrderResult:
        now = now or datetime.now(timezone.utc)
        plan = resolve_purchase(
            package_type=req.package_type,
            credits=req.credits,
            packages=self._settings.packages,
            custom_price_minor=self._settings.custom_credit_price_minor,
            currency=req.currency,
        )

        async with self._uow_factory(readonly=True) as uow:
            if await uow.credit_repository.get_balance(user_id) is None:
                raise UserNotFoundException(user_id)
            prior = await uow.transaction_repository.count_by_user(user_id)

        receipt = f"order_{user_id}_{int(now.timestamp() * 1000)}"
        order = await self._gateway.create_order(
            GatewayOrderRequest(
                amount_minor=plan.amount_minor,
                currency=plan.currency,
                receipt=receipt,
                notes={
                    "user_id": str(user_id),
                    "package_type": plan.package_type or "CUSTOM",
                    "credits": str(plan.credits),
                },
            )
        )

        fees = calculate_fees(plan.amount, TransactionType.PURCHASE, self._gateway.provider, self._settings.fees)
        risk = assess_risk(
            RiskContext(amount=plan.amount, country=req.country, prior_transactions=prior, occurred_at=now),
            self._settings.risk,
        )

        async with self._uow_factory() as uow:
            log = TransactionLog(uow, self._alerter)
            await uow.payment_repository.create(
                Payment(
                    id=None,
                    gateway_order_id=order.order_id,
                    amount=plan.amount,
                    currency=plan.currency,
                    status=PaymentStatus.PENDING,
                    credits=plan.credits,
                    user_id=user_id,
                    package_type=plan.package_type,
                    metadata=[
                        OrderContext(receipt=receipt, package_type=plan.package_type, country=req.country),
                        GatewayPayload(source="order", payload=order.raw),
                    ],
                )
            )
            await uow.transaction_repository.create(
                Transaction(
                    id=None,
                    transaction_id=order.order_id,
                    type=TransactionType.PURCHASE,
                    status=TransactionStatus.INITIATED,
                    amount=fees.amount,
                    currency=plan.currency,
                    platform_fee=fees.platform_fee,
                    gateway_fee=fees.gateway_fee,
                    tax=fees.tax,
                    net_amount=fees.net_amount,
                    credits=plan.credits,
                    user_id=user_id,
                    gateway=self._gateway.provider,
                    gateway_order_id=order.order_id,
                    risk_score=risk.score,
                    is_high_risk=risk.flagged,
                    country=req.country,
                )
            )
            await log.record(
                order.order_id,
                TransactionEventType.INITIATED,
                status=TransactionStatus.INITIATED,
                data={"amount": str(plan.amount), "credits": plan.credits, "package_type": plan.package_type},
                actor=f"user:{user_id}",
            )
            await log.record(
                order.order_id,
                TransactionEventType.RISK_ASSESSED,
                data={"score": risk.score, "reasons": list(risk.reasons)},
            )
            if risk.flagged:
                await log.record(
                    order.order_id,
                    TransactionEventType.RISK_FLAGGED,
                    data={"score": risk.score, "reasons": list(risk.reasons)},
                )

        logger.info(
            "order_created",
            user_id=user_id,
            gateway_order_id=order.order_id,
            amount_minor=plan.amount_minor,
            credits=plan.credits,
            risk_score=risk.score,
        )
        if risk.flagged:
            logger.warning("order_risk_flagged", gateway_order_id=order.order_id, user_id=user_id, score=risk.score)
            await safe_alert(
                self._alerter,
                "high_risk_order",
                gateway_order_id=order.order_id,
                user_id=user_id,
                score=risk.score,
                reasons=list(risk.reasons),
            )

        return CreateOrderResult(
            gateway_order_id=order.order_id,
            amount=plan.amount_minor,
            currency=plan.currency,
            credits_awarded=plan.credits,
            package_type=plan.package_type,
            gateway_public_key=self._gateway.public_key,
        )

    async def history(self, user_id: int, *, page: int = 1, limit: int = 20) -> tuple[list[TransactionDTO], int]:
        offset = (page - 1) * limit
        async with self._uow_factory(readonly=True) as uow:
            items = await uow.transaction_repository.list_by_user(user_id, offset=offset, limit=limit)
            total = await uow.transaction_repository.count_by_user(user_id)
        return [to_transaction_dto(tx) for tx in items], total

