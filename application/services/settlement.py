"""
Payment settlement: the single code path that turns a PENDING payment into a
COMPLETED or FAILED one.

Shared by client verification and webhook ingestion. Runs inside the caller's
unit of work, so any failure rolls back payment, transaction, credits and
subscription together. The conditional ``WHERE status = 'pending'`` update
decides the winner when both paths race; the loser settles nothing.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

from application.dtos.payments import GatewayPayment
from application.ports.notifications import Alerter
from application.services.credit_ledger import CreditLedger
from application.services.subscription_service import SubscriptionManager
from application.services.transaction_log import TransactionLog
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Payment, TransactionEventType, TransactionStatus
from domain.payment.events import PaymentCompleted, PaymentFailed
from domain.payment.exceptions import (
    InvalidStatusTransitionException,
    PaymentNotFoundException,
    TransactionNotFoundException,
)
from domain.payment.metadata import GatewayPayload


logger = get_logger(__name__)

Source = Literal["verify", "webhook"]


@dataclass
class SettlementResult:
    completed: bool
    payment: Payment
    credits_awarded: int = 0
    event: Optional[PaymentCompleted] = None


def purchase_ref(payment: Payment) -> str:
    """Purchase transactions are keyed by the gateway order id."""
    return payment.gateway_order_id or payment.gateway_payment_id


class PaymentSettlement:
    def __init__(
        self,
        uow: AbstractUnitOfWork,
        log: TransactionLog,
        ledger: CreditLedger,
        subscriptions: SubscriptionManager,
    ) -> None:
        self._uow = uow
        self._log = log
        self._ledger = ledger
        self._subscriptions = subscriptions

    async def complete(
        self,
        payment: Payment,
        gateway_payment: GatewayPayment,
        *,
        source: Source,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SettlementResult:
        now = now or datetime.now(timezone.utc)
        order_id = payment.gateway_order_id
        won = await self._uow.payment_repository.mark_completed_if_pending(
            order_id,
            gateway_payment_id=gateway_payment.payment_id,
            method=gateway_payment.method,
            completed_at=now,
            metadata=GatewayPayload(
                source="payment" if source == "verify" else "webhook",
                payload=gateway_payment.raw,
            ),
        )
        if not won:
            current = await self._uow.payment_repository.get_by_order_id(order_id)
            if current is None:
                raise PaymentNotFoundException(order_id)
            logger.info(
                "payment_settlement_skipped",
                gateway_order_id=order_id,
                status=current.status.value,
                source=source,
            )
            return SettlementResult(completed=False, payment=current)

        tx_id = purchase_ref(payment)
        moved = await self._uow.transaction_repository.transition_status(
            tx_id,
            TransactionStatus.COMPLETED,
            gateway_payment_id=gateway_payment.payment_id,
        )
        if not moved:
            tx = await self._uow.transaction_repository.get(tx_id)
            if tx is None:
                raise TransactionNotFoundException(tx_id)
            raise InvalidStatusTransitionException(tx_id, tx.status.value, TransactionStatus.COMPLETED.value)

        await self._log.record(
            tx_id,
            TransactionEventType.COMPLETED,
            status=TransactionStatus.COMPLETED,
            data={
                "gateway_payment_id": gateway_payment.payment_id,
                "amount": str(payment.amount),
                "method": gateway_payment.method,
                "source": source,
            },
            actor=actor,
        )

        credits = 0
        if payment.user_id is not None and payment.credits > 0:
            await self._ledger.award(payment.user_id, payment.credits, tx_id, actor=actor)
            credits = payment.credits
        if payment.user_id is not None and payment.package_type:
            await self._subscriptions.activate_or_extend(
                payment.user_id, payment.package_type, payment.credits, tx_id, now=now
            )

        completed = await self._uow.payment_repository.get_by_order_id(order_id)
        logger.info(
            "payment_completed",
            gateway_order_id=order_id,
            gateway_payment_id=gateway_payment.payment_id,
            user_id=payment.user_id,
            credits=credits,
            source=source,
        )
        event = PaymentCompleted(
            gateway_order_id=order_id,
            user_id=payment.user_id,
            gateway_payment_id=gateway_payment.payment_id,
            amount=payment.amount,
            currency=payment.currency,
            credits=credits,
            source=source,
        )
        return SettlementResult(completed=True, payment=completed, credits_awarded=credits, event=event)

    async def fail(
        self,
        payment: Payment,
        *,
        reason: Optional[str],
        gateway_payment_id: Optional[str] = None,
        source: Source = "webhook",
        actor: Optional[str] = None,
    ) -> Optional[PaymentFailed]:
        """Mark a PENDING payment FAILED. Returns None when it was already settled."""
        won = await self._uow.payment_repository.mark_failed_if_pending(
            payment.gateway_order_id,
            reason=reason,
            gateway_payment_id=gateway_payment_id,
        )
        if not won:
            logger.info("payment_failure_skipped", gateway_order_id=payment.gateway_order_id, source=source)
            return None

        tx_id = purchase_ref(payment)
        if await self._uow.transaction_repository.transition_status(
            tx_id,
            TransactionStatus.FAILED,
            gateway_payment_id=gateway_payment_id,
            failure_reason=reason,
        ):
            await self._log.record(
                tx_id,
                TransactionEventType.FAILED,
                status=TransactionStatus.FAILED,
                data={"reason": reason, "gateway_payment_id": gateway_payment_id, "source": source},
                actor=actor,
            )
        else:
            logger.warning("purchase_transaction_not_failed", transaction_id=tx_id)

        logger.info(
            "payment_failed",
            gateway_order_id=payment.gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            reason=reason,
        )
        return PaymentFailed(
            gateway_order_id=payment.gateway_order_id,
            user_id=payment.user_id,
            gateway_payment_id=gateway_payment_id,
            reason=reason,
        )


def build_settlement(
    uow: AbstractUnitOfWork,
    settings: PaymentSettings,
    alerter: Optional[Alerter] = None,
) -> PaymentSettlement:
    log = TransactionLog(uow, alerter)
    subscriptions = SubscriptionManager(uow, log, period_days=settings.subscription_period_days)
    ledger = CreditLedger(uow, log, subscriptions=subscriptions, currency=settings.currency)
    return PaymentSettlement(uow, log, ledger, subscriptions)
