"""
Refunds and manual review.

The refund bound is enforced by a single conditional UPDATE on the parent
purchase, so two concurrent partial refunds can never exceed the original
amount. Credits are reversed proportionally to the cumulative refunded share;
when the user has already spent them the shortfall is recorded for
reconciliation instead of driving the balance negative.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional
import uuid

from application.ports.notifications import Alerter, Notifier
from application.services.credit_ledger import CreditLedger
from application.services.notify import safe_alert, safe_notify
from application.services.subscription_service import SubscriptionManager
from application.services.transaction_log import TransactionLog
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    Transaction,
    TransactionEventType,
    TransactionStatus,
    TransactionType,
)
from domain.payment.events import RefundCreated
from domain.payment.exceptions import (
    InvalidStatusTransitionException,
    NotRefundableException,
    TransactionNotFoundException,
)
from domain.payment.fees import calculate_fees
from domain.payment.metadata import RefundNote
from domain.payment.service import credits_to_reverse


logger = get_logger(__name__)


@dataclass
class RefundOutcome:
    refund: Transaction
    created: bool
    reversed_credits: int = 0
    shortfall_credits: int = 0
    event: Optional[RefundCreated] = None


class RefundEngine:
    """Refund logic bound to an open unit of work (shared by the admin API and webhooks)."""

    def __init__(
        self,
        uow: AbstractUnitOfWork,
        *,
        settings: PaymentSettings = payment_settings,
        alerter: Optional[Alerter] = None,
    ) -> None:
        self._uow = uow
        self._settings = settings
        self._alerter = alerter
        self._log = TransactionLog(uow, alerter)
        subscriptions = SubscriptionManager(uow, self._log, period_days=settings.subscription_period_days)
        self._ledger = CreditLedger(uow, self._log, subscriptions=subscriptions, currency=settings.currency)

    async def refund(
        self,
        parent_transaction_id: str,
        amount: Decimal,
        *,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
        refund_transaction_id: Optional[str] = None,
        gateway_refund_id: Optional[str] = None,
    ) -> RefundOutcome:
        amount = Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        if amount <= 0:
            raise DomainValidationException("Refund amount must be positive", field="amount")
        txs = self._uow.transaction_repository

        if refund_transaction_id:
            existing = await txs.get(refund_transaction_id)
            if existing is not None:
                if existing.type != TransactionType.REFUND or existing.parent_transaction_id != parent_transaction_id:
                    raise DomainValidationException(
                        f"Transaction id {refund_transaction_id} is already used",
                        field="refund_id",
                    )
                logger.info("refund_replayed", refund_transaction_id=refund_transaction_id)
                return RefundOutcome(refund=existing, created=False)

        parent = await txs.get(parent_transaction_id)
        if parent is None:
            raise TransactionNotFoundException(parent_transaction_id)
        if not parent.is_refundable():
            raise NotRefundableException(parent_transaction_id, f"status is {parent.status.value}")
        if amount > parent.refundable_amount():
            raise NotRefundableException(
                parent_transaction_id, "amount exceeds refundable balance", parent.refundable_amount()
            )

        updated = await txs.apply_refund(parent_transaction_id, amount)
        if updated is None:
            # a concurrent refund consumed the remaining balance
            current = await txs.get(parent_transaction_id)
            raise NotRefundableException(
                parent_transaction_id,
                "amount exceeds refundable balance",
                current.refundable_amount() if current else None,
            )
        refunded_after = updated.refunded_amount
        refunded_before = refunded_after - amount
        reverse = credits_to_reverse(parent.credits, parent.amount, refunded_before, refunded_after)

        refund_id = refund_transaction_id or (
            f"REF_{parent_transaction_id}_{int(datetime.now(timezone.utc).timestamp() * 1000)}_{uuid.uuid4().hex[:6]}"
        )
        fees = calculate_fees(amount, TransactionType.REFUND, parent.gateway, self._settings.fees)
        refund = await txs.create_if_absent(
            Transaction(
                id=None,
                transaction_id=refund_id,
                type=TransactionType.REFUND,
                status=TransactionStatus.COMPLETED,
                amount=fees.amount,
                currency=parent.currency,
                platform_fee=fees.platform_fee,
                gateway_fee=fees.gateway_fee,
                tax=fees.tax,
                net_amount=fees.net_amount,
                credits=reverse,
                user_id=parent.user_id,
                gateway=parent.gateway,
                gateway_order_id=parent.gateway_order_id,
                gateway_payment_id=parent.gateway_payment_id,
                parent_transaction_id=parent_transaction_id,
                completed_at=datetime.now(timezone.utc),
            )
        )
        if refund is None:
            # rolls back the parent update with the caller's unit of work
            raise NotRefundableException(parent_transaction_id, f"refund {refund_id} is being processed")

        reversed_credits = 0
        if reverse > 0 and parent.user_id is not None:
            if await self._ledger.deduct(parent.user_id, reverse, refund_id, actor=actor):
                reversed_credits = reverse
            else:
                reversed_credits = await self._ledger.deduct_up_to(parent.user_id, reverse, refund_id, actor=actor)
        shortfall = reverse - reversed_credits if parent.user_id is not None else 0

        await txs.add_metadata(
            refund_id,
            RefundNote(
                reason=reason,
                actor=actor,
                gateway_refund_id=gateway_refund_id,
                reversed_credits=reversed_credits,
                shortfall_credits=shortfall,
            ),
        )
        await self._log.record(
            refund_id,
            TransactionEventType.REFUND_CREATED,
            status=TransactionStatus.COMPLETED,
            data={"parent_transaction_id": parent_transaction_id, "amount": str(amount), "reason": reason},
            actor=actor,
        )
        await self._log.record(
            parent_transaction_id,
            TransactionEventType.REFUNDED,
            status=updated.status,
            data={
                "refund_transaction_id": refund_id,
                "amount": str(amount),
                "refunded_total": str(refunded_after),
                "credits_reversed": reversed_credits,
            },
            actor=actor,
        )
        if shortfall > 0:
            await self._flag_shortfall(parent, refund_id, reverse, reversed_credits, shortfall, actor)

        logger.info(
            "refund_created",
            parent_transaction_id=parent_transaction_id,
            refund_transaction_id=refund_id,
            amount=str(amount),
            parent_status=updated.status.value,
            reversed_credits=reversed_credits,
            shortfall_credits=shortfall,
        )
        refund = await txs.get(refund_id)
        return RefundOutcome(
            refund=refund,
            created=True,
            reversed_credits=reversed_credits,
            shortfall_credits=shortfall,
            event=RefundCreated(
                gateway_order_id=parent.gateway_order_id,
                user_id=parent.user_id,
                gateway_payment_id=parent.gateway_payment_id,
                refund_transaction_id=refund_id,
                amount=amount,
                reversed_credits=reversed_credits,
                shortfall_credits=shortfall,
            ),
        )

    async def flag_for_review(self, transaction_id: str, reason: str, *, actor: Optional[str] = None) -> Transaction:
        txs = self._uow.transaction_repository
        if not await txs.transition_status(transaction_id, TransactionStatus.UNDER_REVIEW, review_notes=reason):
            tx = await txs.get(transaction_id)
            if tx is None:
                raise TransactionNotFoundException(transaction_id)
            raise InvalidStatusTransitionException(
                transaction_id, tx.status.value, TransactionStatus.UNDER_REVIEW.value
            )
        await self._log.record(
            transaction_id,
            TransactionEventType.REVIEW_STARTED,
            status=TransactionStatus.UNDER_REVIEW,
            data={"reason": reason},
            actor=actor,
        )
        logger.info("transaction_review_started", transaction_id=transaction_id, actor=actor)
        return await txs.get(transaction_id)

    async def _flag_shortfall(
        self,
        parent: Transaction,
        refund_id: str,
        expected: int,
        reversed_credits: int,
        shortfall: int,
        actor: Optional[str],
    ) -> None:
        context = {
            "parent_transaction_id": parent.transaction_id,
            "refund_transaction_id": refund_id,
            "user_id": parent.user_id,
            "expected_credits": expected,
            "reversed_credits": reversed_credits,
            "shortfall_credits": shortfall,
        }
        logger.warning("refund_credit_shortfall", **context)
        await self._log.record(refund_id, TransactionEventType.RECONCILIATION_REQUIRED, data=context, actor=actor)
        await safe_alert(self._alerter, "refund_credit_shortfall", **context)


class RefundService:
    """Admin entry points: each call runs in its own unit of work."""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        settings: PaymentSettings = payment_settings,
        notifier: Optional[Notifier] = None,
        alerter: Optional[Alerter] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._settings = settings
        self._notifier = notifier
        self._alerter = alerter

    async def create_refund(
        self,
        parent_transaction_id: str,
        amount: Decimal,
        *,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
        refund_transaction_id: Optional[str] = None,
    ) -> RefundOutcome:
        async with self._uow_factory() as uow:
            outcome = await RefundEngine(uow, settings=self._settings, alerter=self._alerter).refund(
                parent_transaction_id,
                amount,
                reason=reason,
                actor=actor,
                refund_transaction_id=refund_transaction_id,
            )
        if outcome.created and outcome.event is not None and self._notifier is not None:
            await safe_notify(
                lambda: self._notifier.refund_created(outcome.event),
                name="refund_created",
                alerter=self._alerter,
                refund_transaction_id=outcome.refund.transaction_id,
            )
        return outcome

    async def flag_for_review(self, transaction_id: str, reason: str, *, actor: Optional[str] = None) -> Transaction:
        async with self._uow_factory() as uow:
            return await RefundEngine(uow, settings=self._settings, alerter=self._alerter).flag_for_review(
                transaction_id, reason, actor=actor
            )
