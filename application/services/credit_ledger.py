"""
Credit ledger: the only code path that changes ``users.credits``.

Every balance change goes through a conditional UPDATE in the credit
repository and is paired with a transaction event.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from application.services.subscription_service import SubscriptionManager
from application.services.transaction_log import TransactionLog
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException, UserNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    Transaction,
    TransactionEventType,
    TransactionStatus,
    TransactionType,
)
from domain.payment.exceptions import InsufficientCreditsException


logger = get_logger(__name__)

# Bounded retries for the clamp path; each attempt re-reads the balance
MAX_CAS_ATTEMPTS = 5


class CreditLedger:
    def __init__(
        self,
        uow: AbstractUnitOfWork,
        log: TransactionLog,
        *,
        subscriptions: Optional[SubscriptionManager] = None,
        currency: str = "INR",
    ) -> None:
        self._uow = uow
        self._log = log
        self._subscriptions = subscriptions or SubscriptionManager(uow, log)
        self._currency = currency

    async def balance(self, user_id: int) -> int:
        balance = await self._uow.credit_repository.get_balance(user_id)
        if balance is None:
            raise UserNotFoundException(user_id)
        return balance

    async def award(self, user_id: int, amount: int, transaction_ref: str, *, actor: Optional[str] = None) -> None:
        if amount <= 0:
            raise DomainValidationException("Credits to award must be positive", field="amount")
        if not await self._uow.credit_repository.increment(user_id, amount):
            raise UserNotFoundException(user_id)
        logger.info("credits_awarded", user_id=user_id, credits=amount, transaction_id=transaction_ref)
        await self._log.record(
            transaction_ref,
            TransactionEventType.CREDITS_AWARDED,
            data={"user_id": user_id, "credits": amount},
            actor=actor,
        )

    async def deduct(
        self,
        user_id: int,
        amount: int,
        transaction_ref: str,
        *,
        actor: Optional[str] = None,
    ) -> bool:
        """Compare-and-decrement. Returns False, leaving the balance untouched, on underflow.

        A ``transaction_ref`` that names no transaction yet is treated as a
        usage deduction and gets its own CREDIT_USAGE transaction; replaying
        the same ref is a no-op that reports success.
        """
        if amount <= 0:
            raise DomainValidationException("Credits to deduct must be positive", field="amount")

        existing = await self._uow.transaction_repository.get(transaction_ref)
        if existing is not None and existing.type == TransactionType.CREDIT_USAGE:
            logger.info("credit_usage_duplicate_ignored", user_id=user_id, transaction_id=transaction_ref)
            return True

        try:
            async with self._uow.savepoint():
                if existing is None:
                    created = await self._uow.transaction_repository.create_if_absent(
                        self._usage_transaction(user_id, amount, transaction_ref)
                    )
                    if created is None:
                        # a concurrent duplicate, or a user_id the foreign key rejected
                        if await self._uow.transaction_repository.get(transaction_ref) is None:
                            raise UserNotFoundException(user_id)
                        return True
                if not await self._uow.credit_repository.decrement_if_sufficient(user_id, amount):
                    # rolls back the usage row created above
                    raise InsufficientCreditsException(user_id, amount)
        except InsufficientCreditsException:
            if await self._uow.credit_repository.get_balance(user_id) is None:
                raise UserNotFoundException(user_id)
            logger.info("credits_deduct_insufficient", user_id=user_id, requested=amount)
            return False

        if existing is None:
            await self._subscriptions.record_usage(user_id, amount)
        logger.info("credits_deducted", user_id=user_id, credits=amount, transaction_id=transaction_ref)
        await self._log.record(
            transaction_ref,
            TransactionEventType.CREDITS_DEDUCTED,
            status=TransactionStatus.COMPLETED if existing is None else None,
            data={"user_id": user_id, "credits": amount},
            actor=actor,
        )
        return True

    async def deduct_up_to(
        self,
        user_id: int,
        amount: int,
        transaction_ref: str,
        *,
        actor: Optional[str] = None,
    ) -> int:
        """Deduct at most the current balance; returns the credits actually taken."""
        for _ in range(MAX_CAS_ATTEMPTS):
            current = await self.balance(user_id)
            take = min(current, amount)
            if take <= 0:
                return 0
            if await self._uow.credit_repository.compare_and_set(user_id, current, current - take):
                logger.warning(
                    "credits_deduct_clamped",
                    user_id=user_id,
                    requested=amount,
                    deducted=take,
                    transaction_id=transaction_ref,
                )
                await self._log.record(
                    transaction_ref,
                    TransactionEventType.CREDITS_DEDUCTED,
                    data={"user_id": user_id, "credits": take, "requested": amount, "clamped": True},
                    actor=actor,
                )
                return take
        logger.error("credits_deduct_contention", user_id=user_id, transaction_id=transaction_ref)
        return 0

    def _usage_transaction(self, user_id: int, amount: int, transaction_ref: str) -> Transaction:
        return Transaction(
            id=None,
            transaction_id=transaction_ref,
            type=TransactionType.CREDIT_USAGE,
            status=TransactionStatus.COMPLETED,
            amount=Decimal("0"),
            currency=self._currency,
            credits=amount,
            user_id=user_id,
        )

