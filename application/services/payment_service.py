"""
Read-side payment use-cases: credit balance and transaction audit trail.

Write paths live in their own services (orders, verification, webhooks,
refunds); this one only opens read-only units of work.
"""
from __future__ import annotations

from typing import Callable

from application.dtos.payments import CreditBalanceDTO, SubscriptionDTO, TransactionEventDTO
from application.services.subscription_service import SubscriptionManager
from application.services.transaction_log import TransactionLog
from domain.common.exceptions import UserNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.exceptions import TransactionNotFoundException


class PaymentQueryService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]) -> None:
        self._uow_factory = uow_factory

    async def credits(self, user_id: int) -> CreditBalanceDTO:
        async with self._uow_factory(readonly=True) as uow:
            balance = await uow.credit_repository.get_balance(user_id)
            if balance is None:
                raise UserNotFoundException(user_id)
            subscription = await SubscriptionManager(uow, TransactionLog(uow)).current(user_id)

        return CreditBalanceDTO(
            user_id=user_id,
            credits=balance,
            subscription=SubscriptionDTO(
                package_type=subscription.package_type,
                status=subscription.status.value,
                credits_included=subscription.credits_included,
                credits_used=subscription.credits_used,
                starts_at=subscription.starts_at,
                ends_at=subscription.ends_at,
            )
            if subscription
            else None,
        )

    async def events(self, transaction_id: str, *, user_id: int, is_admin: bool = False) -> list[TransactionEventDTO]:
        """Audit trail, newest first. Non-admins only see their own transactions."""
        async with self._uow_factory(readonly=True) as uow:
            tx = await uow.transaction_repository.get(transaction_id)
            if tx is None or (not is_admin and tx.user_id != user_id):
                raise TransactionNotFoundException(transaction_id)
            events = await TransactionLog(uow).events(transaction_id)

        return [
            TransactionEventDTO(
                event_type=e.event_type.value,
                status=e.status.value if e.status else None,
                data=e.data,
                actor=e.actor,
                created_at=e.created_at,
            )
            for e in events
        ]
