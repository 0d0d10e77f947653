"""
Append-only audit trail for transactions.

Writes run inside a savepoint of the caller's unit of work. A failed write
rolls back only the savepoint, is logged and handed to the alerter, and
never propagates: losing an audit row must not block a payment.
"""
from __future__ import annotations

from typing import Any, Optional

from application.ports.notifications import Alerter
from application.services.notify import safe_alert
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import TransactionEvent, TransactionEventType, TransactionStatus


logger = get_logger(__name__)


class TransactionLog:
    def __init__(self, uow: AbstractUnitOfWork, alerter: Optional[Alerter] = None) -> None:
        self._uow = uow
        self._alerter = alerter

    async def record(
        self,
        transaction_id: str,
        event_type: TransactionEventType,
        *,
        status: Optional[TransactionStatus] = None,
        data: Optional[dict[str, Any]] = None,
        actor: Optional[str] = None,
    ) -> Optional[TransactionEvent]:
        event = TransactionEvent(
            id=None,
            transaction_id=transaction_id,
            event_type=event_type,
            status=status,
            data=data or {},
            actor=actor,
        )
        try:
            async with self._uow.savepoint():
                return await self._uow.transaction_event_repository.append(event)
        except Exception as exc:
            logger.error(
                "transaction_event_record_failed",
                transaction_id=transaction_id,
                event_type=event_type.value,
                error=str(exc),
                exc_info=True,
            )
            await safe_alert(
                self._alerter,
                "transaction_event_lost",
                transaction_id=transaction_id,
                event_type=event_type.value,
                error=str(exc),
            )
            return None

    async def events(self, transaction_id: str) -> list[TransactionEvent]:
        """Newest first."""
        return await self._uow.transaction_event_repository.list_for(transaction_id)

    async def replay_status(self, transaction_id: str) -> Optional[TransactionStatus]:
        """Status reconstructed from the event stream (latest event carrying a status)."""
        for event in await self.events(transaction_id):
            if event.status is not None:
                return event.status
        return None

