"""
Log-backed notification adapters.

Email delivery and paging are outside this service; these adapters emit
structured log events that the log pipeline routes to the right channel.
"""
from __future__ import annotations

from typing import Any

from core.logging_config import get_logger
from domain.payment.events import PaymentCompleted, RefundCreated


logger = get_logger("notifications")


class LoggingNotifier:
    async def payment_completed(self, event: PaymentCompleted) -> None:
        logger.info(
            "notify_payment_completed",
            user_id=event.user_id,
            gateway_order_id=event.gateway_order_id,
            credits=event.credits,
            amount=str(event.amount),
            currency=event.currency,
        )

    async def refund_created(self, event: RefundCreated) -> None:
        logger.info(
            "notify_refund_created",
            user_id=event.user_id,
            refund_transaction_id=event.refund_transaction_id,
            amount=str(event.amount),
            reversed_credits=event.reversed_credits,
        )


class LoggingAlerter:
    async def alert(self, name: str, **context: Any) -> None:
        logger.error("operator_alert", alert=name, **context)
