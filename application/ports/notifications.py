"""
Outbound notification ports: user-facing email and operator alerts.

Both are best-effort collaborators. Callers invoke them after commit (or from
an error path) and never let their failures change a business outcome.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from domain.payment.events import PaymentCompleted, RefundCreated


@runtime_checkable
class Notifier(Protocol):
    async def payment_completed(self, event: PaymentCompleted) -> None: ...

    async def refund_created(self, event: RefundCreated) -> None: ...


@runtime_checkable
class Alerter(Protocol):
    async def alert(self, name: str, **context: Any) -> None: ...
