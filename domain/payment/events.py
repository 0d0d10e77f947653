"""
Payment domain events.

Dataclass events record payment lifecycle facts that are handled after the
unit of work commits (notifications, alerts). Domain remains free of
infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    gateway_order_id: Optional[str]
    user_id: Optional[int]
    gateway_payment_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentCompleted(PaymentEvent):
    amount: Decimal = Decimal("0")
    currency: str = ""
    credits: int = 0
    source: str = ""  # verify | webhook


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None


@dataclass
class RefundCreated(PaymentEvent):
    refund_transaction_id: str = ""
    amount: Decimal = Decimal("0")
    reversed_credits: int = 0
    shortfall_credits: int = 0
