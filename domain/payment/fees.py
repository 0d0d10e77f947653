"""
Fee calculator.

Pure function of (amount, transaction type, gateway, schedule). Every
component is rounded half-up to two decimals and the net amount is derived
from the rounded parts, so ``net + platform + gateway + tax == amount``
holds exactly.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Optional

from domain.payment.entity import TransactionType

if TYPE_CHECKING:
    from core.settings import FeeSchedule


CENT = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class FeeBreakdown:
    amount: Decimal
    platform_fee: Decimal
    gateway_fee: Decimal
    tax: Decimal
    net_amount: Decimal

    @property
    def total_fees(self) -> Decimal:
        return self.platform_fee + self.gateway_fee + self.tax


def _round(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_fees(
    amount: Decimal,
    tx_type: TransactionType,
    gateway: Optional[str],
    schedule: FeeSchedule,
) -> FeeBreakdown:
    amount = _round(Decimal(amount))
    if tx_type.value in schedule.exempt_types or amount == ZERO:
        return FeeBreakdown(amount, ZERO, ZERO, ZERO, amount)

    platform_fee = _round(amount * schedule.platform_rate)
    gateway_rate = schedule.gateway_rates.get((gateway or "").lower(), Decimal("0"))
    gateway_fee = _round(amount * gateway_rate)
    tax = _round(amount * schedule.tax_rate)
    net_amount = amount - platform_fee - gateway_fee - tax
    return FeeBreakdown(amount, platform_fee, gateway_fee, tax, net_amount)
