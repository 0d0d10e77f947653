"""
支付领域服务 - 套餐定价与退款积分折算
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Optional, Protocol

from .exceptions import InvalidPackageException


class _Package(Protocol):
    credits: int
    amount_minor: int


@dataclass(frozen=True)
class PurchasePlan:
    """一次购买解析后的积分与价格"""
    package_type: Optional[str]
    credits: int
    amount_minor: int
    currency: str

    @property
    def amount(self) -> Decimal:
        """主币种金额（例如 499.00 INR）"""
        return (Decimal(self.amount_minor) / 100).quantize(Decimal("0.01"))


def resolve_purchase(
    *,
    package_type: Optional[str],
    credits: Optional[int],
    packages: Mapping[str, _Package],
    custom_price_minor: int,
    currency: str,
) -> PurchasePlan:
    """
    根据套餐或自定义积分数解析购买计划

    业务规则：
    1. 套餐优先；未知套餐抛出 InvalidPackageException
    2. 自定义积分必须为正整数，按单价计费
    """
    if package_type:
        key = package_type.upper()
        package = packages.get(key)
        if package is None:
            raise InvalidPackageException(package_type=package_type)
        return PurchasePlan(key, package.credits, package.amount_minor, currency)

    if credits is None or credits <= 0:
        raise InvalidPackageException(credits=credits)
    return PurchasePlan(None, credits, credits * custom_price_minor, currency)


def credits_for_share(total_credits: int, amount: Decimal, refunded: Decimal) -> int:
    if amount <= 0:
        return 0
    share = Decimal(total_credits) * refunded / amount
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def credits_to_reverse(
    total_credits: int,
    amount: Decimal,
    refunded_before: Decimal,
    refunded_after: Decimal,
) -> int:
    """
    退款应扣回的积分

    按累计退款比例折算，再减去之前已扣回的部分，
    多次部分退款的扣回总和恰好等于全额退款时的积分。
    """
    return (
        credits_for_share(total_credits, amount, refunded_after)
        - credits_for_share(total_credits, amount, refunded_before)
    )
