from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.settings import FeeSchedule, RiskPolicy
from domain.common.exceptions import DomainValidationException
from domain.payment import signature
from domain.payment.entity import (
    Transaction,
    TransactionStatus,
    TransactionType,
    allowed_predecessors,
)
from domain.payment.exceptions import InvalidPackageException
from domain.payment.fees import calculate_fees
from domain.payment.metadata import GatewayPayload, OrderContext, RefundNote, dump_metadata, load_metadata
from domain.payment.risk import RiskContext, assess_risk
from domain.payment.service import credits_to_reverse, resolve_purchase
from core.settings import payment_settings


NOON_IST = datetime(2026, 10, 18, 6, 30, tzinfo=timezone.utc)
MIDNIGHT_IST = datetime(2026, 10, 18, 18, 45, tzinfo=timezone.utc)


@pytest.mark.parametrize("amount", ["499.00", "1999.00", "0.01", "333.33", "12345.67"])
def test_fee_components_sum_to_amount(amount):
    fees = calculate_fees(Decimal(amount), TransactionType.PURCHASE, "razorpay", FeeSchedule())
    assert fees.net_amount + fees.platform_fee + fees.gateway_fee + fees.tax == fees.amount
    assert fees.amount == Decimal(amount)


def test_fee_rates_for_basic_package():
    fees = calculate_fees(Decimal("499.00"), TransactionType.PURCHASE, "razorpay", FeeSchedule())
    assert fees.platform_fee == Decimal("9.98")
    assert fees.gateway_fee == Decimal("11.48")
    assert fees.tax == Decimal("89.82")
    assert fees.net_amount == Decimal("387.72")


def test_fee_exempt_types_and_unknown_gateway():
    usage = calculate_fees(Decimal("100"), TransactionType.CREDIT_USAGE, "razorpay", FeeSchedule())
    assert usage.total_fees == Decimal("0.00")
    assert usage.net_amount == Decimal("100.00")

    unknown = calculate_fees(Decimal("100"), TransactionType.PURCHASE, "paypal", FeeSchedule())
    assert unknown.gateway_fee == Decimal("0.00")
    assert unknown.platform_fee == Decimal("2.00")


def test_signature_verification():
    secret = "s3cret"
    payload = signature.order_payload("order_1", "pay_1")
    assert payload == "order_1|pay_1"
    good = signature.compute_signature(payload, secret)

    assert signature.verify(payload, good, secret)
    assert signature.verify(payload.encode(), good.upper(), secret)
    assert not signature.verify(payload, good, "other")
    assert not signature.verify("order_1|pay_2", good, secret)
    assert not signature.verify(payload, "", secret)
    assert not signature.verify(payload, good, None)
    assert not signature.verify(payload, "not-hex", secret)


def test_risk_score_components():
    policy = RiskPolicy()
    quiet = assess_risk(RiskContext(Decimal("499"), "IN", 3, NOON_IST), policy)
    assert quiet.score == 0 and not quiet.flagged

    new_user = assess_risk(RiskContext(Decimal("499"), None, 0, NOON_IST), policy)
    assert new_user.score == 15
    assert new_user.reasons == ("new_user",)

    worst = assess_risk(RiskContext(Decimal("60000"), "ng", 0, MIDNIGHT_IST), policy)
    assert worst.score == 100
    assert worst.flagged
    assert set(worst.reasons) == {"high_amount", "very_high_amount", "high_risk_country", "new_user", "off_hours"}


def test_risk_threshold_boundary():
    policy = RiskPolicy()
    # 20 + 30 + 15 = 65: below the review threshold
    below = assess_risk(RiskContext(Decimal("50001"), "IN", 0, NOON_IST), policy)
    assert below.score == 65 and not below.flagged
    # + off-hours = 75
    above = assess_risk(RiskContext(Decimal("50001"), "IN", 0, MIDNIGHT_IST), policy)
    assert above.score == 75 and above.flagged


def test_risk_is_deterministic_for_naive_timestamps():
    policy = RiskPolicy()
    ctx = RiskContext(Decimal("15000"), "RU", 1, datetime(2026, 1, 1, 2, 0))
    assert assess_risk(ctx, policy) == assess_risk(ctx, policy)


def test_resolve_purchase_packages_and_custom():
    packages = payment_settings.packages
    basic = resolve_purchase(package_type="basic", credits=None, packages=packages,
                             custom_price_minor=500, currency="INR")
    assert (basic.package_type, basic.credits, basic.amount_minor) == ("BASIC", 100, 49900)
    assert basic.amount == Decimal("499.00")

    custom = resolve_purchase(package_type=None, credits=7, packages=packages,
                              custom_price_minor=500, currency="INR")
    assert (custom.package_type, custom.credits, custom.amount_minor) == (None, 7, 3500)

    with pytest.raises(InvalidPackageException):
        resolve_purchase(package_type="GOLD", credits=None, packages=packages,
                         custom_price_minor=500, currency="INR")
    with pytest.raises(InvalidPackageException):
        resolve_purchase(package_type=None, credits=0, packages=packages,
                         custom_price_minor=500, currency="INR")


def test_partial_refunds_reverse_exactly_the_full_credits():
    amount = Decimal("499.00")
    steps = [Decimal("166.33"), Decimal("166.33"), Decimal("166.34")]
    refunded, total = Decimal("0"), 0
    for step in steps:
        total += credits_to_reverse(100, amount, refunded, refunded + step)
        refunded += step
    assert total == 100
    assert credits_to_reverse(100, amount, Decimal("0"), Decimal("249.50")) == 50


def test_status_machine_is_monotonic():
    assert TransactionStatus.COMPLETED not in allowed_predecessors(TransactionStatus.PROCESSING)
    assert TransactionStatus.COMPLETED not in allowed_predecessors(TransactionStatus.INITIATED)
    assert TransactionStatus.FAILED not in allowed_predecessors(TransactionStatus.COMPLETED)
    assert TransactionStatus.REFUNDED not in allowed_predecessors(TransactionStatus.PARTIALLY_REFUNDED)
    assert allowed_predecessors(TransactionStatus.UNDER_REVIEW) == {
        TransactionStatus.INITIATED,
        TransactionStatus.PROCESSING,
    }

    tx = Transaction(None, "t1", TransactionType.PURCHASE, TransactionStatus.COMPLETED, Decimal("10"), "INR")
    assert tx.can_transition_to(TransactionStatus.PARTIALLY_REFUNDED)
    assert not tx.can_transition_to(TransactionStatus.PROCESSING)


def test_entity_validation():
    with pytest.raises(DomainValidationException):
        Transaction(None, "t1", TransactionType.PURCHASE, TransactionStatus.INITIATED, Decimal("-1"), "INR")
    with pytest.raises(DomainValidationException):
        Transaction(None, "t1", TransactionType.PURCHASE, TransactionStatus.INITIATED, Decimal("1"), "RUPEE")


def test_metadata_round_trips_by_kind():
    entries = [
        OrderContext(receipt="order_1_1", package_type="BASIC", country="IN"),
        GatewayPayload(source="webhook", payload={"id": "pay_1"}),
        RefundNote(reason="duplicate charge", shortfall_credits=3),
    ]
    raw = dump_metadata(entries)
    assert [e["kind"] for e in raw] == ["order_context", "gateway_payload", "refund_note"]
    loaded = load_metadata(raw)
    assert isinstance(loaded[2], RefundNote) and loaded[2].shortfall_credits == 3
    assert load_metadata(None) == []
