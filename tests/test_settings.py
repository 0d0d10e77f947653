from decimal import Decimal

import pytest
from pydantic import ValidationError

from core.settings import PaymentSettings, RazorpaySettings, payment_settings


def _settings(**razorpay) -> PaymentSettings:
    values = {"key_id": "rzp_live_1", "key_secret": "s3cret", "webhook_secret": "whsec"}
    values.update(razorpay)
    return PaymentSettings(razorpay=RazorpaySettings(**values))


def test_real_credentials_pass():
    _settings().require_gateway_credentials()


@pytest.mark.parametrize("field,value", [
    ("key_id", None),
    ("key_secret", ""),
    ("webhook_secret", None),
    ("key_id", "rzp_test_placeholder"),
    ("key_secret", "your_key_secret"),
    ("webhook_secret", "CHANGEME"),
])
def test_missing_or_template_credentials_refuse_to_start(field, value):
    with pytest.raises(RuntimeError):
        _settings(**{field: value}).require_gateway_credentials()


def test_pricing_tables_are_immutable():
    with pytest.raises(ValidationError):
        payment_settings.fees.platform_rate = Decimal("0")
    with pytest.raises(ValidationError):
        payment_settings.risk.review_threshold = 0
    with pytest.raises(ValidationError):
        payment_settings.packages["BASIC"].credits = 1_000_000


def test_default_tables():
    assert {k: (p.credits, p.amount_minor) for k, p in payment_settings.packages.items()} == {
        "BASIC": (100, 49900),
        "PREMIUM": (500, 199900),
        "ENTERPRISE": (2000, 499900),
    }
    assert payment_settings.custom_credit_price_minor == 500
    assert payment_settings.risk.denied_countries == {"CN", "RU", "NG"}
    assert payment_settings.timeouts.total == 5.0
    assert payment_settings.retry.max == 2
