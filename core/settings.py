"""
Payment-related settings using pydantic-settings v2 with nested env keys.

This module is isolated so core.config.Settings stays focused on app-wide
concerns. Pricing, fee and risk tables are frozen models: they are read on
every order and must not be mutated at runtime.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, ConfigDict, Field


# Substrings that mark a credential copied from a sample .env
PLACEHOLDER_MARKERS = ("placeholder", "your_", "changeme")


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    signature_header: str = "X-Razorpay-Signature"
    event_id_header: str = "X-Razorpay-Event-Id"


class RazorpaySettings(BaseModel):
    key_id: Optional[str] = None
    key_secret: Optional[str] = None
    webhook_secret: Optional[str] = None
    base_url: str = "https://api.razorpay.com/v1"


class CreditPackage(BaseModel):
    model_config = ConfigDict(frozen=True)

    credits: int
    amount_minor: int  # price in minor units (paise)


class FeeSchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    platform_rate: Decimal = Decimal("0.02")
    gateway_rates: dict[str, Decimal] = Field(
        default_factory=lambda: {"razorpay": Decimal("0.023"), "stripe": Decimal("0.029")}
    )
    tax_rate: Decimal = Decimal("0.18")  # GST
    exempt_types: frozenset[str] = frozenset({"credit_usage", "credit_adjustment"})


class RiskPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    high_amount: Decimal = Decimal("10000")
    very_high_amount: Decimal = Decimal("50000")
    high_amount_weight: int = 20
    very_high_amount_weight: int = 30
    denied_countries: frozenset[str] = frozenset({"CN", "RU", "NG"})
    denied_country_weight: int = 25
    new_user_weight: int = 15
    off_hours_weight: int = 10
    off_hours_start: int = 6  # hour < start is off-hours
    off_hours_end: int = 22  # hour > end is off-hours
    timezone: str = "Asia/Kolkata"
    review_threshold: int = 70
    max_score: int = 100


def _default_packages() -> dict[str, CreditPackage]:
    return {
        "BASIC": CreditPackage(credits=100, amount_minor=49900),
        "PREMIUM": CreditPackage(credits=500, amount_minor=199900),
        "ENTERPRISE": CreditPackage(credits=2000, amount_minor=499900),
    }


class PaymentSettings(BaseSettings):
    currency: str = "INR"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    razorpay: RazorpaySettings = Field(default_factory=RazorpaySettings)

    packages: dict[str, CreditPackage] = Field(default_factory=_default_packages)
    custom_credit_price_minor: int = 500
    fees: FeeSchedule = Field(default_factory=FeeSchedule)
    risk: RiskPolicy = Field(default_factory=RiskPolicy)
    subscription_period_days: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    def require_gateway_credentials(self) -> None:
        """Fail fast when gateway credentials are missing or copied from a template."""
        required = {
            "RAZORPAY__KEY_ID": self.razorpay.key_id,
            "RAZORPAY__KEY_SECRET": self.razorpay.key_secret,
            "RAZORPAY__WEBHOOK_SECRET": self.razorpay.webhook_secret,
        }
        for name, value in required.items():
            if not value:
                raise RuntimeError(f"{name} is not configured")
            lowered = value.lower()
            if any(marker in lowered for marker in PLACEHOLDER_MARKERS):
                raise RuntimeError(f"{name} still holds a placeholder value")


payment_settings = PaymentSettings()
