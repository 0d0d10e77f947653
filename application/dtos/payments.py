"""
Payment DTOs (Pydantic v2) used at application boundaries.

Wire format is camelCase; requests also accept snake_case field names.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from shared.codes.payment_codes import GATEWAY_STATUS_TO_INTERNAL


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _normalize_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    return u


# ---- Gateway-facing DTOs (port payloads) ----

class GatewayOrderRequest(BaseModel):
    amount_minor: int = Field(gt=0)
    currency: str
    receipt: str
    notes: dict[str, str] = Field(default_factory=dict)
    payment_capture: bool = True


class GatewayOrder(BaseModel):
    order_id: str
    amount_minor: int
    currency: str
    status: str
    raw: dict[str, Any] = Field(default_factory=dict)


class GatewayPayment(BaseModel):
    payment_id: str
    order_id: Optional[str] = None
    amount_minor: int
    currency: str
    status: str  # internal verdict: pending/processing/completed/failed/refunded
    gateway_status: str
    method: Optional[str] = None
    error_description: Optional[str] = None
    notes: dict[str, Any] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_entity(cls, entity: dict[str, Any], provider: str = "razorpay") -> "GatewayPayment":
        """Build from a gateway payment object (REST response or webhook entity)."""
        gateway_status = str(entity.get("status") or "")
        mapping = GATEWAY_STATUS_TO_INTERNAL.get(provider, {})
        notes = entity.get("notes")
        return cls(
            payment_id=entity["id"],
            order_id=entity.get("order_id"),
            amount_minor=int(entity.get("amount") or 0),
            currency=str(entity.get("currency") or "INR").upper(),
            status=mapping.get(gateway_status, "pending"),
            gateway_status=gateway_status,
            method=entity.get("method"),
            error_description=entity.get("error_description"),
            notes=notes if isinstance(notes, dict) else {},
            raw=entity,
        )


# ---- Client-facing DTOs ----

class CreateOrderRequest(_CamelModel):
    package_type: Optional[str] = None
    credits: Optional[int] = Field(default=None, gt=0)
    currency: str = "INR"
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: str) -> str:
        return _normalize_currency(v)

    @model_validator(mode="after")
    def _require_selection(self):
        if not self.package_type and self.credits is None:
            raise ValueError("either packageType or credits is required")
        return self


class CreateOrderResult(_CamelModel):
    gateway_order_id: str
    amount: int  # minor units
    currency: str
    credits_awarded: int
    package_type: Optional[str] = None
    gateway_public_key: Optional[str] = None


class VerifyPaymentRequest(_CamelModel):
    gateway_payment_id: str = Field(min_length=1)
    gateway_order_id: str = Field(min_length=1)
    signature: str = Field(min_length=1)


class VerifyPaymentResult(_CamelModel):
    success: bool
    credits_awarded: int
    already_processed: bool = False
    gateway_order_id: str
    gateway_payment_id: str


class TransactionDTO(_CamelModel):
    transaction_id: str
    type: str
    status: str
    amount: Decimal
    currency: str
    platform_fee: Decimal
    gateway_fee: Decimal
    tax: Decimal
    net_amount: Decimal
    credits: int
    refunded_amount: Decimal
    risk_score: int
    parent_transaction_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class TransactionEventDTO(_CamelModel):
    event_type: str
    status: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    actor: Optional[str] = None
    created_at: Optional[datetime] = None


class SubscriptionDTO(_CamelModel):
    package_type: str
    status: str
    credits_included: int
    credits_used: int
    starts_at: datetime
    ends_at: datetime


class CreditBalanceDTO(_CamelModel):
    user_id: int
    credits: int
    subscription: Optional[SubscriptionDTO] = None


class RefundRequestDTO(_CamelModel):
    transaction_id: str
    amount: Decimal = Field(gt=0, decimal_places=2)
    reason: Optional[str] = Field(default=None, max_length=500)
    refund_id: Optional[str] = None


class ReviewRequestDTO(_CamelModel):
    reason: str = Field(min_length=1, max_length=500)


class WebhookResult(_CamelModel):
    outcome: str
    event_type: Optional[str] = None
    detail: Optional[str] = None
