"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
Implementations raise GatewayUnavailableException on timeouts, transport
errors and 5xx responses so callers never mistake an outage for a verdict.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from application.dtos.payments import GatewayOrder, GatewayOrderRequest, GatewayPayment


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the third-party payment provider."""

    provider: str
    public_key: Optional[str]

    async def create_order(self, req: GatewayOrderRequest) -> GatewayOrder: ...

    async def fetch_payment(self, payment_id: str) -> GatewayPayment: ...
