"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

from core.settings import payment_settings
from application.ports.payment_gateway import PaymentGateway


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Process-wide Razorpay client; refuses to start without real credentials."""
    global _gateway
    if _gateway is None:
        payment_settings.require_gateway_credentials()
        from .razorpay_client import RazorpayClient
        _gateway = RazorpayClient(payment_settings)
    return _gateway


async def close_payment_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
        _gateway = None
