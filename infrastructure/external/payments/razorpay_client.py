"""
Razorpay Orders/Payments adapter over the REST API.

Auth is HTTP Basic with the key id and key secret. Amounts travel in minor
units (paise). ``payment_capture=1`` asks Razorpay to auto-capture once the
payment is authorized.
"""
from __future__ import annotations

from typing import Optional

import httpx

from application.dtos.payments import GatewayOrder, GatewayOrderRequest, GatewayPayment
from core.settings import PaymentSettings, payment_settings
from infrastructure.external.payments.base import BasePaymentClient


class RazorpayClient(BasePaymentClient):
    provider = "razorpay"

    def __init__(
        self,
        settings: PaymentSettings = payment_settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        cfg = settings.razorpay
        super().__init__(
            base_url=cfg.base_url,
            auth=httpx.BasicAuth(cfg.key_id or "", cfg.key_secret or ""),
            timeouts=settings.timeouts.model_dump(),
            retry={"max": settings.retry.max, "base": settings.retry.base_backoff},
            transport=transport,
        )
        self.public_key = cfg.key_id

    async def create_order(self, req: GatewayOrderRequest) -> GatewayOrder:
        body = await self._request(
            "create_order",
            "POST",
            "/orders",
            json={
                "amount": req.amount_minor,
                "currency": req.currency,
                "receipt": req.receipt,
                "payment_capture": 1 if req.payment_capture else 0,
                "notes": req.notes,
            },
        )
        self._log("gateway_order_created", order_id=body.get("id"), amount_minor=body.get("amount"))
        return GatewayOrder(
            order_id=body["id"],
            amount_minor=int(body.get("amount") or req.amount_minor),
            currency=str(body.get("currency") or req.currency),
            status=str(body.get("status") or "created"),
            raw=body,
        )

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        body = await self._request("fetch_payment", "GET", f"/payments/{payment_id}")
        return GatewayPayment.from_entity(body, self.provider)
