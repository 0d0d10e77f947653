"""
Client-side payment confirmation.

The signature proves the client saw a real checkout, the gateway fetch proves
the money moved, and settlement decides (atomically) whether this request is
the one that awards the credits.
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.payments import GatewayPayment, VerifyPaymentRequest, VerifyPaymentResult
from application.ports.notifications import Alerter, Notifier
from application.ports.payment_gateway import PaymentGateway
from application.services.notify import safe_notify
from application.services.settlement import build_settlement
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment import signature
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.exceptions import (
    InvalidSignatureException,
    PaymentAlreadyProcessedException,
    PaymentNotCapturedException,
    PaymentNotFoundException,
)


logger = get_logger(__name__)

# gateway verdicts that mean the customer was charged
_SUCCESSFUL_STATES = frozenset({"completed", "processing"})


class VerificationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        *,
        settings: PaymentSettings = payment_settings,
        notifier: Optional[Notifier] = None,
        alerter: Optional[Alerter] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._settings = settings
        self._notifier = notifier
        self._alerter = alerter

    async def verify_payment(self, user_id: int, req: VerifyPaymentRequest) -> VerifyPaymentResult:
        order_id, payment_id = req.gateway_order_id, req.gateway_payment_id

        if not signature.verify(
            signature.order_payload(order_id, payment_id),
            req.signature,
            self._settings.razorpay.key_secret,
        ):
            logger.warning("payment_signature_invalid", user_id=user_id, gateway_order_id=order_id)
            raise InvalidSignatureException()

        gateway_payment = await self._gateway.fetch_payment(payment_id)
        self._check_gateway_payment(order_id, gateway_payment)

        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_order_id(order_id)
        self._check_ownership(user_id, order_id, payment)
        if payment.is_completed:
            return self._replayed(payment, order_id, payment_id)
        if payment.status == PaymentStatus.FAILED:
            raise PaymentNotCapturedException(payment_id, payment.status.value)
        if gateway_payment.amount_minor != int(payment.amount * 100):
            logger.error(
                "payment_amount_mismatch",
                gateway_order_id=order_id,
                expected_minor=int(payment.amount * 100),
                actual_minor=gateway_payment.amount_minor,
            )
            raise PaymentNotCapturedException(payment_id, "amount_mismatch")

        async with self._uow_factory() as uow:
            result = await build_settlement(uow, self._settings, self._alerter).complete(
                payment,
                gateway_payment,
                source="verify",
                actor=f"user:{user_id}",
            )

        if not result.completed:
            # a concurrent webhook or verify won the conditional update
            if result.payment.is_completed:
                return self._replayed(result.payment, order_id, payment_id)
            raise PaymentNotCapturedException(payment_id, result.payment.status.value)

        if self._notifier is not None and result.event is not None:
            await safe_notify(
                lambda: self._notifier.payment_completed(result.event),
                name="payment_completed",
                alerter=self._alerter,
                gateway_order_id=order_id,
            )

        return VerifyPaymentResult(
            success=True,
            credits_awarded=result.credits_awarded,
            already_processed=False,
            gateway_order_id=order_id,
            gateway_payment_id=payment_id,
        )

    def _check_gateway_payment(self, order_id: str, gateway_payment: GatewayPayment) -> None:
        if gateway_payment.order_id != order_id:
            logger.warning(
                "payment_order_mismatch",
                gateway_order_id=order_id,
                gateway_payment_id=gateway_payment.payment_id,
                actual_order_id=gateway_payment.order_id,
            )
            raise InvalidSignatureException("Payment does not belong to this order")
        if gateway_payment.status not in _SUCCESSFUL_STATES:
            raise PaymentNotCapturedException(gateway_payment.payment_id, gateway_payment.gateway_status)

    def _check_ownership(self, user_id: int, order_id: str, payment: Optional[Payment]) -> None:
        # another user's order is reported exactly like a missing one
        if payment is None or payment.user_id != user_id:
            raise PaymentNotFoundException(order_id)

    def _replayed(self, payment: Payment, order_id: str, payment_id: str) -> VerifyPaymentResult:
        if payment.gateway_payment_id != payment_id:
            logger.warning(
                "payment_completed_by_other",
                gateway_order_id=order_id,
                gateway_payment_id=payment_id,
                completed_by=payment.gateway_payment_id,
            )
            raise PaymentAlreadyProcessedException(order_id)
        logger.info("payment_verify_replayed", gateway_order_id=order_id, gateway_payment_id=payment_id)
        return VerifyPaymentResult(
            success=True,
            credits_awarded=payment.credits,
            already_processed=True,
            gateway_order_id=order_id,
            gateway_payment_id=payment_id,
        )
