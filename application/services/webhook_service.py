"""
Gateway webhook ingestion.

The gateway retries anything that is not a 2xx, so only requests that can
never succeed (no signature header, body that is not a JSON object) are
refused. Bad signatures, duplicates, unknown events and business failures
are answered with 200 and recorded in the delivery log, which is written in
its own unit of work so it survives a rolled-back business transaction.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from application.dtos.payments import GatewayPayment, WebhookResult
from application.ports.notifications import Alerter, Notifier
from application.services.notify import safe_alert, safe_notify
from application.services.refund_service import RefundEngine
from application.services.settlement import build_settlement
from application.services.transaction_log import TransactionLog
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment import signature
from domain.payment.entity import (
    Payment,
    PaymentStatus,
    Transaction,
    TransactionEventType,
    TransactionStatus,
    TransactionType,
    WebhookDelivery,
    WebhookOutcome,
)
from domain.payment.exceptions import (
    InvalidSignatureException,
    InvalidWebhookPayloadException,
    PaymentNotCapturedException,
)
from domain.payment.fees import calculate_fees
from domain.payment.metadata import GatewayPayload


logger = get_logger(__name__)

ACTOR = "webhook"


@dataclass
class _Handled:
    outcome: WebhookOutcome
    detail: Optional[str] = None
    notify: Optional[Callable[[], Awaitable[None]]] = None


def _entities(payload: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """``{"payload": {"payment": {"entity": {...}}}}`` -> ``{"payment": {...}}``"""
    body = payload.get("payload")
    if not isinstance(body, dict):
        return {}
    entities = {}
    for name, wrapper in body.items():
        if isinstance(wrapper, dict) and isinstance(wrapper.get("entity"), dict):
            entities[name] = wrapper["entity"]
    return entities


def _major(amount_minor: int) -> Decimal:
    return (Decimal(amount_minor) / 100).quantize(Decimal("0.01"))


class WebhookService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        settings: PaymentSettings = payment_settings,
        provider: str = "razorpay",
        notifier: Optional[Notifier] = None,
        alerter: Optional[Alerter] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._settings = settings
        self._provider = provider
        self._notifier = notifier
        self._alerter = alerter
        self._handlers = {
            "payment.authorized": self._on_authorized,
            "payment.captured": self._on_captured,
            "payment.failed": self._on_failed,
            "refund.created": self._on_refund,
            "refund.processed": self._on_refund,
        }

    async def ingest(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        event_id: Optional[str] = None,
    ) -> WebhookResult:
        if not signature_header:
            await self._record_delivery(
                WebhookDelivery(
                    id=None,
                    event_type="unknown",
                    signature_valid=False,
                    outcome=WebhookOutcome.REJECTED,
                    event_id=event_id,
                    error="missing signature header",
                )
            )
            raise InvalidSignatureException("Missing webhook signature")

        secret = self._settings.razorpay.webhook_secret
        valid = signature.verify(raw_body, signature_header, secret)

        try:
            payload = json.loads(raw_body)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            await self._record_delivery(
                WebhookDelivery(
                    id=None,
                    event_type="unknown",
                    signature_valid=valid,
                    outcome=WebhookOutcome.REJECTED,
                    event_id=event_id,
                    error="body is not a JSON object",
                )
            )
            raise InvalidWebhookPayloadException("body is not a JSON object")

        event_type = str(payload.get("event") or "unknown")
        entities = _entities(payload)
        payment_id = (entities.get("payment") or {}).get("id")

        def delivery(outcome: WebhookOutcome, error: Optional[str] = None) -> WebhookDelivery:
            return WebhookDelivery(
                id=None,
                event_type=event_type,
                signature_valid=valid,
                outcome=outcome,
                event_id=event_id,
                gateway_payment_id=payment_id,
                error=error,
                payload=payload,
            )

        log = logger.bind(event_type=event_type, event_id=event_id, gateway_payment_id=payment_id)

        if not valid:
            reason = "webhook secret not configured" if not secret else "signature mismatch"
            log.warning("webhook_signature_rejected", reason=reason)
            await self._record_delivery(delivery(WebhookOutcome.REJECTED, reason))
            return WebhookResult(outcome=WebhookOutcome.REJECTED.value, event_type=event_type, detail=reason)

        if event_id:
            async with self._uow_factory(readonly=True) as uow:
                seen = await uow.webhook_delivery_repository.was_processed(event_id)
            if seen:
                log.info("webhook_duplicate_event")
                await self._record_delivery(delivery(WebhookOutcome.DUPLICATE))
                return WebhookResult(outcome=WebhookOutcome.DUPLICATE.value, event_type=event_type)

        handler = self._handlers.get(event_type)
        if handler is None:
            log.info("webhook_event_ignored")
            await self._record_delivery(delivery(WebhookOutcome.IGNORED, "unhandled event type"))
            return WebhookResult(
                outcome=WebhookOutcome.IGNORED.value, event_type=event_type, detail="unhandled event type"
            )

        try:
            async with self._uow_factory() as uow:
                handled = await handler(uow, entities)
        except BusinessException as exc:
            log.warning("webhook_processing_failed", error_type=exc.error_type, error=exc.message)
            await self._record_delivery(delivery(WebhookOutcome.FAILED, exc.message))
            return WebhookResult(outcome=WebhookOutcome.FAILED.value, event_type=event_type, detail=exc.message)
        except Exception as exc:
            # infrastructure failure: let the gateway retry
            log.exception("webhook_processing_error")
            await self._record_delivery(delivery(WebhookOutcome.FAILED, str(exc)))
            raise

        log.info("webhook_processed", outcome=handled.outcome.value, detail=handled.detail)
        await self._record_delivery(delivery(handled.outcome, handled.detail))
        if handled.notify is not None:
            await safe_notify(handled.notify, name=event_type, alerter=self._alerter, event_id=event_id)
        return WebhookResult(outcome=handled.outcome.value, event_type=event_type, detail=handled.detail)

    # ---- handlers (run inside one unit of work) ----

    async def _on_authorized(self, uow: AbstractUnitOfWork, entities: dict[str, dict[str, Any]]) -> _Handled:
        entity = entities.get("payment")
        if not entity or not entity.get("id"):
            return _Handled(WebhookOutcome.IGNORED, "no payment entity")
        gateway_payment = GatewayPayment.from_entity(entity, self._provider)

        tx = await uow.transaction_repository.get_by_gateway_payment_id(gateway_payment.payment_id)
        if tx is None and gateway_payment.order_id:
            tx = await uow.transaction_repository.get(gateway_payment.order_id)
        if tx is None:
            return _Handled(WebhookOutcome.IGNORED, "unknown payment")

        if not await uow.transaction_repository.transition_status(
            tx.transaction_id,
            TransactionStatus.PROCESSING,
            gateway_payment_id=gateway_payment.payment_id,
        ):
            return _Handled(WebhookOutcome.DUPLICATE, f"transaction is {tx.status.value}")
        await TransactionLog(uow, self._alerter).record(
            tx.transaction_id,
            TransactionEventType.PROCESSING,
            status=TransactionStatus.PROCESSING,
            data={"gateway_payment_id": gateway_payment.payment_id, "method": gateway_payment.method},
            actor=ACTOR,
        )
        return _Handled(WebhookOutcome.PROCESSED)

    async def _on_captured(self, uow: AbstractUnitOfWork, entities: dict[str, dict[str, Any]]) -> _Handled:
        entity = entities.get("payment")
        if not entity or not entity.get("id"):
            return _Handled(WebhookOutcome.IGNORED, "no payment entity")
        gateway_payment = GatewayPayment.from_entity(entity, self._provider)

        payment = await self._find_payment(uow, gateway_payment)
        if payment is None:
            payment = await self._upsert_from_notes(uow, gateway_payment)
            if payment is None:
                return _Handled(WebhookOutcome.IGNORED, "unknown payment without user notes")

        if payment.is_completed:
            if payment.gateway_payment_id == gateway_payment.payment_id:
                return _Handled(WebhookOutcome.DUPLICATE, "already completed")
            await safe_alert(
                self._alerter,
                "capture_on_completed_order",
                gateway_order_id=payment.gateway_order_id,
                completed_by=payment.gateway_payment_id,
                gateway_payment_id=gateway_payment.payment_id,
            )
            return _Handled(WebhookOutcome.IGNORED, "order completed by a different payment")
        if payment.status == PaymentStatus.FAILED:
            await safe_alert(
                self._alerter,
                "capture_after_failure",
                gateway_order_id=payment.gateway_order_id,
                gateway_payment_id=gateway_payment.payment_id,
            )
            return _Handled(WebhookOutcome.IGNORED, "payment already marked failed")
        if gateway_payment.amount_minor != int(payment.amount * 100):
            await safe_alert(
                self._alerter,
                "capture_amount_mismatch",
                gateway_order_id=payment.gateway_order_id,
                expected_minor=int(payment.amount * 100),
                actual_minor=gateway_payment.amount_minor,
            )
            raise PaymentNotCapturedException(gateway_payment.payment_id, "amount_mismatch")

        result = await build_settlement(uow, self._settings, self._alerter).complete(
            payment, gateway_payment, source="webhook", actor=ACTOR
        )
        if not result.completed:
            return _Handled(WebhookOutcome.DUPLICATE, "settled concurrently")
        notify = None
        if self._notifier is not None and result.event is not None:
            event = result.event
            notify = lambda: self._notifier.payment_completed(event)  # noqa: E731
        return _Handled(WebhookOutcome.PROCESSED, notify=notify)

    async def _on_failed(self, uow: AbstractUnitOfWork, entities: dict[str, dict[str, Any]]) -> _Handled:
        entity = entities.get("payment")
        if not entity or not entity.get("id"):
            return _Handled(WebhookOutcome.IGNORED, "no payment entity")
        gateway_payment = GatewayPayment.from_entity(entity, self._provider)
        reason = gateway_payment.error_description or "payment_failed"

        payment = await self._find_payment(uow, gateway_payment)
        if payment is None:
            await self._record_orphan_failure(uow, gateway_payment, reason)
            return _Handled(WebhookOutcome.PROCESSED, "unknown payment recorded as failed")

        failed = await build_settlement(uow, self._settings, self._alerter).fail(
            payment,
            reason=reason,
            gateway_payment_id=gateway_payment.payment_id,
            source="webhook",
            actor=ACTOR,
        )
        if failed is None:
            return _Handled(WebhookOutcome.DUPLICATE, f"payment is {payment.status.value}")
        return _Handled(WebhookOutcome.PROCESSED)

    async def _on_refund(self, uow: AbstractUnitOfWork, entities: dict[str, dict[str, Any]]) -> _Handled:
        entity = entities.get("refund")
        if not entity or not entity.get("id"):
            return _Handled(WebhookOutcome.IGNORED, "no refund entity")
        payment_id = entity.get("payment_id")
        parent = await uow.transaction_repository.get_by_gateway_payment_id(payment_id) if payment_id else None
        if parent is None:
            return _Handled(WebhookOutcome.IGNORED, "unknown payment")

        notes = entity.get("notes") if isinstance(entity.get("notes"), dict) else {}
        outcome = await RefundEngine(uow, settings=self._settings, alerter=self._alerter).refund(
            parent.transaction_id,
            _major(int(entity.get("amount") or 0)),
            reason=notes.get("reason") or "gateway_refund",
            actor=ACTOR,
            refund_transaction_id=entity["id"],
            gateway_refund_id=entity["id"],
        )
        if not outcome.created:
            return _Handled(WebhookOutcome.DUPLICATE, "refund already recorded")
        notify = None
        if self._notifier is not None and outcome.event is not None:
            event = outcome.event
            notify = lambda: self._notifier.refund_created(event)  # noqa: E731
        return _Handled(WebhookOutcome.PROCESSED, notify=notify)

    # ---- helpers ----

    async def _find_payment(self, uow: AbstractUnitOfWork, gateway_payment: GatewayPayment) -> Optional[Payment]:
        payment = await uow.payment_repository.get_by_gateway_payment_id(gateway_payment.payment_id)
        if payment is None and gateway_payment.order_id:
            payment = await uow.payment_repository.get_by_order_id(gateway_payment.order_id)
        return payment

    async def _known_user(self, uow: AbstractUnitOfWork, raw: Any) -> Optional[int]:
        try:
            user_id = int(raw)
        except (TypeError, ValueError):
            return None
        if await uow.credit_repository.get_balance(user_id) is None:
            return None
        return user_id

    def _purchase(self, gateway_payment: GatewayPayment, **fields) -> Transaction:
        amount = _major(gateway_payment.amount_minor)
        fees = calculate_fees(amount, TransactionType.PURCHASE, self._provider, self._settings.fees)
        return Transaction(
            id=None,
            type=TransactionType.PURCHASE,
            amount=fees.amount,
            currency=gateway_payment.currency,
            platform_fee=fees.platform_fee,
            gateway_fee=fees.gateway_fee,
            tax=fees.tax,
            net_amount=fees.net_amount,
            gateway=self._provider,
            gateway_order_id=gateway_payment.order_id,
            **fields,
        )

    def _entitled_credits(self, amount_minor: int, package_type: Optional[str]) -> int:
        if package_type:
            return self._settings.packages[package_type].credits
        return amount_minor // self._settings.custom_credit_price_minor

    async def _upsert_from_notes(self, uow: AbstractUnitOfWork, gateway_payment: GatewayPayment) -> Optional[Payment]:
        """Recreate a purchase the gateway knows about but we never stored (order write lost)."""
        notes = gateway_payment.notes
        if not gateway_payment.order_id:
            return None
        user_id = await self._known_user(uow, notes.get("user_id"))
        try:
            credits = int(notes.get("credits"))
        except (TypeError, ValueError):
            return None
        if user_id is None or credits <= 0:
            return None
        package = str(notes.get("package_type") or "").upper()
        package_type = package if package in self._settings.packages else None
        if package_type and self._settings.packages[package_type].amount_minor != gateway_payment.amount_minor:
            package_type = None

        # notes come from checkout, so the amount actually paid bounds the award
        entitled = self._entitled_credits(gateway_payment.amount_minor, package_type)
        if credits > entitled:
            await safe_alert(
                self._alerter,
                "upsert_credits_capped",
                gateway_order_id=gateway_payment.order_id,
                gateway_payment_id=gateway_payment.payment_id,
                claimed=credits,
                entitled=entitled,
            )
            credits = entitled
        if credits <= 0:
            return None

        payment = await uow.payment_repository.create(
            Payment(
                id=None,
                gateway_order_id=gateway_payment.order_id,
                amount=_major(gateway_payment.amount_minor),
                currency=gateway_payment.currency,
                status=PaymentStatus.PENDING,
                credits=credits,
                user_id=user_id,
                package_type=package_type,
                metadata=[GatewayPayload(source="webhook", payload=gateway_payment.raw)],
            )
        )
        created = await uow.transaction_repository.create_if_absent(
            self._purchase(
                gateway_payment,
                transaction_id=gateway_payment.order_id,
                status=TransactionStatus.INITIATED,
                credits=credits,
                user_id=user_id,
            )
        )
        if created is not None:
            await TransactionLog(uow, self._alerter).record(
                gateway_payment.order_id,
                TransactionEventType.INITIATED,
                status=TransactionStatus.INITIATED,
                data={"source": "webhook_upsert", "credits": credits},
                actor=ACTOR,
            )
        logger.warning(
            "payment_upserted_from_webhook",
            gateway_order_id=gateway_payment.order_id,
            gateway_payment_id=gateway_payment.payment_id,
            user_id=user_id,
        )
        return payment

    async def _record_orphan_failure(
        self,
        uow: AbstractUnitOfWork,
        gateway_payment: GatewayPayment,
        reason: str,
    ) -> None:
        user_id = await self._known_user(uow, gateway_payment.notes.get("user_id"))
        await uow.payment_repository.create(
            Payment(
                id=None,
                gateway_order_id=gateway_payment.order_id,
                amount=_major(gateway_payment.amount_minor),
                currency=gateway_payment.currency,
                status=PaymentStatus.FAILED,
                credits=0,
                user_id=user_id,
                gateway_payment_id=gateway_payment.payment_id,
                method=gateway_payment.method,
                failure_reason=reason,
                metadata=[GatewayPayload(source="webhook", payload=gateway_payment.raw)],
            )
        )
        tx_id = gateway_payment.order_id or gateway_payment.payment_id
        created = await uow.transaction_repository.create_if_absent(
            self._purchase(
                gateway_payment,
                transaction_id=tx_id,
                status=TransactionStatus.FAILED,
                credits=0,
                user_id=user_id,
                gateway_payment_id=gateway_payment.payment_id,
                failure_reason=reason,
            )
        )
        if created is not None:
            await TransactionLog(uow, self._alerter).record(
                tx_id,
                TransactionEventType.FAILED,
                status=TransactionStatus.FAILED,
                data={"reason": reason, "gateway_payment_id": gateway_payment.payment_id, "orphan": True},
                actor=ACTOR,
            )
        logger.info("orphan_payment_failure_recorded", gateway_payment_id=gateway_payment.payment_id, reason=reason)

    async def _record_delivery(self, delivery: WebhookDelivery) -> None:
        try:
            async with self._uow_factory() as uow:
                await uow.webhook_delivery_repository.add(delivery)
        except Exception as exc:
            logger.error("webhook_delivery_log_failed", event_type=delivery.event_type, error=str(exc))
            await safe_alert(
                self._alerter,
                "webhook_delivery_log_failed",
                event_type=delivery.event_type,
                event_id=delivery.event_id,
            )
