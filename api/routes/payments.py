"""
Payments API routes.

Thin layer over the application services: parse, authorize, delegate, wrap
in the response envelope. Bodies are camelCase on the wire.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Security

from api.dependencies import (
    get_current_superuser,
    get_current_user,
    get_order_service,
    get_query_service,
    get_refund_service,
    get_verification_service,
    get_webhook_service,
)
from application.dtos.payments import (
    CreateOrderRequest,
    RefundRequestDTO,
    ReviewRequestDTO,
    VerifyPaymentRequest,
)
from application.services.order_service import OrderService, to_transaction_dto
from application.services.payment_service import PaymentQueryService
from application.services.refund_service import RefundService
from application.services.token_service import Principal
from application.services.verification_service import VerificationService
from application.services.webhook_service import WebhookService
from core.config import settings
from core.response import paginated_response, success_response
from core.settings import payment_settings


router = APIRouter(prefix="/payments", tags=["Payments"])


def _camel(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


@router.post("/create-order", summary="Create a gateway order")
async def create_order(
    payload: CreateOrderRequest,
    current_user: Principal = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    result = await service.create_order(current_user.user_id, payload)
    return success_response(data=_camel(result), message="Order created")


@router.post("/verify", summary="Verify a client-side payment confirmation")
async def verify_payment(
    payload: VerifyPaymentRequest,
    current_user: Principal = Depends(get_current_user),
    service: VerificationService = Depends(get_verification_service),
):
    result = await service.verify_payment(current_user.user_id, payload)
    message = "Payment already processed" if result.already_processed else "Payment verified"
    return success_response(data=_camel(result), message=message)


@router.post("/webhook", summary="Gateway webhook receiver")
async def payments_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    # signature is computed over the exact bytes received
    raw_body = await request.body()
    result = await service.ingest(
        raw_body,
        request.headers.get(payment_settings.webhook.signature_header),
        request.headers.get(payment_settings.webhook.event_id_header),
    )
    return success_response(data=_camel(result), message="Webhook received")


@router.get("/history", summary="Caller's transaction history")
async def history(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: Principal = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    items, total = await service.history(current_user.user_id, page=page, limit=limit)
    return paginated_response(items=[_camel(i) for i in items], total=total, page=page, limit=limit)


@router.get("/credits", summary="Caller's credit balance and active subscription")
async def credits(
    current_user: Principal = Depends(get_current_user),
    service: PaymentQueryService = Depends(get_query_service),
):
    balance = await service.credits(current_user.user_id)
    return success_response(data=_camel(balance))


@router.get("/transactions/{transaction_id}/events", summary="Transaction audit trail")
async def transaction_events(
    transaction_id: str,
    current_user: Principal = Depends(get_current_user),
    service: PaymentQueryService = Depends(get_query_service),
):
    events = await service.events(
        transaction_id,
        user_id=current_user.user_id,
        is_admin=current_user.is_superuser,
    )
    return success_response(data=[_camel(e) for e in events])


@router.post("/refunds", summary="Refund a purchase (admin)")
async def create_refund(
    payload: RefundRequestDTO,
    admin: Principal = Security(get_current_superuser),
    service: RefundService = Depends(get_refund_service),
):
    outcome = await service.create_refund(
        payload.transaction_id,
        payload.amount,
        reason=payload.reason,
        actor=f"admin:{admin.user_id}",
        refund_transaction_id=payload.refund_id,
    )
    data = _camel(to_transaction_dto(outcome.refund))
    data.update(
        created=outcome.created,
        reversedCredits=outcome.reversed_credits,
        shortfallCredits=outcome.shortfall_credits,
    )
    return success_response(data=data, message="Refund created" if outcome.created else "Refund already exists")


@router.post("/transactions/{transaction_id}/review", summary="Put a transaction under review (admin)")
async def review_transaction(
    transaction_id: str,
    payload: ReviewRequestDTO,
    admin: Principal = Security(get_current_superuser),
    service: RefundService = Depends(get_refund_service),
):
    tx = await service.flag_for_review(transaction_id, payload.reason, actor=f"admin:{admin.user_id}")
    return success_response(data=_camel(to_transaction_dto(tx)), message="Transaction under review")
