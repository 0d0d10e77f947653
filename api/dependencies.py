"""
API依赖项 - 认证、授权与服务装配
"""
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from application.ports.payment_gateway import PaymentGateway
from application.services.order_service import OrderService
from application.services.payment_service import PaymentQueryService
from application.services.refund_service import RefundService
from application.services.token_service import Principal, TokenService
from application.services.verification_service import VerificationService
from application.services.webhook_service import WebhookService
from core.exceptions import ForbiddenException, UnauthorizedException
from core.settings import payment_settings
from infrastructure.external.notifications import LoggingAlerter, LoggingNotifier
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)

_notifier = LoggingNotifier()
_alerter = LoggingAlerter()


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    """从Bearer token中提取token"""
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials
    raise UnauthorizedException("Missing credentials")


def get_token_service() -> TokenService:
    return TokenService()


async def get_current_user(
    token: str = Depends(get_token),
    tokens: TokenService = Depends(get_token_service),
) -> Principal:
    """获取当前调用者"""
    return tokens.decode(token)


async def get_current_superuser(current_user: Principal = Depends(get_current_user)) -> Principal:
    """获取当前超级管理员用户"""
    if not current_user.is_superuser:
        raise ForbiddenException("Administrator privileges required")
    return current_user


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_order_service(gateway: PaymentGateway = Depends(get_gateway)) -> OrderService:
    return OrderService(SQLAlchemyUnitOfWork, gateway, settings=payment_settings, alerter=_alerter)


def get_verification_service(gateway: PaymentGateway = Depends(get_gateway)) -> VerificationService:
    return VerificationService(
        SQLAlchemyUnitOfWork,
        gateway,
        settings=payment_settings,
        notifier=_notifier,
        alerter=_alerter,
    )


def get_webhook_service() -> WebhookService:
    return WebhookService(SQLAlchemyUnitOfWork, settings=payment_settings, notifier=_notifier, alerter=_alerter)


def get_refund_service() -> RefundService:
    return RefundService(SQLAlchemyUnitOfWork, settings=payment_settings, notifier=_notifier, alerter=_alerter)


def get_query_service() -> PaymentQueryService:
    return PaymentQueryService(SQLAlchemyUnitOfWork)
