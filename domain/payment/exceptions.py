"""
支付领域异常

这些异常由全局异常处理器映射为 HTTP 状态码（见 core.exceptions）。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class InvalidPackageException(BusinessException):
    """套餐不存在或自定义积分数量非法"""
    def __init__(self, package_type: Optional[str] = None, credits: Optional[int] = None):
        details = {}
        if package_type is not None:
            details["package_type"] = package_type
        if credits is not None:
            details["credits"] = credits
        super().__init__(
            code=PaymentCode.INVALID_PACKAGE,
            message="Unknown package or invalid credit amount",
            error_type="InvalidPackage",
            details=details or None,
        )


class InvalidSignatureException(BusinessException):
    """签名校验失败"""
    def __init__(self, message: str = "Payment signature verification failed"):
        super().__init__(
            code=PaymentCode.INVALID_SIGNATURE,
            message=message,
            error_type="InvalidSignature",
        )


class GatewayUnavailableException(BusinessException):
    """支付网关超时或不可用，可重试"""

    retryable = True

    def __init__(self, operation: str, reason: Optional[str] = None):
        details = {"operation": operation}
        if reason:
            details["reason"] = reason
        super().__init__(
            code=PaymentCode.GATEWAY_UNAVAILABLE,
            message="Payment gateway is temporarily unavailable",
            error_type="GatewayUnavailable",
            details=details,
        )


class GatewayRejectedException(BusinessException):
    """网关返回 4xx，请求本身有问题，重试无意义"""
    def __init__(self, operation: str, status_code: int, reason: Optional[str] = None):
        super().__init__(
            code=PaymentCode.GATEWAY_ERROR,
            message="Payment gateway rejected the request",
            error_type="GatewayRejected",
            details={"operation": operation, "status_code": status_code, "reason": reason},
        )


class PaymentNotFoundException(BusinessException):
    """支付记录不存在"""
    def __init__(self, identifier: str):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_FOUND,
            message=f"Payment not found: {identifier}",
            error_type="PaymentNotFound",
            details={"identifier": identifier},
        )


class PaymentAlreadyExistsException(BusinessException):
    """订单已存在支付记录"""
    def __init__(self, gateway_order_id: Optional[str]):
        super().__init__(
            code=PaymentCode.DUPLICATE_PAYMENT,
            message=f"Payment for order {gateway_order_id} already exists",
            error_type="PaymentAlreadyExists",
            details={"gateway_order_id": gateway_order_id},
        )


class PaymentAlreadyProcessedException(BusinessException):
    """订单已被另一笔支付完成"""
    def __init__(self, order_id: str):
        super().__init__(
            code=PaymentCode.PAYMENT_ALREADY_PROCESSED,
            message=f"Order {order_id} was already completed by a different payment",
            error_type="PaymentAlreadyProcessed",
            details={"order_id": order_id},
        )


class PaymentNotCapturedException(BusinessException):
    """网关侧支付未成功"""
    def __init__(self, payment_id: str, gateway_status: str):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_CAPTURED,
            message=f"Payment {payment_id} is not captured (status: {gateway_status})",
            error_type="PaymentNotCaptured",
            details={"payment_id": payment_id, "gateway_status": gateway_status},
        )


class TransactionNotFoundException(BusinessException):
    def __init__(self, transaction_id: str):
        super().__init__(
            code=PaymentCode.TRANSACTION_NOT_FOUND,
            message=f"Transaction not found: {transaction_id}",
            error_type="TransactionNotFound",
            details={"transaction_id": transaction_id},
        )


class InvalidStatusTransitionException(BusinessException):
    """状态机不允许的转换（例如已完成的交易回退）"""
    def __init__(self, transaction_id: str, current: str, target: str):
        super().__init__(
            code=PaymentCode.INVALID_STATUS_TRANSITION,
            message=f"Transaction {transaction_id} cannot move from {current} to {target}",
            error_type="InvalidStatusTransition",
            details={"transaction_id": transaction_id, "current": current, "target": target},
        )


class InsufficientCreditsException(BusinessException):
    def __init__(self, user_id: int, requested: int):
        super().__init__(
            code=PaymentCode.INSUFFICIENT_CREDITS,
            message="Insufficient credits",
            error_type="InsufficientCredits",
            details={"user_id": user_id, "requested": requested},
        )


class NotRefundableException(BusinessException):
    """交易状态不可退款，或退款累计金额超过原始金额"""
    def __init__(self, transaction_id: str, reason: str, refundable: Optional[Decimal] = None):
        details = {"transaction_id": transaction_id, "reason": reason}
        if refundable is not None:
            details["refundable"] = str(refundable)
        super().__init__(
            code=PaymentCode.NOT_REFUNDABLE,
            message=f"Transaction {transaction_id} is not refundable: {reason}",
            error_type="NotRefundable",
            details=details,
        )


class InvalidWebhookPayloadException(BusinessException):
    """Webhook 请求体不是 JSON 对象"""
    def __init__(self, reason: str):
        super().__init__(
            code=BusinessCode.PARAM_ERROR,
            message="Malformed webhook payload",
            error_type="InvalidWebhookPayload",
            details={"reason": reason},
        )
