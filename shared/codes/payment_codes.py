"""
Payment specific codes and gateway status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Gateway/Network errors (6xxxx)
    GATEWAY_ERROR = 60000
    GATEWAY_UNAVAILABLE = 60001
    INVALID_SIGNATURE = 60002

    # Order/settlement errors (61xxx)
    INVALID_PACKAGE = 61000
    PAYMENT_NOT_FOUND = 61001
    PAYMENT_ALREADY_PROCESSED = 61002
    PAYMENT_NOT_CAPTURED = 61003
    TRANSACTION_NOT_FOUND = 61004
    INVALID_STATUS_TRANSITION = 61005
    DUPLICATE_PAYMENT = 61006

    # Ledger errors (62xxx)
    INSUFFICIENT_CREDITS = 62000
    NOT_REFUNDABLE = 62001


# Gateway payment status -> internal verdict used by verification and webhooks
GATEWAY_STATUS_TO_INTERNAL = {
    "razorpay": {
        "created": "pending",
        "authorized": "processing",
        "captured": "completed",
        "refunded": "refunded",
        "failed": "failed",
    },
}
