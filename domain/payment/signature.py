"""
HMAC-SHA256 signature verification for gateway payloads.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Optional, Union


def compute_signature(payload: Union[str, bytes], secret: str) -> str:
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify(payload: Union[str, bytes], signature: Optional[str], secret: Optional[str]) -> bool:
    """Constant-time check of a hex HMAC-SHA256 signature.

    Never raises: a missing secret or signature is treated as a mismatch.
    """
    if not secret or not signature:
        return False
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def order_payload(order_id: str, payment_id: str) -> str:
    """Canonical string signed by the gateway for client-side confirmations."""
    return f"{order_id}|{payment_id}"
