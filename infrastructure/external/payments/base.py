"""
Base payment client implementing shared concerns: http, retry, logging, error mapping.

Concrete providers subclass and implement the provider-specific endpoints.
Every failure that says nothing about the payment itself (timeout, transport
error, 5xx) surfaces as GatewayUnavailableException; 4xx responses surface as
GatewayRejectedException.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from domain.payment.exceptions import GatewayRejectedException, GatewayUnavailableException


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        base_url: str,
        auth: Optional[httpx.Auth] = None,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._timeouts_cfg["total"],
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
        )

    def client(self) -> httpx.AsyncClient:
        # Kept open for reuse; aclose() releases it
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                auth=self._auth,
                timeout=self.timeouts,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await self.client().request(method, path, **kwargs)

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._send(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("gateway_timeout", provider=self.provider, operation=operation)
            raise GatewayUnavailableException(operation, "timeout") from exc
        except httpx.TransportError as exc:
            logger.warning("gateway_transport_error", provider=self.provider, operation=operation, error=str(exc))
            raise GatewayUnavailableException(operation, "transport error") from exc

        if resp.status_code >= 500:
            logger.warning(
                "gateway_server_error", provider=self.provider, operation=operation, status_code=resp.status_code
            )
            raise GatewayUnavailableException(operation, f"HTTP {resp.status_code}")
        if resp.status_code >= 400:
            reason = self._error_description(resp)
            logger.warning(
                "gateway_rejected",
                provider=self.provider,
                operation=operation,
                status_code=resp.status_code,
                reason=reason,
            )
            raise GatewayRejectedException(operation, resp.status_code, reason)

        try:
            body = resp.json()
        except ValueError as exc:
            raise GatewayUnavailableException(operation, "invalid JSON response") from exc
        self._log("gateway_call_ok", operation=operation, status_code=resp.status_code)
        return body

    def _error_description(self, resp: httpx.Response) -> Optional[str]:
        try:
            return (resp.json().get("error") or {}).get("description")
        except (ValueError, AttributeError):
            return resp.text[:200] or None

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
