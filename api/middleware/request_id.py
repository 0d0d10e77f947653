"""
Request ID 中间件
生成或透传追踪ID，并绑定到 structlog 上下文；webhook 额外绑定网关事件ID
"""
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.settings import payment_settings


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    1. 从请求头获取或生成 request_id
    2. 存入 contextvars 与 request.state，供日志与异常处理器使用
    3. 在响应头中返回 request_id
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = self._get_client_ip(request)

        request.state.request_id = request_id
        request_id_var.set(request_id)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )
        # 网关事件ID便于把投递日志与请求日志对上
        gateway_event_id = request.headers.get(payment_settings.webhook.event_id_header)
        if gateway_event_id:
            structlog.contextvars.bind_contextvars(gateway_event_id=gateway_event_id)

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response

    def _get_client_ip(self, request: Request) -> str:
        # 代理场景下取 X-Forwarded-For 的第一个地址
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")


def get_request_id() -> Optional[str]:
    """当前请求的 request_id；不在请求上下文中时为 None"""
    return request_id_var.get()
