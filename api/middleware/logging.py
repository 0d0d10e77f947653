"""
请求/响应日志中间件
记录 HTTP 请求与响应耗时；支付相关字段在写入日志前脱敏
"""
import json
import time
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    日志记录中间件

    1. 记录请求方法、路径、参数，按开关记录请求体
    2. 按状态码分级记录响应与耗时
    3. webhook 请求体从不记录（原样保留给签名校验，且含支付详情）
    """

    # 跳过日志的路径
    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    # 不记录请求体的路径后缀
    NO_BODY_SUFFIXES = ("/payments/webhook",)

    # 敏感字段，日志中需要脱敏
    SENSITIVE_FIELDS = {
        "signature",
        "razorpay_signature",
        "token",
        "secret",
        "key_secret",
        "webhook_secret",
        "access_token",
        "card",
        "vpa",
        "email",
        "contact",
    }

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.time()
        request_info = await self._get_request_info(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.time() - start_time,
                error=str(exc),
                error_type=type(exc).__name__,
                **request_info,
                exc_info=True,
            )
            # 交给异常处理器
            raise

        duration = time.time() - start_time
        self._log_response(response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _get_request_info(self, request: Request) -> dict:
        info = {
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
        }
        if request.method in ["POST", "PUT", "PATCH"] and self._should_log_body(request):
            body_snippet = await self._extract_and_sanitize_body(request)
            if body_snippet is not None:
                info["body"] = body_snippet
            else:
                info["has_body"] = True

        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _should_log_body(self, request: Request) -> bool:
        if request.url.path.endswith(self.NO_BODY_SUFFIXES):
            return False
        # X-Log-Body: true/false 可按请求覆盖
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _extract_and_sanitize_body(self, request: Request) -> Any:
        body = await request.body()
        if not body:
            return None

        snippet = body[: self.max_body_log_bytes].decode("utf-8", errors="ignore")
        content_type = request.headers.get("content-type", "").lower()
        if "application/json" not in content_type:
            return snippet
        try:
            return self._sanitize_data(json.loads(snippet))
        except ValueError:
            # 截断后的 JSON 无法解析，只记录长度
            return {"truncated_bytes": len(body)}

    def _sanitize_data(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: ("***" if k.lower() in self.SENSITIVE_FIELDS else self._sanitize_data(v))
                for k, v in data.items()
            }
        if isinstance(data, list):
            return [self._sanitize_data(v) for v in data]
        return data

    def _log_response(self, response: Response, duration: float, request_info: dict):
        status_code = response.status_code
        log_data = {"status_code": status_code, "duration": duration, **request_info}
        if status_code < 400:
            logger.info("request_completed", **log_data)
        elif status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
