"""
统一响应格式定义

所有接口返回 {code, message, data, error} 信封；金额字段以字符串输出，避免浮点误差。
"""
from decimal import Decimal
from typing import Any, Optional, Generic, TypeVar
from pydantic import BaseModel, Field, field_serializer
from datetime import datetime, timezone
from shared.codes import BusinessCode


T = TypeVar("T")


def _utc_iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)
    return ts.isoformat().replace("+00:00", "Z")


class ErrorDetail(BaseModel):
    """错误详情"""
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    retryable: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer('timestamp')
    def serialize_timestamp(self, timestamp: datetime) -> str:
        """序列化时间戳为 UTC ISO8601，统一使用 Z 结尾"""
        return _utc_iso(timestamp)


class Response(BaseModel, Generic[T]):
    """统一响应模型"""
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


class PaginatedData(BaseModel, Generic[T]):
    """分页数据模型（page 从 1 开始）"""
    items: list[T]
    total: int
    page: int
    limit: int
    pages: int


def success_response(
    data: Any = None,
    message: str = "Success",
    code: int = BusinessCode.SUCCESS
) -> Response:
    """创建成功响应"""
    return Response(code=code, message=message, data=data, error=None)


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
    retryable: bool = False,
) -> Response:
    """
    创建错误响应

    Args:
        code: 业务状态码
        message: 错误消息
        error_type: 错误类型
        details: 错误详情（Decimal 会被转换为字符串）
        field: 错误字段
        request_id: 请求ID
        retryable: 客户端是否可以稍后重试

    Returns:
        Response: 统一响应对象
    """
    return Response(
        code=code,
        message=message,
        data=None,
        error=ErrorDetail(
            type=error_type,
            details=_jsonable(details) if details else None,
            field=field,
            request_id=request_id,
            retryable=retryable,
        )
    )


def paginated_response(
    items: list,
    total: int,
    page: int,
    limit: int,
    message: str = "Success"
) -> Response[PaginatedData]:
    """创建分页响应"""
    pages = (total + limit - 1) // limit if limit > 0 else 0

    return Response(
        code=BusinessCode.SUCCESS,
        message=message,
        data=PaginatedData(items=items, total=total, page=page, limit=limit, pages=pages),
        error=None
    )


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
