"""
令牌服务 - 校验认证服务签发的访问令牌

本服务不负责登录；令牌由上游认证服务使用共享的 SECRET_KEY 签发（HS256）。
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid

import jwt

from core.config import settings
from core.exceptions import UnauthorizedException, TokenExpiredException
from core.logging_config import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """当前调用者"""
    user_id: int
    is_superuser: bool = False


class TokenService:
    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        self._secret_key = secret_key or settings.SECRET_KEY
        self._algorithm = algorithm or settings.ALGORITHM

    def decode(self, token: str) -> Principal:
        """
        解码并校验访问令牌

        1. 校验签名和过期时间
        2. sub 必须是用户ID
        3. type 存在时必须为 access
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except jwt.PyJWTError as e:
            logger.warning("invalid_access_token", error=str(e))
            raise UnauthorizedException("Invalid access token")

        if payload.get("type", "access") != "access":
            raise UnauthorizedException("Wrong token type")
        try:
            user_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            raise UnauthorizedException("Token subject is missing")

        return Principal(user_id=user_id, is_superuser=bool(payload.get("is_superuser", False)))

    def issue(self, user_id: int, *, is_superuser: bool = False, expires_minutes: int = 30) -> str:
        """签发访问令牌（测试与运维脚本使用）"""
        expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
        to_encode = {
            "sub": str(user_id),
            "is_superuser": is_superuser,
            "exp": expire,
            "type": "access",
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)
