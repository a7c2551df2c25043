"""
live_relay.core.security
~~~~~~~~~~~~~~~~~~~~~~~~

身份令牌校验。

令牌由主站登录接口签发（HS256 JWT），这里只负责校验并提取身份，
不涉及签发流程。``role == "admin"`` 的身份可以成为主播。
"""
from __future__ import annotations

from dataclasses import dataclass

import jwt

from live_relay.core.config import settings
from live_relay.core.logging import get_logger

logger = get_logger(__name__)


class InvalidToken(Exception):
    """令牌缺失关键字段、签名错误或已过期。"""


@dataclass(frozen=True)
class Identity:
    """一次连接绑定的身份信息。"""

    user_id: str | None
    name: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


ANONYMOUS = Identity(user_id=None, name="Anonymous")


def decode_token(token: str) -> Identity:
    """校验 JWT 并返回身份。

    Args:
        token: 客户端提交的 JWT 字符串。

    Returns:
        令牌对应的 ``Identity``。

    Raises:
        InvalidToken: 签名无效、过期或缺少 ``id``/``sub`` 字段。
    """
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except jwt.PyJWTError as e:
        logger.warning("令牌校验失败: %s", e)
        raise InvalidToken(str(e)) from e

    user_id = claims.get("id") or claims.get("sub")
    if not user_id:
        raise InvalidToken("token has no subject")
    return Identity(
        user_id=str(user_id),
        name=str(claims.get("name") or claims.get("email") or "Anonymous"),
        role=str(claims.get("role", "user")),
    )


def resolve_identity(token: str | None) -> Identity:
    """没有令牌时返回匿名观众身份，否则校验令牌。"""
    if not token:
        return ANONYMOUS
    return decode_token(token)


def parse_bearer(authorization: str | None) -> str | None:
    """从 ``Authorization: Bearer xxx`` 头中取出令牌。"""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]
