"""
live_relay.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

HTTP 统一应答体。

直播状态、参与者列表、聊天回看、强制下播等 REST 接口都返回这个结构；
WebSocket 事件走 ``schemas.events``，不使用它。失败响应（持久化未启用、
未捕获异常）通过 ``as_error_response()`` 带上与 ``code`` 一致的 HTTP 状态码。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """统一 JSON 应答体。

    .. code-block:: json

        {"code": 200, "data": {"is_live": true, "broadcaster_id": "9f1c2e", "viewer_count": 3}, "msg": "success"}

    Attributes:
        code: 业务状态码，200 表示成功；失败时与 HTTP 状态码一致（503 / 500）。
        data: 实际业务数据。
        msg: 人类可读的状态消息，如 ``stream stopped`` / ``stream was not live``。
    """

    code: int = Field(default=200, description="业务状态码")
    data: T = Field(..., description="业务数据")
    msg: str = Field(default="success", description="状态消息")

    @classmethod
    def ok(cls, data: T, msg: str = "success") -> ApiResponse[T]:
        return cls(code=200, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        return cls(code=code, data=data, msg=msg)

    def as_error_response(self) -> JSONResponse:
        """以 ``code`` 作为 HTTP 状态码返回（绕过路由的 ``response_model``）。"""
        return JSONResponse(status_code=self.code, content=self.model_dump(mode="json"))
