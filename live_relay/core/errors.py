"""
live_relay.core.errors
~~~~~~~~~~~~~~~~~~~~~~

中继层异常体系。

所有中继错误都继承 ``RelayError``，由 ``LiveStreamService`` 在边界处统一捕获，
转换为一条 ``error`` 事件回送给发起方，而不是仅记录日志后吞掉。
"""
from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """中继错误基类。

    Attributes:
        code: 机器可读的错误码，随 ``error`` 事件下发给客户端。
        message: 人类可读的错误描述。
        details: 附加上下文（如目标 ID、事件类型）。
    """

    code: str = "relay_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_event(self, event_type: str | None = None) -> dict[str, Any]:
        """转换为下发给客户端的 ``error`` 事件。"""
        data: dict[str, Any] = {"code": self.code, "message": self.message, **self.details}
        if event_type is not None:
            data["event"] = event_type
        return {"type": "error", "data": data}


class TargetNotFound(RelayError):
    """目标参与者不存在或已断开。"""

    code = "target_not_found"


class InvalidPayload(RelayError):
    """事件格式不合法，拒绝转发。"""

    code = "invalid_payload"


class UnauthorizedRoleAction(RelayError):
    """调用方角色无权执行该操作（如观众发起开播）。"""

    code = "unauthorized"


class BroadcasterConflict(RelayError):
    """已有其他主播在线，当前策略拒绝新的主播。"""

    code = "broadcaster_conflict"


class NoActiveStream(RelayError):
    """当前没有进行中的直播。"""

    code = "no_active_stream"


class DeliveryFailed(RelayError):
    """目标连接的发送队列已满，消息无法投递。"""

    code = "delivery_failed"


class RateLimited(RelayError):
    """发送频率超出限制。"""

    code = "rate_limited"


class RecordingConflict(RelayError):
    """录制状态不允许该操作（重复开始或没有进行中的录制）。"""

    code = "recording_conflict"
