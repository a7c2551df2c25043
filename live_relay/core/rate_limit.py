"""
live_relay.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~~~

HTTP 接口与 WebSocket 事件的限流配置。
"""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from slowapi import Limiter
from slowapi.util import get_remote_address

from live_relay.core.logging import get_logger

logger = get_logger(__name__)


# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)


# --------- WebSocket 事件限流器 ---------
@dataclass
class _Window:
    started_at: float
    counts: dict[str, int] = field(default_factory=dict)
    blocked: int = 0


class EventRateLimiter:
    """按连接 + 事件类型计数的固定窗口限流器。

    每个连接维护一个窗口，窗口过期后所有计数清零。
    未单独配置的事件类型共用 ``default_limit``。
    """

    def __init__(
        self,
        limits: dict[str, int],
        default_limit: int = 30,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limits = dict(limits)
        self.default_limit = default_limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def is_allowed(self, client_id: str, event_type: str) -> bool:
        """检查客户端是否允许发送该类型事件。

        Args:
            client_id: 连接唯一标识。
            event_type: 规范化后的事件类型。

        Returns:
            是否允许。允许时同时累加计数。
        """
        now = self._clock()
        window = self._windows.get(client_id)
        if window is None or now - window.started_at >= self.window_seconds:
            window = _Window(started_at=now)
            self._windows[client_id] = window

        limit = self.limits.get(event_type, self.default_limit)
        count = window.counts.get(event_type, 0)
        if count >= limit:
            window.blocked += 1
            logger.warning(
                "事件限流 | conn=%s | event=%s | %d/%d",
                client_id, event_type, count, limit,
            )
            return False
        window.counts[event_type] = count + 1
        return True

    def remove_client(self, client_id: str) -> None:
        """清理断开连接的客户端记录。"""
        self._windows.pop(client_id, None)
