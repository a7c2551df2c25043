"""
live_relay.services.connection_hub
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接出站队列中心 —— 按 ``connection_id`` 寻址的点对点发送与广播。

每个连接持有一个 FIFO 出站队列，由 WebSocket 端点的发送协程逐条取出写入。
中继操作只做 ``put_nowait``，从不等待网络 I/O，因此同一发送方发往同一目标
的消息严格保持发送顺序，慢连接也不会拖慢其他人的转发。
"""
from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

from live_relay.core.logging import get_logger

logger = get_logger(__name__)

# 出站队列中的关闭信号
CLOSE = None

Outbox = asyncio.Queue


class ConnectionHub:
    """按连接 ID 管理出站队列。

    Attributes:
        max_size: 单个连接出站队列的最大长度，满了就丢弃新消息。
    """

    def __init__(self, max_size: int = 256) -> None:
        self.max_size = max_size
        self._outboxes: dict[str, Outbox] = {}

    def register(self, connection_id: str) -> Outbox:
        """为新连接创建出站队列。"""
        outbox: Outbox = asyncio.Queue(maxsize=self.max_size)
        self._outboxes[connection_id] = outbox
        return outbox

    def unregister(self, connection_id: str) -> None:
        self._outboxes.pop(connection_id, None)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._outboxes

    @property
    def online_count(self) -> int:
        return len(self._outboxes)

    def send(self, connection_id: str, event: dict[str, Any]) -> bool:
        """向单个连接投递一条事件。

        Returns:
            是否成功放入出站队列。连接不存在或队列已满时返回 ``False``。
        """
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            return False
        try:
            outbox.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("出站队列已满，丢弃消息 | conn=%s | type=%s", connection_id, event.get("type"))
            return False
        return True

    def broadcast(self, event: dict[str, Any], exclude: Iterable[str] = ()) -> int:
        """向所有连接（可排除部分）投递同一事件，返回成功投递数。"""
        skipped = set(exclude)
        delivered = 0
        for connection_id in list(self._outboxes):
            if connection_id in skipped:
                continue
            if self.send(connection_id, event):
                delivered += 1
        return delivered

    def close(self, connection_id: str) -> None:
        """通知发送协程关闭连接（心跳超时等服务端主动断开场景）。"""
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            return
        try:
            outbox.put_nowait(CLOSE)
        except asyncio.QueueFull:
            # 队列满时腾出一个位置，保证关闭信号一定送达
            outbox.get_nowait()
            outbox.put_nowait(CLOSE)
