"""
live_relay.api.stream_ws
~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 直播信令接口。

提供 ``/ws/stream`` 端点。客户端可通过 ``?token=<jwt>`` 携带身份，
不带令牌则以匿名观众身份加入；令牌无效直接以 4001 关闭。

每个连接运行两个协程：

- 接收协程：刷新心跳，解析 JSON 文本帧并交给 ``LiveStreamService.handle_message``；
  二进制帧与非法 JSON 回送 ``invalid_payload`` 错误
- 发送协程：按 FIFO 顺序把出站队列中的事件写回客户端

任一协程结束（客户端断开、心跳超时、发送失败）都会取消另一个，
最后统一执行断开清理。
"""
from __future__ import annotations

import asyncio
import json
import uuid

from fastapi import APIRouter, WebSocket

from live_relay.core.errors import InvalidPayload
from live_relay.core.logging import get_logger, request_id_ctx_var
from live_relay.core.security import InvalidToken, resolve_identity
from live_relay.services.connection_hub import CLOSE, Outbox
from live_relay.services.live_stream import LiveStreamService

logger = get_logger(__name__)

router: APIRouter = APIRouter()

# 心跳超时由服务端主动关闭时使用的关闭码
HEARTBEAT_CLOSE_CODE = 4008


@router.websocket("/ws/stream")
async def websocket_stream_endpoint(websocket: WebSocket, token: str | None = None) -> None:
    """WebSocket 直播信令端点。

    帧格式统一为 ``{"type": "...", "data": {...}}``，事件列表见
    ``live_relay.schemas.events``。

    Args:
        websocket: FastAPI WebSocket 连接对象。
        token: 可选的 JWT 身份令牌（查询参数）。
    """
    service: LiveStreamService = websocket.app.state.live_stream

    try:
        identity = resolve_identity(token)
    except InvalidToken:
        await websocket.close(code=4001, reason="Unauthorized")
        return

    connection_id = uuid.uuid4().hex
    ctx_token = request_id_ctx_var.set(f"ws-{connection_id[:8]}")

    try:
        await websocket.accept()
        outbox = service.hub.register(connection_id)
        try:
            participant = service.connect(connection_id, identity)
            logger.info(
                "连接建立 | conn=%s | role=%s | 观众: %d",
                connection_id, participant.role.value, service.registry.current_viewer_count(),
            )

            receiver = asyncio.create_task(_receive_loop(websocket, service, connection_id))
            sender = asyncio.create_task(_send_loop(websocket, outbox))
            done, pending = await asyncio.wait({receiver, sender}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error("WebSocket 异常: %s", task.exception(), exc_info=task.exception())
        finally:
            service.disconnect(connection_id)
            service.hub.unregister(connection_id)
            logger.info("连接关闭 | conn=%s | 观众: %d", connection_id, service.registry.current_viewer_count())
    finally:
        request_id_ctx_var.reset(ctx_token)


async def _receive_loop(websocket: WebSocket, service: LiveStreamService, connection_id: str) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return  # 正常断开

        # 任何入站帧都算心跳，包括下面被拒绝的坏帧
        service.registry.touch(connection_id)
        text = message.get("text")
        if text is None:
            service.hub.send(connection_id, InvalidPayload("binary frames are not supported").to_event())
            continue
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            service.hub.send(connection_id, InvalidPayload("frame is not valid JSON").to_event())
            continue
        service.handle_message(connection_id, raw)


async def _send_loop(websocket: WebSocket, outbox: Outbox) -> None:
    while True:
        event = await outbox.get()
        if event is CLOSE:
            await websocket.close(code=HEARTBEAT_CLOSE_CODE, reason="Heartbeat timeout")
            return
        await websocket.send_json(event)
