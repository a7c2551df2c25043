"""
live_relay.services.signaling
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebRTC 信令中继 —— offer / answer / ICE candidate 的点对点转发。

负载（SDP、candidate）被视为不透明数据原样转发，中继只负责寻址，
并由服务端附加真实的 ``senderId``。
"""
from __future__ import annotations

from typing import Any

from live_relay.core.errors import DeliveryFailed, InvalidPayload, TargetNotFound
from live_relay.core.logging import get_logger
from live_relay.schemas.events import SignalKind, outbound
from live_relay.services.connection_hub import ConnectionHub
from live_relay.services.session_registry import SessionRegistry

logger = get_logger(__name__)

# 观众不知道主播连接 ID 时可以用这些别名寻址
BROADCASTER_ALIASES: frozenset[str] = frozenset({"admin", "broadcaster"})


class SignalingRelay:
    """信令转发器。"""

    def __init__(self, registry: SessionRegistry, hub: ConnectionHub) -> None:
        self.registry = registry
        self.hub = hub

    def resolve_target(self, target_id: str) -> str:
        """把别名解析为真实连接 ID。

        Raises:
            TargetNotFound: 目标不存在或已断开。
        """
        if target_id in BROADCASTER_ALIASES:
            broadcaster = self.registry.broadcaster
            if broadcaster is None:
                raise TargetNotFound("no broadcaster is connected", targetId=target_id)
            return broadcaster.connection_id
        if target_id not in self.registry:
            raise TargetNotFound("target is not connected", targetId=target_id)
        return target_id

    def relay(self, kind: SignalKind, sender_id: str, target_id: str, payload: dict[str, Any]) -> str:
        """转发一条信令，返回实际投递的目标连接 ID。

        Raises:
            TargetNotFound: 目标不存在，零投递。
            InvalidPayload: 发给自己。
            DeliveryFailed: 目标出站队列已满。
        """
        resolved = self.resolve_target(target_id)
        if resolved == sender_id:
            raise InvalidPayload("cannot signal yourself", targetId=target_id)

        if not self.hub.send(resolved, outbound(kind, senderId=sender_id, **payload)):
            raise DeliveryFailed("target could not accept the message", targetId=target_id)

        logger.debug("信令转发 | %s | %s -> %s", kind, sender_id, resolved)
        return resolved
