"""
live_relay.services.presence
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

在线人数广播 —— 每次连接 / 断开后重新计算观众数并推送给所有人。
"""
from __future__ import annotations

from live_relay.schemas.events import outbound
from live_relay.services.connection_hub import ConnectionHub
from live_relay.services.session_registry import SessionRegistry


class PresenceBroadcaster:
    """观众数推送器。推送均为 fire-and-forget，不等待确认。"""

    def __init__(self, registry: SessionRegistry, hub: ConnectionHub) -> None:
        self.registry = registry
        self.hub = hub

    def publish(self) -> int:
        """向所有在线连接推送 ``viewer-count-updated``，返回当前观众数。"""
        count = self.registry.current_viewer_count()
        self.hub.broadcast(outbound("viewer-count-updated", viewerCount=count))
        return count

    def viewer_joined(self, viewer_id: str) -> None:
        """通知主播有观众加入观看，主播据此向该观众发起 offer。"""
        self._notify_broadcaster("viewer-join", viewer_id)

    def viewer_left(self, viewer_id: str) -> None:
        self._notify_broadcaster("viewer-left", viewer_id)

    def _notify_broadcaster(self, event_type: str, viewer_id: str) -> None:
        broadcaster = self.registry.broadcaster
        if broadcaster is None or broadcaster.connection_id == viewer_id:
            return
        viewer = self.registry.get(viewer_id)
        self.hub.send(
            broadcaster.connection_id,
            outbound(
                event_type,
                viewerId=viewer_id,
                label=viewer.label if viewer else None,
                viewerCount=self.registry.current_viewer_count(),
            ),
        )
