"""
live_relay.services.live_stream
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播中继业务服务 —— 在 FastAPI lifespan 中创建，挂载于 ``app.state``。

把会话注册表、信令中继、在线人数广播、聊天/连麦中继串在一起：

- ``connect(connection_id, identity)``   → 接纳连接，推送初始状态与观众数
- ``disconnect(connection_id)``          → 移除连接（幂等），主播断开即下播
- ``handle_message(connection_id, raw)`` → 边界校验 + 限流 + 分发，错误回送发起方
  （offer / answer / candidate 不计入限流）
- ``sweep_stale()``                      → 心跳超时巡检，等同于断开
- ``force_stop()``                       → 系统级强制下播

所有操作都是同步的状态变更 + 非阻塞入队，不会挂起事件循环。
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

from live_relay.core.config import settings
from live_relay.core.errors import BroadcasterConflict, RateLimited, RelayError, UnauthorizedRoleAction
from live_relay.core.logging import get_logger
from live_relay.core.rate_limit import EventRateLimiter
from live_relay.core.security import ANONYMOUS, Identity
from live_relay.db.stream_log_repository import StreamLogRepository
from live_relay.schemas import events
from live_relay.schemas.events import SIGNAL_TYPES, normalize_type, outbound, parse_event
from live_relay.schemas.stream import ParticipantInfoData, StreamStatusData
from live_relay.services.chat_relay import ChatRelay
from live_relay.services.connection_hub import ConnectionHub
from live_relay.services.presence import PresenceBroadcaster
from live_relay.services.session_registry import BroadcasterPolicy, Participant, SessionRegistry
from live_relay.services.signaling import SignalingRelay

logger = get_logger(__name__)


class LiveStreamService:
    """直播中继服务（每个进程一个实例）。

    Attributes:
        hub: 连接出站队列中心。
        registry: 参与者与直播会话注册表。
        presence: 观众数推送器。
        signaling: WebRTC 信令转发器。
        chat: 聊天与连麦中继。
        limiter: 按连接、按事件类型的限流器。
        heartbeat_timeout: 心跳超时秒数，<= 0 关闭巡检。
    """

    def __init__(
        self,
        hub: ConnectionHub,
        repo: StreamLogRepository | None = None,
        *,
        policy: BroadcasterPolicy = BroadcasterPolicy.REJECT,
        auto_approve_mic: bool = False,
        limiter: EventRateLimiter | None = None,
        heartbeat_timeout: float = 60.0,
    ) -> None:
        self.hub = hub
        self.registry = SessionRegistry(policy)
        self.presence = PresenceBroadcaster(self.registry, hub)
        self.signaling = SignalingRelay(self.registry, hub)
        self.chat = ChatRelay(self.registry, hub, repo=repo, auto_approve=auto_approve_mic)
        self.limiter = limiter or EventRateLimiter(limits={})
        self.heartbeat_timeout = heartbeat_timeout

        self._handlers: dict[str, Callable[[Participant, Any], None]] = {
            "start-stream": self._on_start,
            "stop-stream": self._on_stop,
            "watcher": self._on_watch,
            "leave-stream": self._on_leave,
            "offer": self._on_signal,
            "answer": self._on_signal,
            "candidate": self._on_signal,
            "chat-message": self._on_chat,
            "mic-request": self._on_mic_request,
            "mic-decision": self._on_mic_decision,
            "mic-mute": self._on_mic_mute,
            "start-recording": self._on_start_recording,
            "stop-recording": self._on_stop_recording,
            "get-stream-status": self._on_get_status,
            "get-viewer-count": self._on_get_viewer_count,
            "ping": self._on_ping,
        }

    @classmethod
    def from_settings(cls, repo: StreamLogRepository | None = None) -> LiveStreamService:
        """按全局配置构建服务。"""
        limiter = EventRateLimiter(
            limits={
                "chat-message": settings.CHAT_RATE_LIMIT,
                "mic-request": settings.MIC_RATE_LIMIT,
            },
            default_limit=settings.DEFAULT_RATE_LIMIT,
            window_seconds=settings.RATE_LIMIT_WINDOW,
        )
        return cls(
            ConnectionHub(max_size=settings.OUTBOX_MAX_SIZE),
            repo,
            policy=BroadcasterPolicy(settings.BROADCASTER_POLICY),
            auto_approve_mic=settings.MIC_AUTO_APPROVE,
            limiter=limiter,
            heartbeat_timeout=settings.HEARTBEAT_TIMEOUT,
        )

    # ── 连接生命周期 ──────────────────────────────────────────────────

    def connect(self, connection_id: str, identity: Identity = ANONYMOUS) -> Participant:
        """接纳一个新连接。

        管理员身份在策略允许时自动成为主播；被 ``reject`` 策略拒绝的管理员
        以观众身份留下，并收到一条 ``broadcaster_conflict`` 错误事件。
        """
        participant = self.registry.admit(
            connection_id, label=identity.name, is_admin=identity.is_admin,
        )

        conflict: RelayError | None = None
        if identity.is_admin:
            try:
                self._promote(participant)
            except BroadcasterConflict as e:
                conflict = e

        self.hub.send(
            connection_id,
            outbound(
                "connected",
                connectionId=connection_id,
                role=participant.role.value,
                label=participant.label,
            ),
        )
        if conflict is not None:
            self.hub.send(connection_id, conflict.to_event("connect"))
        self.hub.send(connection_id, self._status_event())
        self.presence.publish()
        return participant

    def disconnect(self, connection_id: str) -> bool:
        """移除连接。重复调用是无害的空操作，返回是否真的移除了参与者。"""
        self.limiter.remove_client(connection_id)
        lecture_id = self._recording_lecture()
        eviction = self.registry.evict(connection_id)
        if eviction is None:
            return False

        self.chat.forget(connection_id)
        if eviction.was_broadcaster:
            self.chat.reset()
            if eviction.stopped_stream:
                self._announce_stopped("broadcaster-disconnected", lecture_id, exclude=[connection_id])
        elif eviction.participant.watching:
            self.presence.viewer_left(connection_id)

        self.presence.publish()
        return True

    # ── 入站事件 ──────────────────────────────────────────────────────

    def handle_message(self, connection_id: str, raw: Any) -> None:
        """处理一帧入站消息。

        校验失败、越权、目标不存在等 ``RelayError`` 都会转成一条 ``error``
        事件回送给发起方。
        """
        participant = self.registry.get(connection_id)
        if participant is None:
            logger.debug("忽略已移除连接的消息 | conn=%s", connection_id)
            return
        self.registry.touch(connection_id)

        raw_type = raw.get("type") if isinstance(raw, dict) else None
        event_type = normalize_type(raw_type) if isinstance(raw_type, str) else None
        try:
            event = parse_event(raw)
            if event.type not in SIGNAL_TYPES and not self.limiter.is_allowed(connection_id, event.type):
                raise RateLimited("too many events, slow down")
            self._handlers[event.type](participant, event)
        except RelayError as e:
            logger.warning(
                "事件处理失败 | conn=%s | event=%s | %s: %s",
                connection_id, event_type, e.code, e.message,
            )
            self.hub.send(connection_id, e.to_event(event_type))

    # ── 各事件处理 ────────────────────────────────────────────────────

    def _recording_lecture(self) -> str | None:
        session = self.registry.session
        return session.lecture_id if session.is_recording else None

    def _announce_stopped(self, reason: str, lecture_id: str | None, exclude: list[str] | None = None) -> None:
        """广播下播；下播前正在录制的话，一并广播录制结束。"""
        skipped = exclude or []
        self.hub.broadcast(outbound("stream-stopped", reason=reason), exclude=skipped)
        if lecture_id is not None:
            self.hub.broadcast(
                outbound("recording-status-changed", isRecording=False, lectureId=lecture_id),
                exclude=skipped,
            )

    def _promote(self, participant: Participant) -> None:
        was_live = self.registry.session.is_live
        lecture_id = self._recording_lecture()
        replaced = self.registry.promote_to_broadcaster(participant.connection_id)
        if replaced is None:
            return
        self.chat.reset()
        self.hub.send(
            replaced.connection_id,
            outbound("broadcaster-replaced", broadcasterId=participant.connection_id),
        )
        if was_live:
            self._announce_stopped("broadcaster-replaced", lecture_id)

    def _on_start(self, participant: Participant, event: events.StartStream) -> None:
        if not participant.is_broadcaster:
            if not participant.is_admin:
                raise UnauthorizedRoleAction("only admins may start the stream")
            self._promote(participant)
            self.presence.publish()

        if self.registry.start(participant.connection_id):
            session = self.registry.session
            self.hub.broadcast(
                outbound(
                    "stream-started",
                    broadcasterId=participant.connection_id,
                    sessionId=session.session_id,
                ),
            )
        else:
            self.hub.send(participant.connection_id, self._status_event())

    def _on_stop(self, participant: Participant, event: events.StopStream) -> None:
        lecture_id = self._recording_lecture()
        if self.registry.stop(participant.connection_id):
            self.chat.reset()
            self._announce_stopped("stopped", lecture_id)
        else:
            self.hub.send(participant.connection_id, self._status_event())

    def _on_watch(self, participant: Participant, event: events.Watch) -> None:
        if participant.is_broadcaster:
            raise UnauthorizedRoleAction("the broadcaster cannot join as a viewer")

        session = self.registry.session
        if not session.is_live:
            self.hub.send(participant.connection_id, outbound("stream-not-active"))
            return

        participant.watching = True
        self.hub.send(
            participant.connection_id,
            outbound(
                "stream-started",
                broadcasterId=session.broadcaster_id,
                sessionId=session.session_id,
            ),
        )
        self.presence.viewer_joined(participant.connection_id)

    def _on_leave(self, participant: Participant, event: events.LeaveStream) -> None:
        if not participant.watching:
            return
        participant.watching = False
        self.chat.forget(participant.connection_id)
        self.presence.viewer_left(participant.connection_id)
        self.hub.send(participant.connection_id, outbound("stream-left"))

    def _on_signal(self, participant: Participant, event: events.Offer | events.Answer | events.Candidate) -> None:
        self.signaling.relay(event.type, participant.connection_id, event.target_id, event.payload())

    def _on_chat(self, participant: Participant, event: events.ChatMessage) -> None:
        label = event.sender_label or participant.label
        self.chat.chat(participant.connection_id, label, event.text)

    def _on_mic_request(self, participant: Participant, event: events.MicRequest) -> None:
        self.chat.request_mic(participant.connection_id)

    def _on_mic_decision(self, participant: Participant, event: events.MicDecision) -> None:
        self.chat.decide_mic(participant.connection_id, event.requester_id, event.approved)

    def _on_mic_mute(self, participant: Participant, event: events.MicMute) -> None:
        self.chat.mute_mic(participant.connection_id, event.target_id)

    def _on_start_recording(self, participant: Participant, event: events.StartRecording) -> None:
        lecture_id = self.registry.start_recording(participant.connection_id, event.lecture_id)
        self.hub.send(participant.connection_id, outbound("recording-started", lectureId=lecture_id))
        self.hub.broadcast(outbound("recording-status-changed", isRecording=True, lectureId=lecture_id))

    def _on_stop_recording(self, participant: Participant, event: events.StopRecording) -> None:
        lecture_id, duration_ms = self.registry.stop_recording(participant.connection_id)
        self.hub.send(
            participant.connection_id,
            outbound("recording-stopped", lectureId=lecture_id, duration=duration_ms),
        )
        self.hub.broadcast(outbound("recording-status-changed", isRecording=False, lectureId=lecture_id))

    def _on_get_status(self, participant: Participant, event: events.GetStreamStatus) -> None:
        self.hub.send(participant.connection_id, self._status_event())

    def _on_get_viewer_count(self, participant: Participant, event: events.GetViewerCount) -> None:
        self.hub.send(
            participant.connection_id,
            outbound("viewer-count", viewerCount=self.registry.current_viewer_count()),
        )

    def _on_ping(self, participant: Participant, event: events.Ping) -> None:
        self.hub.send(participant.connection_id, outbound("pong", timestamp=int(time.time() * 1000)))

    # ── 心跳 / 系统操作 ───────────────────────────────────────────────

    def sweep_stale(self, now: float | None = None) -> list[str]:
        """移除心跳超时的连接，处理方式与正常断开完全一致。"""
        if self.heartbeat_timeout <= 0:
            return []
        stale = self.registry.stale(self.heartbeat_timeout, now)
        for connection_id in stale:
            logger.warning("心跳超时，断开连接 | conn=%s", connection_id)
            self.disconnect(connection_id)
            self.hub.close(connection_id)
        return stale

    async def heartbeat_loop(self, interval: float) -> None:
        """后台巡检协程，在 lifespan 中启动、关闭时取消。"""
        while True:
            await asyncio.sleep(interval)
            self.sweep_stale()

    def force_stop(self) -> bool:
        """系统级强制下播（管理接口调用）。"""
        lecture_id = self._recording_lecture()
        if not self.registry.force_stop():
            return False
        self.chat.reset()
        self._announce_stopped("forced", lecture_id)
        logger.warning("直播被强制结束")
        return True

    async def close(self) -> None:
        await self.chat.drain()

    # ── 状态查询 ──────────────────────────────────────────────────────

    def status(self) -> StreamStatusData:
        session = self.registry.session
        return StreamStatusData(
            is_live=session.is_live,
            session_id=session.session_id,
            broadcaster_id=session.broadcaster_id,
            viewer_count=self.registry.current_viewer_count(),
            participant_count=len(self.registry),
            started_at=session.started_at,
            is_recording=session.is_recording,
            lecture_id=session.lecture_id,
        )

    def participants_info(self) -> list[ParticipantInfoData]:
        return [
            ParticipantInfoData(
                connection_id=p.connection_id,
                role=p.role.value,
                label=p.label,
                watching=p.watching,
                joined_at=p.joined_at,
            )
            for p in self.registry.participants()
        ]

    def _status_event(self) -> dict[str, Any]:
        status = self.status()
        return outbound(
            "stream-status",
            isLive=status.is_live,
            sessionId=status.session_id,
            broadcasterId=status.broadcaster_id,
            viewerCount=status.viewer_count,
            participantCount=status.participant_count,
            startedAt=status.started_at.isoformat() if status.started_at else None,
            isRecording=status.is_recording,
            lectureId=status.lecture_id,
        )
