"""
live_relay.services.session_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话注册表 —— 参与者集合与直播会话状态的唯一持有者。

其他组件只能通过这里暴露的操作（admit / promote / start / stop / evict /
start_recording / stop_recording）修改状态；注册表本身不做任何 I/O，
通知由调用方根据返回值发出。

状态机::

    IDLE --start(主播)--> LIVE
    LIVE --stop(主播)--> IDLE
    LIVE --主播断开--> IDLE

观众进出只影响观众数，不改变直播状态。录制只能在 LIVE 状态下开始，
回到 IDLE 时自动结束。
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from live_relay.core.errors import (
    BroadcasterConflict,
    NoActiveStream,
    RecordingConflict,
    TargetNotFound,
    UnauthorizedRoleAction,
)
from live_relay.core.logging import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    BROADCASTER = "broadcaster"
    VIEWER = "viewer"


class BroadcasterPolicy(str, Enum):
    """已有主播时再次申请主播身份的处理策略。"""

    REJECT = "reject"
    REPLACE = "replace"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Participant:
    """一个已连接的参与者。

    Attributes:
        connection_id: 连接建立时分配的唯一 ID，连接存续期间不变。
        role: 主播或观众，默认观众。
        label: 显示名称。
        is_admin: 身份令牌是否为管理员，只有管理员可以成为主播。
        watching: 观众是否已发送 ``watcher`` 加入观看。
        joined_at: 连接时间（UTC）。
        last_seen: 最近一次收到该连接消息的单调时间，用于心跳检测。
    """

    connection_id: str
    role: Role = Role.VIEWER
    label: str = "Anonymous"
    is_admin: bool = False
    watching: bool = False
    joined_at: datetime = field(default_factory=_utcnow)
    last_seen: float = field(default_factory=time.monotonic)

    @property
    def is_broadcaster(self) -> bool:
        return self.role is Role.BROADCASTER


@dataclass
class StreamSession:
    """直播会话状态。

    录制只是会话上的一个标记（课程 ID + 开始时间），服务端不接触媒体数据；
    下播时录制随之结束。
    """

    is_live: bool = False
    broadcaster_id: str | None = None
    session_id: str | None = None
    started_at: datetime | None = None
    is_recording: bool = False
    lecture_id: str | None = None
    recording_started_at: datetime | None = None

    def go_idle(self) -> None:
        self.is_live = False
        self.session_id = None
        self.started_at = None
        self.clear_recording()

    def clear_recording(self) -> None:
        self.is_recording = False
        self.lecture_id = None
        self.recording_started_at = None


@dataclass
class Eviction:
    """一次移除的结果，调用方据此决定要发出哪些通知。"""

    participant: Participant
    was_broadcaster: bool
    stopped_stream: bool


class SessionRegistry:
    """参与者与直播会话注册表。

    单事件循环内使用，不加锁。
    """

    def __init__(self, policy: BroadcasterPolicy = BroadcasterPolicy.REJECT) -> None:
        self.policy = policy
        self.session = StreamSession()
        self._participants: dict[str, Participant] = {}

    # ── 查询 ──────────────────────────────────────────────────────────

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._participants

    def __len__(self) -> int:
        return len(self._participants)

    def get(self, connection_id: str) -> Participant | None:
        return self._participants.get(connection_id)

    def participants(self) -> list[Participant]:
        return list(self._participants.values())

    def others(self, exclude_id: str) -> list[Participant]:
        """除指定连接外的所有参与者。"""
        return [p for p in self._participants.values() if p.connection_id != exclude_id]

    @property
    def broadcaster(self) -> Participant | None:
        if self.session.broadcaster_id is None:
            return None
        return self._participants.get(self.session.broadcaster_id)

    def current_viewer_count(self) -> int:
        """当前观众数：所有非主播的在线参与者。"""
        return sum(1 for p in self._participants.values() if p.role is Role.VIEWER)

    # ── 变更 ──────────────────────────────────────────────────────────

    def admit(self, connection_id: str, label: str = "Anonymous", is_admin: bool = False) -> Participant:
        """接纳新连接，默认观众身份。重复接纳返回已有参与者。"""
        existing = self._participants.get(connection_id)
        if existing is not None:
            return existing
        participant = Participant(connection_id=connection_id, label=label, is_admin=is_admin)
        self._participants[connection_id] = participant
        logger.info(
            "参与者加入 | conn=%s | label=%s | admin=%s | 在线: %d",
            connection_id, label, is_admin, len(self._participants),
        )
        return participant

    def promote_to_broadcaster(self, connection_id: str) -> Participant | None:
        """把参与者提升为主播。

        Returns:
            被 ``replace`` 策略替换下来的原主播；没有替换时为 ``None``。

        Raises:
            TargetNotFound: 连接不存在。
            BroadcasterConflict: ``reject`` 策略下已有其他主播。
        """
        participant = self._participants.get(connection_id)
        if participant is None:
            raise TargetNotFound("participant is not connected", targetId=connection_id)

        current = self.broadcaster
        if current is not None and current.connection_id == connection_id:
            return None

        replaced: Participant | None = None
        if current is not None:
            if self.policy is BroadcasterPolicy.REJECT:
                raise BroadcasterConflict(
                    "another broadcaster is already active",
                    broadcasterId=current.connection_id,
                )
            current.role = Role.VIEWER
            replaced = current
            if self.session.is_live:
                self.session.go_idle()
            logger.warning(
                "主播被接管 | old=%s | new=%s", current.connection_id, connection_id,
            )

        participant.role = Role.BROADCASTER
        self.session.broadcaster_id = connection_id
        logger.info("主播就位 | conn=%s", connection_id)
        return replaced

    def _require_broadcaster(self, connection_id: str, action: str) -> None:
        if self.session.broadcaster_id != connection_id or connection_id not in self._participants:
            raise UnauthorizedRoleAction(
                f"only the active broadcaster may {action} the stream",
            )

    def start(self, connection_id: str) -> bool:
        """开播。返回直播状态是否发生变化。"""
        self._require_broadcaster(connection_id, "start")
        if self.session.is_live:
            return False
        self.session.is_live = True
        self.session.session_id = uuid.uuid4().hex
        self.session.started_at = _utcnow()
        logger.info("直播开始 | session=%s | broadcaster=%s", self.session.session_id, connection_id)
        return True

    def stop(self, connection_id: str) -> bool:
        """下播。返回直播状态是否发生变化。"""
        self._require_broadcaster(connection_id, "stop")
        return self._stop()

    def force_stop(self) -> bool:
        """系统级下播，不校验调用方。"""
        return self._stop()

    def _stop(self) -> bool:
        if not self.session.is_live:
            return False
        logger.info("直播结束 | session=%s", self.session.session_id)
        self.session.go_idle()
        return True

    def start_recording(self, connection_id: str, lecture_id: str | None = None) -> str:
        """开始录制，返回本次录制的课程 ID。

        Raises:
            UnauthorizedRoleAction: 调用方不是当前主播。
            NoActiveStream: 没有进行中的直播。
            RecordingConflict: 已在录制中。
        """
        self._require_broadcaster(connection_id, "record")
        if not self.session.is_live:
            raise NoActiveStream("no active stream to record")
        if self.session.is_recording:
            raise RecordingConflict("recording already in progress", lectureId=self.session.lecture_id)

        now = _utcnow()
        self.session.is_recording = True
        self.session.lecture_id = lecture_id or f"lecture_{int(now.timestamp() * 1000)}"
        self.session.recording_started_at = now
        logger.info("录制开始 | lecture=%s", self.session.lecture_id)
        return self.session.lecture_id

    def stop_recording(self, connection_id: str) -> tuple[str, int]:
        """结束录制，返回 ``(课程 ID, 录制时长毫秒)``。"""
        self._require_broadcaster(connection_id, "record")
        if not self.session.is_recording:
            raise RecordingConflict("no recording in progress")

        lecture_id = self.session.lecture_id
        elapsed = _utcnow() - self.session.recording_started_at
        duration_ms = max(0, int(elapsed.total_seconds() * 1000))
        self.session.clear_recording()
        logger.info("录制结束 | lecture=%s | duration=%dms", lecture_id, duration_ms)
        return lecture_id, duration_ms

    def evict(self, connection_id: str) -> Eviction | None:
        """移除参与者；重复移除返回 ``None``。

        主播被移除时清空主播并把会话切回 IDLE。
        """
        participant = self._participants.pop(connection_id, None)
        if participant is None:
            return None

        was_broadcaster = self.session.broadcaster_id == connection_id
        stopped = False
        if was_broadcaster:
            self.session.broadcaster_id = None
            stopped = self._stop()

        logger.info(
            "参与者离开 | conn=%s | broadcaster=%s | 在线: %d",
            connection_id, was_broadcaster, len(self._participants),
        )
        return Eviction(participant=participant, was_broadcaster=was_broadcaster, stopped_stream=stopped)

    # ── 心跳 ──────────────────────────────────────────────────────────

    def touch(self, connection_id: str, now: float | None = None) -> None:
        participant = self._participants.get(connection_id)
        if participant is not None:
            participant.last_seen = time.monotonic() if now is None else now

    def stale(self, timeout: float, now: float | None = None) -> list[str]:
        """静默时间超过 ``timeout`` 秒的连接 ID 列表。"""
        now = time.monotonic() if now is None else now
        return [
            p.connection_id for p in self._participants.values()
            if now - p.last_seen > timeout
        ]
