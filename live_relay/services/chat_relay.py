"""
live_relay.services.chat_relay
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

聊天与连麦中继。

- 聊天：原文转发给除发送方以外的所有参与者，不做过滤、不限长度。
- 连麦（floor control）：观众申请先挂起并转给主播，由主播明确批准或拒绝后
  才通知申请人。旧版“申请即自动批准”的演示行为只在 ``MIC_AUTO_APPROVE``
  打开时保留。

关联了 ``StreamLogRepository`` 时，聊天与连麦事件会以后台任务写入 MongoDB，
写入永远不会阻塞转发。
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Coroutine
from datetime import datetime, timezone
from typing import Any

from live_relay.core.errors import DeliveryFailed, NoActiveStream, TargetNotFound, UnauthorizedRoleAction
from live_relay.core.logging import get_logger
from live_relay.db.stream_log_repository import MicAction, StreamLogRepository
from live_relay.schemas.events import outbound
from live_relay.services.connection_hub import ConnectionHub
from live_relay.services.session_registry import SessionRegistry

logger = get_logger(__name__)


class ChatRelay:
    """聊天广播与连麦仲裁。

    Attributes:
        pending: 等待主播处理的连麦申请（申请人 → 申请时间）。
        holders: 已获批连麦、当前持有麦克风的参与者。
    """

    def __init__(
        self,
        registry: SessionRegistry,
        hub: ConnectionHub,
        repo: StreamLogRepository | None = None,
        auto_approve: bool = False,
    ) -> None:
        self.registry = registry
        self.hub = hub
        self.repo = repo
        self.auto_approve = auto_approve
        self.pending: dict[str, datetime] = {}
        self.holders: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    # ── 聊天 ──────────────────────────────────────────────────────────

    def chat(self, sender_id: str, sender_label: str, text: str) -> int:
        """广播一条聊天消息，返回实际送达人数。"""
        event = outbound(
            "chat-message",
            senderId=sender_id,
            senderLabel=sender_label,
            text=text,
            timestamp=int(time.time() * 1000),
        )
        delivered = sum(
            1 for p in self.registry.others(sender_id)
            if self.hub.send(p.connection_id, event)
        )
        logger.debug("聊天广播 | from=%s | 送达: %d", sender_id, delivered)

        if self.repo is not None:
            self._schedule(self.repo.save_chat(
                self.registry.session.session_id, sender_id, sender_label, text,
            ))
        return delivered

    # ── 连麦 ──────────────────────────────────────────────────────────

    def request_mic(self, requester_id: str) -> None:
        """观众申请连麦。

        Raises:
            UnauthorizedRoleAction: 主播自己申请。
            NoActiveStream: 没有进行中的直播。
            DeliveryFailed: 申请无法送达主播。
        """
        requester = self.registry.get(requester_id)
        if requester is None:
            raise TargetNotFound("requester is not connected", requesterId=requester_id)
        if requester.is_broadcaster:
            raise UnauthorizedRoleAction("only viewers may request the mic")

        broadcaster = self.registry.broadcaster
        if not self.registry.session.is_live or broadcaster is None:
            raise NoActiveStream("no active stream to request the mic from")

        if requester_id in self.holders:
            self.hub.send(requester_id, outbound("mic-approved", requesterId=requester_id))
            return

        if self.auto_approve:
            self.holders.add(requester_id)
            self.hub.send(requester_id, outbound("mic-approved", requesterId=requester_id))
            self._log_mic(requester_id, "approved")
            logger.info("连麦自动批准 | requester=%s", requester_id)
            return

        if requester_id in self.pending:
            self.hub.send(requester_id, outbound("mic-request-pending", requesterId=requester_id))
            return

        delivered = self.hub.send(
            broadcaster.connection_id,
            outbound("mic-request", requesterId=requester_id, senderLabel=requester.label),
        )
        if not delivered:
            raise DeliveryFailed("broadcaster could not accept the mic request")

        self.pending[requester_id] = datetime.now(timezone.utc)
        self.hub.send(requester_id, outbound("mic-request-pending", requesterId=requester_id))
        self._log_mic(requester_id, "requested")
        logger.info("连麦申请 | requester=%s | 待处理: %d", requester_id, len(self.pending))

    def decide_mic(self, decider_id: str, requester_id: str, approved: bool) -> None:
        """主播批准或拒绝一条连麦申请。

        Raises:
            UnauthorizedRoleAction: 调用方不是当前主播。
            TargetNotFound: 没有该申请人的待处理申请。
        """
        self._require_broadcaster(decider_id)
        if self.pending.pop(requester_id, None) is None:
            raise TargetNotFound("no pending mic request", requesterId=requester_id)

        if approved:
            self.holders.add(requester_id)
        self.hub.send(
            requester_id,
            outbound("mic-approved" if approved else "mic-rejected", requesterId=requester_id),
        )
        self._log_mic(requester_id, "approved" if approved else "rejected")
        logger.info("连麦处理 | requester=%s | approved=%s", requester_id, approved)

    def mute_mic(self, decider_id: str, target_id: str) -> None:
        """主播关闭某位观众的麦克风。"""
        self._require_broadcaster(decider_id)
        if target_id not in self.registry:
            raise TargetNotFound("target is not connected", targetId=target_id)

        self.holders.discard(target_id)
        self.hub.send(target_id, outbound("mic-muted", requesterId=target_id))
        self._log_mic(target_id, "muted")

    def forget(self, connection_id: str) -> None:
        """参与者断开时撤销其连麦状态。"""
        self.holders.discard(connection_id)
        if self.pending.pop(connection_id, None) is None:
            return
        broadcaster = self.registry.broadcaster
        if broadcaster is not None:
            self.hub.send(
                broadcaster.connection_id,
                outbound("mic-request-cancelled", requesterId=connection_id),
            )
        self._log_mic(connection_id, "cancelled")

    def reset(self) -> None:
        """下播时清空全部连麦状态。"""
        self.pending.clear()
        self.holders.clear()

    def _require_broadcaster(self, connection_id: str) -> None:
        if self.registry.session.broadcaster_id != connection_id:
            raise UnauthorizedRoleAction("only the active broadcaster may manage mics")

    # ── 持久化 ────────────────────────────────────────────────────────

    def _log_mic(self, requester_id: str, action: MicAction) -> None:
        if self.repo is not None:
            self._schedule(self.repo.save_mic_event(
                self.registry.session.session_id, requester_id, action,
            ))

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_persisted)

    def _on_persisted(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("互动日志持久化失败: %s", error, exc_info=error)

    async def drain(self) -> None:
        """等待所有尚未完成的持久化任务（关闭服务时调用）。"""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
