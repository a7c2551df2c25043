"""
live_relay.db.stream_log_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播互动日志仓库 —— 封装 MongoDB ``stream_logs`` 集合。

聊天消息与连麦事件各自一条文档，用 ``kind`` 区分，供课后回看与审计。
中继层只以 fire-and-forget 的方式写入，写入失败不会影响实时转发。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, TypedDict

from motor.motor_asyncio import AsyncIOMotorDatabase

from live_relay.core.logging import get_logger

logger = get_logger(__name__)

_COLLECTION_NAME = "stream_logs"

MicAction = Literal["requested", "approved", "rejected", "muted", "cancelled"]


class ChatLog(TypedDict):
    """``stream_logs`` 中 ``kind == "chat"`` 的单条记录。"""
    session_id: str | None
    sender_id: str
    sender_label: str
    text: str
    created_at: datetime


class StreamLogRepository:
    """直播互动日志持久化仓库。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._collection.create_index(
            [("kind", 1), ("session_id", 1), ("created_at", 1)],
            name="idx_kind_session_time",
        )
        self._indexes_created = True
        logger.debug("stream_logs 索引已就绪")

    async def save_chat(
        self,
        session_id: str | None,
        sender_id: str,
        sender_label: str,
        text: str,
    ) -> None:
        """保存一条聊天消息。"""
        await self._ensure_indexes()
        await self._collection.insert_one({
            "kind": "chat",
            "session_id": session_id,
            "sender_id": sender_id,
            "sender_label": sender_label,
            "text": text,
            "created_at": datetime.now(timezone.utc),
        })

    async def save_mic_event(
        self,
        session_id: str | None,
        requester_id: str,
        action: MicAction,
    ) -> None:
        """保存一条连麦事件（申请 / 批准 / 拒绝 / 静音 / 取消）。"""
        await self._ensure_indexes()
        await self._collection.insert_one({
            "kind": "mic",
            "session_id": session_id,
            "requester_id": requester_id,
            "action": action,
            "created_at": datetime.now(timezone.utc),
        })

    async def get_chat_history(
        self,
        session_id: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[ChatLog]:
        """分页获取聊天记录（按时间正序）。

        Args:
            session_id: 只看某一场直播；为空时返回全部。
            skip: 跳过条数（分页偏移）。
            limit: 每页最大条数。
        """
        await self._ensure_indexes()
        cursor = (
            self._collection
            .find(
                self._chat_filter(session_id),
                {"_id": 0, "session_id": 1, "sender_id": 1, "sender_label": 1, "text": 1, "created_at": 1},
            )
            .sort("created_at", 1)
            .skip(skip)
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    async def count_chat(self, session_id: str | None = None) -> int:
        """获取聊天记录总数。"""
        await self._ensure_indexes()
        return await self._collection.count_documents(self._chat_filter(session_id))

    @staticmethod
    def _chat_filter(session_id: str | None) -> dict:
        query: dict = {"kind": "chat"}
        if session_id is not None:
            query["session_id"] = session_id
        return query
