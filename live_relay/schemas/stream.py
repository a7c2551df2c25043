"""
live_relay.schemas.stream
~~~~~~~~~~~~~~~~~~~~~~~~~

直播状态相关的 Pydantic 响应模型（HTTP 接口与 ``stream-status`` 事件共用）。
"""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

ParticipantRole = Literal["broadcaster", "viewer"]


class StreamStatusData(BaseModel):
    """直播会话状态摘要。"""

    is_live: bool = Field(..., description="是否正在直播")
    session_id: str | None = Field(default=None, description="本场直播 ID，空闲时为空")
    broadcaster_id: str | None = Field(default=None, description="当前主播连接 ID")
    viewer_count: int = Field(..., ge=0, description="当前在线观众数")
    participant_count: int = Field(..., ge=0, description="当前连接总数（含主播）")
    started_at: datetime | None = Field(default=None, description="开播时间（UTC）")
    is_recording: bool = Field(default=False, description="是否正在录制")
    lecture_id: str | None = Field(default=None, description="当前录制的课程 ID")


class ParticipantInfoData(BaseModel):
    """单个参与者信息。"""

    connection_id: str = Field(..., description="连接 ID")
    role: ParticipantRole = Field(..., description="角色：broadcaster / viewer")
    label: str = Field(..., description="显示名称")
    watching: bool = Field(..., description="是否已加入观看")
    joined_at: datetime = Field(..., description="连接时间（UTC）")


class ChatLogData(BaseModel):
    """一条持久化的聊天记录。"""

    session_id: str | None = Field(default=None, description="所属直播 ID")
    sender_id: str = Field(..., description="发送方连接 ID")
    sender_label: str = Field(..., description="发送方显示名称")
    text: str = Field(..., description="消息文本")
    created_at: datetime = Field(..., description="创建时间（UTC）")


class ChatHistoryData(BaseModel):
    """聊天回看分页数据。"""

    messages: list[ChatLogData] = Field(..., description="消息列表")
    total: int = Field(..., description="记录总数")
