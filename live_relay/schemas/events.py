"""
live_relay.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 事件协议。

所有帧都是 ``{"type": "...", "data": {...}}`` 结构的 JSON 对象。
入站事件先做别名归一（兼容旧前端的 ``admin-start``、``ice-candidate`` 等），
再由一个带判别字段的 Pydantic 联合类型一次性校验，中继层拿到的永远是
形状确定的模型，不需要再到处做防御式检查。

客户端自带的 ``senderId`` 之类字段会被直接丢弃，发送方身份只由服务端附加。
"""
from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal, Union, get_args

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from live_relay.core.errors import InvalidPayload

SignalKind = Literal["offer", "answer", "candidate"]


class _Event(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


# ── 直播控制 ──────────────────────────────────────────────────────────

class StartStream(_Event):
    type: Literal["start-stream"]


class StopStream(_Event):
    type: Literal["stop-stream"]


class Watch(_Event):
    type: Literal["watcher"]


class LeaveStream(_Event):
    type: Literal["leave-stream"]


# ── WebRTC 信令 ───────────────────────────────────────────────────────

_TARGET = AliasChoices("targetId", "target", "target_id")


class _Signal(_Event):
    """信令事件基类，``payload_field`` 指明哪个字段原样转发给目标。"""

    payload_field: ClassVar[str]

    target_id: str = Field(..., min_length=1, validation_alias=_TARGET)

    def payload(self) -> dict[str, Any]:
        """转发给目标的不透明负载。"""
        return {self.payload_field: getattr(self, self.payload_field)}


def _non_empty_sdp(v: dict[str, Any] | str) -> dict[str, Any] | str:
    if not v:
        raise ValueError("sdp must not be empty")
    return v


Sdp = Annotated[Union[dict[str, Any], str], AfterValidator(_non_empty_sdp)]


class Offer(_Signal):
    payload_field: ClassVar[str] = "sdp"

    type: Literal["offer"]
    sdp: Sdp = Field(..., validation_alias=AliasChoices("sdp", "offer"))


class Answer(_Signal):
    payload_field: ClassVar[str] = "sdp"

    type: Literal["answer"]
    sdp: Sdp = Field(..., validation_alias=AliasChoices("sdp", "answer"))


class Candidate(_Signal):
    payload_field: ClassVar[str] = "candidate"

    type: Literal["candidate"]
    # null 表示 end-of-candidates，同样原样转发
    candidate: dict[str, Any] | str | None = Field(...)


SIGNAL_TYPES: frozenset[str] = frozenset(get_args(SignalKind))


# ── 录制 ──────────────────────────────────────────────────────────────

class StartRecording(_Event):
    type: Literal["start-recording"]
    lecture_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=128,
        validation_alias=AliasChoices("lectureId", "lecture_id"),
    )


class StopRecording(_Event):
    type: Literal["stop-recording"]


# ── 聊天 / 连麦 ───────────────────────────────────────────────────────

class ChatMessage(_Event):
    type: Literal["chat-message"]
    sender_label: str | None = Field(
        default=None,
        max_length=64,
        validation_alias=AliasChoices("senderLabel", "sender", "sender_label"),
    )
    text: str = Field(..., min_length=1, validation_alias=AliasChoices("text", "message"))


class MicRequest(_Event):
    type: Literal["mic-request"]


class MicDecision(_Event):
    type: Literal["mic-decision"]
    requester_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("requesterId", "targetSocketId", "targetId", "requester_id"),
    )
    approved: bool


class MicMute(_Event):
    type: Literal["mic-mute"]
    target_id: str = Field(..., min_length=1, validation_alias=AliasChoices("targetId", "targetSocketId", "target_id"))


# ── 查询 / 心跳 ───────────────────────────────────────────────────────

class GetStreamStatus(_Event):
    type: Literal["get-stream-status"]


class GetViewerCount(_Event):
    type: Literal["get-viewer-count"]


class Ping(_Event):
    type: Literal["ping"]


InboundEvent = Annotated[
    Union[
        StartStream, StopStream, Watch, LeaveStream,
        Offer, Answer, Candidate,
        ChatMessage, MicRequest, MicDecision, MicMute,
        StartRecording, StopRecording,
        GetStreamStatus, GetViewerCount, Ping,
    ],
    Field(discriminator="type"),
]

_ADAPTER: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)

EVENT_TYPES: frozenset[str] = frozenset({
    "start-stream", "stop-stream", "watcher", "leave-stream",
    "offer", "answer", "candidate",
    "chat-message", "mic-request", "mic-decision", "mic-mute",
    "start-recording", "stop-recording",
    "get-stream-status", "get-viewer-count", "ping",
})

# 旧前端事件名 → (规范事件名, 强制写入的字段)
_ALIASES: dict[str, tuple[str, dict[str, Any]]] = {
    "admin-start-stream": ("start-stream", {}),
    "admin-start": ("start-stream", {}),
    "start": ("start-stream", {}),
    "admin-stop-stream": ("stop-stream", {}),
    "admin-end": ("stop-stream", {}),
    "stop": ("stop-stream", {}),
    "viewer-join": ("watcher", {}),
    "join-stream": ("watcher", {}),
    "ice-candidate": ("candidate", {}),
    "iceCandidate": ("candidate", {}),
    "admin-chat": ("chat-message", {}),
    "unmute-request": ("mic-request", {}),
    "mic-request-response": ("mic-decision", {}),
    "approve-mic": ("mic-decision", {"approved": True}),
    "reject-mic": ("mic-decision", {"approved": False}),
    "mute-user-mic": ("mic-mute", {}),
}


def normalize_type(raw_type: str) -> str:
    """把别名映射到规范事件名；未知名称原样返回。"""
    return _ALIASES.get(raw_type, (raw_type, {}))[0]


def parse_event(raw: Any) -> InboundEvent:
    """在边界处把一帧 JSON 解析为封闭的入站事件类型。

    Args:
        raw: ``websocket.receive_json()`` 得到的对象。

    Returns:
        对应的事件模型实例。

    Raises:
        InvalidPayload: 不是对象、类型未知或字段校验失败。
    """
    if not isinstance(raw, dict):
        raise InvalidPayload("event must be a JSON object")
    raw_type = raw.get("type")
    if not isinstance(raw_type, str) or not raw_type:
        raise InvalidPayload("event type is missing")

    data = raw.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidPayload("event data must be a JSON object", event=raw_type)

    canonical, forced = _ALIASES.get(raw_type, (raw_type, {}))
    if canonical not in EVENT_TYPES:
        raise InvalidPayload(f"unknown event type: {raw_type}", event=raw_type)

    try:
        return _ADAPTER.validate_python({**data, **forced, "type": canonical})
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise InvalidPayload(
            f"malformed {canonical} payload", event=canonical, errors=errors,
        ) from e


def outbound(event_type: str, **data: Any) -> dict[str, Any]:
    """构造一条下行事件。"""
    return {"type": event_type, "data": data}
