"""
tests.test_chat_relay
~~~~~~~~~~~~~~~~~~~~~

ChatRelay 聊天广播与连麦仲裁单元测试。
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import drain, types_of

from live_relay.core.errors import NoActiveStream, TargetNotFound, UnauthorizedRoleAction
from live_relay.services.chat_relay import ChatRelay
from live_relay.services.connection_hub import ConnectionHub
from live_relay.services.session_registry import SessionRegistry


def build(auto_approve: bool = False, repo=None, live: bool = True):
    registry = SessionRegistry()
    hub = ConnectionHub()
    boxes = {}
    for cid, label in (("a", "Teacher"), ("b", "Bob"), ("c", "Carol")):
        registry.admit(cid, label=label)
        boxes[cid] = hub.register(cid)
    registry.promote_to_broadcaster("a")
    if live:
        registry.start("a")
    return ChatRelay(registry, hub, repo=repo, auto_approve=auto_approve), registry, boxes


class TestChat:
    """聊天广播。"""

    def test_chat_reaches_everyone_but_sender_once(self) -> None:
        relay, _, boxes = build()

        delivered = relay.chat("b", "Bob", "hello")

        assert delivered == 2
        assert drain(boxes["b"]) == []
        for cid in ("a", "c"):
            (event,) = drain(boxes[cid])
            assert event["type"] == "chat-message"
            assert event["data"]["senderId"] == "b"
            assert event["data"]["senderLabel"] == "Bob"
            assert event["data"]["text"] == "hello"

    def test_chat_works_while_idle(self) -> None:
        relay, _, boxes = build(live=False)

        assert relay.chat("c", "Carol", "anyone here?") == 2

    @pytest.mark.asyncio
    async def test_chat_persists_in_background(self) -> None:
        repo = MagicMock()
        repo.save_chat = AsyncMock()
        relay, registry, _ = build(repo=repo)

        relay.chat("b", "Bob", "saved")
        await relay.drain()

        repo.save_chat.assert_awaited_once_with(registry.session.session_id, "b", "Bob", "saved")

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_break_relay(self) -> None:
        repo = MagicMock()
        repo.save_chat = AsyncMock(side_effect=RuntimeError("mongo down"))
        relay, _, boxes = build(repo=repo)

        assert relay.chat("b", "Bob", "still delivered") == 2
        await relay.drain()
        assert len(drain(boxes["c"])) == 1


class TestMicFloor:
    """连麦申请需要主播明确批准。"""

    def test_request_is_forwarded_not_auto_approved(self) -> None:
        relay, _, boxes = build()

        relay.request_mic("b")

        assert drain(boxes["a"]) == [
            {"type": "mic-request", "data": {"requesterId": "b", "senderLabel": "Bob"}},
        ]
        assert types_of(drain(boxes["b"])) == ["mic-request-pending"]
        assert "b" in relay.pending

    def test_duplicate_request_does_not_renotify(self) -> None:
        relay, _, boxes = build()
        relay.request_mic("b")
        drain(boxes["a"])

        relay.request_mic("b")

        assert drain(boxes["a"]) == []
        assert types_of(drain(boxes["b"])) == ["mic-request-pending", "mic-request-pending"]

    def test_approve(self) -> None:
        relay, _, boxes = build()
        relay.request_mic("b")
        drain(boxes["b"])

        relay.decide_mic("a", "b", approved=True)

        assert types_of(drain(boxes["b"])) == ["mic-approved"]
        assert relay.holders == {"b"}
        assert relay.pending == {}

    def test_reject(self) -> None:
        relay, _, boxes = build()
        relay.request_mic("b")
        drain(boxes["b"])

        relay.decide_mic("a", "b", approved=False)

        assert types_of(drain(boxes["b"])) == ["mic-rejected"]
        assert relay.holders == set()

    def test_only_broadcaster_decides(self) -> None:
        relay, _, _ = build()
        relay.request_mic("b")

        with pytest.raises(UnauthorizedRoleAction):
            relay.decide_mic("c", "b", approved=True)

    def test_decide_without_pending_request(self) -> None:
        relay, _, _ = build()

        with pytest.raises(TargetNotFound):
            relay.decide_mic("a", "c", approved=True)

    def test_request_requires_live_stream(self) -> None:
        relay, _, _ = build(live=False)

        with pytest.raises(NoActiveStream):
            relay.request_mic("b")

    def test_broadcaster_cannot_request(self) -> None:
        relay, _, _ = build()

        with pytest.raises(UnauthorizedRoleAction):
            relay.request_mic("a")

    def test_auto_approve_flag_keeps_legacy_behaviour(self) -> None:
        relay, _, boxes = build(auto_approve=True)

        relay.request_mic("b")

        assert types_of(drain(boxes["b"])) == ["mic-approved"]
        assert drain(boxes["a"]) == []

    def test_mute(self) -> None:
        relay, _, boxes = build()
        relay.request_mic("b")
        relay.decide_mic("a", "b", approved=True)
        drain(boxes["b"])

        relay.mute_mic("a", "b")

        assert types_of(drain(boxes["b"])) == ["mic-muted"]
        assert relay.holders == set()

    def test_forget_cancels_pending(self) -> None:
        relay, _, boxes = build()
        relay.request_mic("b")
        drain(boxes["a"])

        relay.forget("b")

        assert drain(boxes["a"]) == [
            {"type": "mic-request-cancelled", "data": {"requesterId": "b"}},
        ]
        assert relay.pending == {}

    @pytest.mark.asyncio
    async def test_mic_events_persisted(self) -> None:
        repo = MagicMock()
        repo.save_mic_event = AsyncMock()
        relay, registry, _ = build(repo=repo)

        relay.request_mic("b")
        relay.decide_mic("a", "b", approved=False)
        await relay.drain()

        session_id = registry.session.session_id
        repo.save_mic_event.assert_any_await(session_id, "b", "requested")
        repo.save_mic_event.assert_any_await(session_id, "b", "rejected")
