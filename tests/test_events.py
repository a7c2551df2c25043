"""
tests.test_events
~~~~~~~~~~~~~~~~~

入站事件边界解析测试：别名归一、字段校验、未知类型。
"""
from __future__ import annotations

import pytest

from live_relay.core.errors import InvalidPayload
from live_relay.schemas import events
from live_relay.schemas.events import parse_event


class TestParseEvent:
    """parse_event 把原始 JSON 变成封闭的事件模型。"""

    @pytest.mark.parametrize("raw_type", ["start-stream", "admin-start-stream", "start", "admin-start"])
    def test_start_aliases(self, raw_type: str) -> None:
        assert isinstance(parse_event({"type": raw_type}), events.StartStream)

    @pytest.mark.parametrize("raw_type", ["stop-stream", "admin-stop-stream", "stop", "admin-end"])
    def test_stop_aliases(self, raw_type: str) -> None:
        assert isinstance(parse_event({"type": raw_type}), events.StopStream)

    def test_offer_with_legacy_field_names(self) -> None:
        event = parse_event({"type": "offer", "data": {"target": "abc", "offer": {"type": "offer", "sdp": "v=0"}}})

        assert isinstance(event, events.Offer)
        assert event.target_id == "abc"
        assert event.payload() == {"sdp": {"type": "offer", "sdp": "v=0"}}

    def test_client_sender_id_is_dropped(self) -> None:
        event = parse_event({"type": "answer", "data": {"targetId": "abc", "sdp": "v=0", "senderId": "spoofed"}})

        assert event.payload() == {"sdp": "v=0"}
        assert not hasattr(event, "senderId")

    def test_ice_candidate_alias_allows_null_candidate(self) -> None:
        event = parse_event({"type": "ice-candidate", "data": {"targetId": "abc", "candidate": None}})

        assert isinstance(event, events.Candidate)
        assert event.payload() == {"candidate": None}

    def test_candidate_field_is_required(self) -> None:
        with pytest.raises(InvalidPayload):
            parse_event({"type": "candidate", "data": {"targetId": "abc"}})

    def test_offer_without_target_is_invalid(self) -> None:
        with pytest.raises(InvalidPayload) as exc_info:
            parse_event({"type": "offer", "data": {"sdp": "v=0"}})

        assert exc_info.value.details["event"] == "offer"
        assert exc_info.value.details["errors"]

    def test_empty_sdp_is_invalid(self) -> None:
        with pytest.raises(InvalidPayload):
            parse_event({"type": "offer", "data": {"targetId": "abc", "sdp": ""}})

    def test_chat_message_alias_field(self) -> None:
        event = parse_event({"type": "admin-chat", "data": {"message": "hi"}})

        assert isinstance(event, events.ChatMessage)
        assert event.text == "hi"
        assert event.sender_label is None

    def test_empty_chat_is_invalid(self) -> None:
        with pytest.raises(InvalidPayload):
            parse_event({"type": "chat-message", "data": {"text": ""}})

    def test_approve_mic_alias_forces_decision(self) -> None:
        event = parse_event({"type": "approve-mic", "data": {"targetSocketId": "v1"}})

        assert isinstance(event, events.MicDecision)
        assert event.requester_id == "v1"
        assert event.approved is True

        rejected = parse_event({"type": "reject-mic", "data": {"targetSocketId": "v1", "approved": True}})
        assert rejected.approved is False

    def test_unknown_type(self) -> None:
        with pytest.raises(InvalidPayload, match="unknown event type"):
            parse_event({"type": "format-disk"})

    @pytest.mark.parametrize("raw", [[], "offer", {"data": {}}, {"type": ""}, {"type": "ping", "data": "x"}])
    def test_malformed_frames(self, raw) -> None:
        with pytest.raises(InvalidPayload):
            parse_event(raw)

    def test_error_event_shape(self) -> None:
        with pytest.raises(InvalidPayload) as exc_info:
            parse_event({"type": "nope"})

        event = exc_info.value.to_event("nope")
        assert event["type"] == "error"
        assert event["data"]["code"] == "invalid_payload"
        assert event["data"]["event"] == "nope"

    def test_signal_payload_carries_only_forwarded_field(self) -> None:
        offer = parse_event({"type": "offer", "data": {"targetId": "abc", "sdp": "v=0"}})
        answer = parse_event({"type": "answer", "data": {"targetId": "abc", "answer": "v=1"}})
        candidate = parse_event({"type": "candidate", "data": {"targetId": "abc", "candidate": "c0"}})

        assert offer.payload() == {"sdp": "v=0"}
        assert answer.payload() == {"sdp": "v=1"}
        assert candidate.payload() == {"candidate": "c0"}

    def test_recording_events(self) -> None:
        start = parse_event({"type": "start-recording", "data": {"lectureId": "lec-1"}})
        stop = parse_event({"type": "stop-recording"})

        assert isinstance(start, events.StartRecording)
        assert start.lecture_id == "lec-1"
        assert isinstance(stop, events.StopRecording)
        assert parse_event({"type": "start-recording"}).lecture_id is None

    def test_empty_lecture_id_is_invalid(self) -> None:
        with pytest.raises(InvalidPayload):
            parse_event({"type": "start-recording", "data": {"lectureId": ""}})
