"""
tests.test_stream_ws
~~~~~~~~~~~~~~~~~~~~

``/ws/stream`` 端点集成测试（FastAPI TestClient，关闭 MongoDB）。
"""
from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest
from conftest import make_token
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from live_relay.main import app


@pytest.fixture()
def client() -> Iterator[TestClient]:
    with TestClient(app) as c:
        yield c


def receive_until(ws, event_type: str, limit: int = 10) -> dict[str, Any]:
    """读取帧直到出现指定类型。"""
    for _ in range(limit):
        event = ws.receive_json()
        if event["type"] == event_type:
            return event
    raise AssertionError(f"no {event_type} within {limit} frames")


class TestStreamWebSocket:
    """握手、初始推送与事件往返。"""

    def test_initial_frames(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/stream") as ws:
            connected = ws.receive_json()
            status = ws.receive_json()
            count = ws.receive_json()

        assert connected["type"] == "connected"
        assert connected["data"]["role"] == "viewer"
        assert status["type"] == "stream-status"
        assert status["data"]["isLive"] is False
        assert count == {"type": "viewer-count-updated", "data": {"viewerCount": 1}}

    def test_invalid_token_closes_4001(self, client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/stream?token=garbage") as ws:
                ws.receive_json()

        assert exc_info.value.code == 4001

    def test_invalid_json_frame_gets_error(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/stream") as ws:
            receive_until(ws, "viewer-count-updated")

            ws.send_text("{not json")
            error = receive_until(ws, "error")

            assert error["data"]["code"] == "invalid_payload"

            ws.send_json({"type": "ping"})
            assert receive_until(ws, "pong")["data"]["timestamp"] > 0

    def test_binary_frame_gets_error_and_connection_survives(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/stream") as ws:
            receive_until(ws, "viewer-count-updated")

            ws.send_bytes(b"\x00\x01")
            error = receive_until(ws, "error")
            assert error["data"]["code"] == "invalid_payload"

            ws.send_json({"type": "get-viewer-count"})
            assert receive_until(ws, "viewer-count")["data"] == {"viewerCount": 1}

    def test_bad_frames_refresh_heartbeat(self, client: TestClient) -> None:
        service = client.app.state.live_stream
        with client.websocket_connect("/ws/stream") as ws:
            connection_id = receive_until(ws, "connected")["data"]["connectionId"]
            participant = service.registry.get(connection_id)
            participant.last_seen = 0.0

            ws.send_text("{not json")
            receive_until(ws, "error")
            assert participant.last_seen > 0.0

            participant.last_seen = 0.0
            ws.send_bytes(b"\x00")
            receive_until(ws, "error")
            assert participant.last_seen > 0.0

    def test_broadcast_offer_flow(self, client: TestClient) -> None:
        with client.websocket_connect(f"/ws/stream?token={make_token()}") as admin:
            assert receive_until(admin, "connected")["data"]["role"] == "broadcaster"
            receive_until(admin, "viewer-count-updated")

            with client.websocket_connect("/ws/stream") as viewer:
                viewer_id = receive_until(viewer, "connected")["data"]["connectionId"]
                receive_until(viewer, "viewer-count-updated")
                assert receive_until(admin, "viewer-count-updated")["data"]["viewerCount"] == 1

                admin.send_json({"type": "start-stream"})
                started = receive_until(viewer, "stream-started")
                broadcaster_id = started["data"]["broadcasterId"]

                admin.send_json({"type": "offer", "data": {"targetId": viewer_id, "sdp": "v=0"}})
                offer = receive_until(viewer, "offer")
                assert offer["data"] == {"senderId": broadcaster_id, "sdp": "v=0"}

                viewer.send_json({"type": "answer", "data": {"targetId": "admin", "sdp": "v=1"}})
                answer = receive_until(admin, "answer")
                assert answer["data"] == {"senderId": viewer_id, "sdp": "v=1"}

            assert receive_until(admin, "viewer-count-updated")["data"]["viewerCount"] == 0


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["is_live"] is False
