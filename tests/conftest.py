"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 关闭 MongoDB、固定 JWT 密钥，
并提供“把一个连接接入中继并拿到它的出站队列”的辅助函数，
使单元测试无需真实 WebSocket 即可观察每个参与者收到的事件。
"""
from __future__ import annotations

import asyncio
import os
from typing import Any

import jwt
import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("MONGO_ENABLED", "false")

from live_relay.core.security import ANONYMOUS, Identity  # noqa: E402
from live_relay.services.connection_hub import ConnectionHub  # noqa: E402
from live_relay.services.live_stream import LiveStreamService  # noqa: E402

ADMIN = Identity(user_id="admin-1", name="Teacher", role="admin")
STUDENT = Identity(user_id="user-1", name="Student", role="user")


def make_token(user_id: str = "admin-1", role: str = "admin", name: str = "Teacher") -> str:
    """用测试密钥签发一个 JWT。"""
    return jwt.encode({"id": user_id, "role": role, "name": name}, "test-secret", algorithm="HS256")


def drain(outbox: asyncio.Queue) -> list[dict[str, Any]]:
    """取出队列中当前所有事件。"""
    events: list[dict[str, Any]] = []
    while not outbox.empty():
        events.append(outbox.get_nowait())
    return events


def types_of(events: list[dict[str, Any]]) -> list[str]:
    return [e["type"] for e in events]


def of_type(events: list[dict[str, Any]], event_type: str) -> list[dict[str, Any]]:
    return [e for e in events if e["type"] == event_type]


def join(service: LiveStreamService, connection_id: str, identity: Identity = ANONYMOUS) -> asyncio.Queue:
    """注册出站队列并接入中继，与 WebSocket 端点的顺序一致。"""
    outbox = service.hub.register(connection_id)
    service.connect(connection_id, identity)
    return outbox


@pytest.fixture()
def service() -> LiveStreamService:
    """默认 reject 策略、关闭连麦自动批准的中继服务。"""
    return LiveStreamService(ConnectionHub(max_size=64))
