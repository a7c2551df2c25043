"""
tests.test_rate_limit
~~~~~~~~~~~~~~~~~~~~~

EventRateLimiter 固定窗口限流测试（注入假时钟，不依赖真实时间）。
"""
from __future__ import annotations

from live_relay.core.rate_limit import EventRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestEventRateLimiter:
    """按连接、按事件类型计数。"""

    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.limiter = EventRateLimiter(
            limits={"chat-message": 2},
            default_limit=3,
            window_seconds=60.0,
            clock=self.clock,
        )

    def test_blocks_after_limit(self) -> None:
        results = [self.limiter.is_allowed("c1", "chat-message") for _ in range(3)]

        assert results == [True, True, False]

    def test_default_limit_for_unlisted_types(self) -> None:
        results = [self.limiter.is_allowed("c1", "ping") for _ in range(4)]

        assert results == [True, True, True, False]

    def test_types_are_counted_separately(self) -> None:
        self.limiter.is_allowed("c1", "chat-message")
        self.limiter.is_allowed("c1", "chat-message")

        assert self.limiter.is_allowed("c1", "ping") is True

    def test_clients_are_counted_separately(self) -> None:
        self.limiter.is_allowed("c1", "chat-message")
        self.limiter.is_allowed("c1", "chat-message")

        assert self.limiter.is_allowed("c2", "chat-message") is True

    def test_window_expiry_resets_counts(self) -> None:
        self.limiter.is_allowed("c1", "chat-message")
        self.limiter.is_allowed("c1", "chat-message")
        assert self.limiter.is_allowed("c1", "chat-message") is False

        self.clock.now = 60.0

        assert self.limiter.is_allowed("c1", "chat-message") is True

    def test_remove_client(self) -> None:
        self.limiter.is_allowed("c1", "chat-message")
        self.limiter.is_allowed("c1", "chat-message")

        self.limiter.remove_client("c1")
        self.limiter.remove_client("c1")

        assert self.limiter.is_allowed("c1", "chat-message") is True
