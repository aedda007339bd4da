"""
Tests for per-connection helpers and log sanitizing.
"""

import asyncio
import time

import pytest

from realtime_gateway.components.connection.heartbeat import HeartbeatTracker
from realtime_gateway.components.connection.locks import OrderLockManager
from realtime_gateway.components.connection.rate_limiter import WebSocketRateLimiter
from realtime_gateway.components.core.context import sanitize_log_data


class TestHeartbeatTracker:
    def test_fresh_connection_is_not_stale(self):
        tracker = HeartbeatTracker(timeout_seconds=60)
        tracker.record("c-1")

        assert not tracker.is_stale("c-1")
        assert tracker.get_stale_connections() == []

    def test_silent_connection_is_stale(self):
        tracker = HeartbeatTracker(timeout_seconds=60)
        tracker.record("c-1", timestamp=time.time() - 120)
        tracker.record("c-2")

        assert tracker.get_stale_connections() == ["c-1"]

    def test_unknown_connection_is_stale(self):
        assert HeartbeatTracker().is_stale("ghost")

    def test_remove(self):
        tracker = HeartbeatTracker()
        tracker.record("c-1")
        tracker.remove("c-1")

        assert tracker.tracked_count == 0
        assert tracker.get_stats()["oldest_heartbeat_age"] == 0


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_rejects_past_limit(self):
        limiter = WebSocketRateLimiter(max_messages=3, window_seconds=60)

        results = [await limiter.is_allowed("c-1") for _ in range(4)]

        assert results == [True, True, True, False]
        assert limiter.get_stats()["total_rejected"] == 1

    @pytest.mark.asyncio
    async def test_connections_are_independent(self):
        limiter = WebSocketRateLimiter(max_messages=1, window_seconds=60)

        assert await limiter.is_allowed("c-1")
        assert await limiter.is_allowed("c-2")
        assert not await limiter.is_allowed("c-1")

    @pytest.mark.asyncio
    async def test_window_expires(self):
        limiter = WebSocketRateLimiter(max_messages=1, window_seconds=0.05)

        assert await limiter.is_allowed("c-1")
        await asyncio.sleep(0.1)
        assert await limiter.is_allowed("c-1")

    @pytest.mark.asyncio
    async def test_eviction_at_capacity(self):
        limiter = WebSocketRateLimiter(max_messages=5, window_seconds=60, max_tracked=10)

        for i in range(11):
            await limiter.is_allowed(f"c-{i}")

        assert limiter.tracked_count <= 10
        assert limiter.get_stats()["evictions"] >= 1

    @pytest.mark.asyncio
    async def test_remove_connection(self):
        limiter = WebSocketRateLimiter(max_messages=1, window_seconds=60)
        await limiter.is_allowed("c-1")
        await limiter.remove_connection("c-1")

        assert await limiter.is_allowed("c-1")


class TestOrderLocks:
    @pytest.mark.asyncio
    async def test_same_order_same_lock(self):
        locks = OrderLockManager()
        assert await locks.get_order_lock(42) is await locks.get_order_lock(42)
        assert await locks.get_order_lock(42) is not await locks.get_order_lock(43)

    @pytest.mark.asyncio
    async def test_release_skips_held_lock(self):
        locks = OrderLockManager()
        lock = await locks.get_order_lock(42)

        async with lock:
            assert await locks.release(42) is False
        assert await locks.release(42) is True
        assert locks.lock_count == 0

    @pytest.mark.asyncio
    async def test_sweep_at_capacity(self):
        locks = OrderLockManager(max_cached_locks=3)
        for order_id in range(4):
            await locks.get_order_lock(order_id)

        assert locks.lock_count == 1
        assert locks.locks_cleaned_total == 3

    @pytest.mark.asyncio
    async def test_serializes_same_order(self):
        locks = OrderLockManager()
        order = []

        async def worker(tag: str, delay: float) -> None:
            async with await locks.get_order_lock(42):
                order.append(f"{tag}-start")
                await asyncio.sleep(delay)
                order.append(f"{tag}-end")

        await asyncio.gather(worker("a", 0.05), worker("b", 0))

        assert order == ["a-start", "a-end", "b-start", "b-end"]


class TestSanitizeLogData:
    def test_escapes_line_breaks(self):
        assert sanitize_log_data("a\nb\tc") == "a\\nb\\tc"

    def test_drops_control_and_direction_characters(self):
        assert sanitize_log_data("ok\x00\x1b[31m\u202eevil") == "ok[31mevil"

    def test_truncates(self):
        assert sanitize_log_data("x" * 150, max_length=10) == "x" * 10 + "..."
