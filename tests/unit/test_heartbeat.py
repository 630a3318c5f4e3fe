"""
Unit Tests for the Heartbeat Monitor

Tests probe cycles, eviction and the background loop lifecycle.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from parley.realtime.heartbeat import HeartbeatMonitor


@pytest.fixture
def monitor(registry, router):
    return HeartbeatMonitor(registry, interval_seconds=30.0)


class TestSweep:
    """Test HeartbeatMonitor.sweep."""

    @pytest.mark.asyncio
    async def test_first_cycle_sends_liveness_checks(self, registry, monitor, mock_websocket, sent):
        connection_id = await registry.register(mock_websocket)

        evicted = await monitor.sweep()

        assert evicted == []
        assert registry.get(connection_id).is_alive is False
        probes = sent(mock_websocket, "heartbeat")
        assert len(probes) == 1
        assert probes[0]["payload"]["probe"] is True

    @pytest.mark.asyncio
    async def test_answered_check_keeps_connection(self, registry, monitor, mock_websocket):
        connection_id = await registry.register(mock_websocket)

        await monitor.sweep()
        monitor.record_heartbeat(connection_id)
        evicted = await monitor.sweep()

        assert evicted == []
        assert registry.get(connection_id) is not None

    @pytest.mark.asyncio
    async def test_two_missed_cycles_evicts(
        self, registry, router, monitor, websocket_factory
    ):
        ws = websocket_factory()
        connection_id = await registry.register(ws)
        await router.join("s1", connection_id)

        assert await monitor.sweep() == []
        evicted = await monitor.sweep()

        assert evicted == [connection_id]
        assert registry.get(connection_id) is None
        assert connection_id not in router.members_of("s1")
        assert "s1" not in router
        ws.close.assert_awaited_once_with(code=1001, reason="Heartbeat timeout")
        assert monitor.evicted_total == 1

    @pytest.mark.asyncio
    async def test_only_silent_connections_evicted(self, registry, monitor, websocket_factory):
        quiet = await registry.register(websocket_factory())
        chatty = await registry.register(websocket_factory())

        await monitor.sweep()
        monitor.record_heartbeat(chatty)
        evicted = await monitor.sweep()

        assert evicted == [quiet]
        assert registry.get(chatty) is not None

    @pytest.mark.asyncio
    async def test_custom_evict_callback(self, registry, mock_websocket):
        on_evict = AsyncMock()
        monitor = HeartbeatMonitor(registry, interval_seconds=30.0, on_evict=on_evict)
        connection_id = await registry.register(mock_websocket)

        await monitor.sweep()
        await monitor.sweep()

        on_evict.assert_awaited_once_with(connection_id)

    @pytest.mark.asyncio
    async def test_empty_registry(self, monitor):
        assert await monitor.sweep() == []


class TestMonitorLifecycle:
    """Test start/stop of the background loop."""

    @pytest.mark.asyncio
    async def test_start_stop(self, registry):
        monitor = HeartbeatMonitor(registry, interval_seconds=0.01)

        monitor.start()
        assert monitor.running is True
        await asyncio.sleep(0.05)
        await monitor.stop()

        assert monitor.running is False

    @pytest.mark.asyncio
    async def test_loop_checks_connections(self, registry, mock_websocket, sent):
        monitor = HeartbeatMonitor(registry, interval_seconds=0.01)
        await registry.register(mock_websocket)

        monitor.start()
        await asyncio.sleep(0.1)
        await monitor.stop()

        assert sent(mock_websocket, "heartbeat")

    @pytest.mark.asyncio
    async def test_stop_without_start(self, monitor):
        await monitor.stop()

        assert monitor.running is False
