"""
Heartbeat Monitor

Probes every connection once per interval and evicts the ones that did
not answer the previous probe.
"""

import asyncio
from typing import Awaitable, Callable

import structlog

from .connection import ConnectionRegistry
from .protocol import RelayMessage

logger = structlog.get_logger()

EVICTION_CLOSE_CODE = 1001
EVICTION_REASON = "Heartbeat timeout"


class HeartbeatMonitor:
    """
    Liveness checks for registered connections.

    Each cycle a connection is either ALIVE (answered since the last
    probe) or PENDING (did not). PENDING connections are evicted; ALIVE
    ones become PENDING and receive a fresh probe.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        interval_seconds: float = 30.0,
        on_evict: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        self.registry = registry
        self.interval_seconds = interval_seconds
        self._on_evict = on_evict or registry.unregister
        self._task: asyncio.Task | None = None
        self.evicted_total = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def record_heartbeat(self, connection_id: str) -> None:
        self.registry.mark_alive(connection_id)

    async def sweep(self) -> list[str]:
        """Run one probe cycle. Returns the evicted connection ids."""
        evicted: list[str] = []
        probes = []

        for connection_id in self.registry.connection_ids():
            connection = self.registry.get(connection_id)
            if connection is None:
                continue

            if not connection.is_alive:
                evicted.append(connection_id)
                continue

            self.registry.mark_pending(connection_id)
            probes.append(connection.send(RelayMessage.heartbeat(probe=True)))

        for connection_id in evicted:
            connection = self.registry.get(connection_id)
            logger.info("Evicting unresponsive connection", connection_id=connection_id)
            if connection is not None:
                await connection.close(EVICTION_CLOSE_CODE, EVICTION_REASON)
            await self._on_evict(connection_id)

        if probes:
            await asyncio.gather(*probes)

        self.evicted_total += len(evicted)
        return evicted

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Heartbeat monitor started", interval=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Heartbeat monitor stopped")

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                evicted = await self.sweep()
                if evicted:
                    logger.info("Evicted stale connections", count=len(evicted))
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Heartbeat sweep failed", error=str(e))
