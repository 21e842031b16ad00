"""Scheduler — discovery and scan loops with a chained trigger."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from npmsentinel.engines.discovery.coordinator import DiscoveryCoordinator
from npmsentinel.engines.scanner.coordinator import ScanCoordinator

logger = structlog.get_logger("npmsentinel.scheduler")


class EngineLoop:
    """Single engine scheduling loop with trigger/timeout wake mechanism."""

    def __init__(
        self,
        name: str,
        run_fn: Callable[[], Awaitable[int]],
        interval: float,
        downstream: asyncio.Event | None = None,
    ) -> None:
        self.name = name
        self.run_fn = run_fn
        self.interval = interval
        self.trigger = asyncio.Event()
        self.downstream = downstream

    async def run_once(self) -> int:
        """One cycle; exceptions are logged and count as zero processed."""
        try:
            processed = await self.run_fn()
        except Exception:
            logger.exception("engine.error", engine=self.name)
            return 0
        logger.info("engine.cycle", engine=self.name, processed=processed)
        if processed > 0 and self.downstream is not None:
            self.downstream.set()
        return processed

    async def loop(self) -> None:
        """Run the engine forever, waking on trigger or after ``interval``."""
        while True:
            try:
                await asyncio.wait_for(self.trigger.wait(), timeout=self.interval)
                self.trigger.clear()
            except asyncio.TimeoutError:
                pass
            await self.run_once()


class Scheduler:
    """Manages lifecycle of all EngineLoop tasks."""

    def __init__(self, loops: list[EngineLoop]) -> None:
        self._loops = loops
        self._tasks: list[asyncio.Task[None]] = []

    async def start(self) -> None:
        self._tasks = [
            asyncio.create_task(loop.loop(), name=f"engine-{loop.name}") for loop in self._loops
        ]
        # Kick off the first engine immediately
        if self._loops:
            self._loops[0].trigger.set()
        logger.info("scheduler.started", engines=[loop.name for loop in self._loops])

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("scheduler.stopped")

    async def run_forever(self) -> None:
        """Start every loop and block until cancelled."""
        await self.start()
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()


def create_scheduler(
    discovery: DiscoveryCoordinator,
    scanner: ScanCoordinator,
    *,
    discover_interval: float = 300.0,
    scan_interval: float = 1800.0,
) -> Scheduler:
    """Discovery runs first; finding anything wakes the scan loop early."""
    trigger_scan = asyncio.Event()

    async def _discover() -> int:
        result = await discovery.run()
        return len(result.discovered)

    async def _scan() -> int:
        batch = await scanner.scan_pending()
        return len(batch.scanned)

    scan_loop = EngineLoop("scanner", _scan, scan_interval)
    scan_loop.trigger = trigger_scan

    discover_loop = EngineLoop("discovery", _discover, discover_interval, downstream=trigger_scan)

    return Scheduler([discover_loop, scan_loop])
