"""Optional background loop that advances running tasks without client polls."""
from __future__ import annotations

import asyncio

from resonance.services.logger import log_event, logger


class ProgressionTicker:
    def __init__(self, orchestrator, interval_seconds: float, counters=None):
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.counters = counters
        self._task: asyncio.Task | None = None

    async def tick(self) -> int:
        """Advance every running task once, then do housekeeping.

        Housekeeping reconciles projections and purges expired rate-limit
        counters. Returns the number of tasks advanced without error.
        """
        advanced = 0
        for task in await self.orchestrator.store.list_running():
            try:
                await self.orchestrator.advance(task.id)
                advanced += 1
            except Exception:
                logger.exception(f"Ticker failed to advance task {task.id}")
        if self.orchestrator.projection is not None:
            await self.orchestrator.projection.reconcile()
        if self.counters is not None:
            await self.counters.purge_expired()
        return advanced

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Ticker pass failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None:
            log_event("ticker_started", f"Advancing running tasks every {self.interval_seconds:g}s")
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
