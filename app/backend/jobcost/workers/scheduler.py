"""Independent asyncio loops driving the rebuild workers."""

from __future__ import annotations

import asyncio
import logging

from jobcost.core.config import Settings, get_settings
from jobcost.workers.rebuild_worker import RebuildWorker, SessionFactory, default_worker_levels

logger = logging.getLogger(__name__)


class WorkerScheduler:
    """One loop per level; each runs a scan in a thread, then sleeps for its own interval."""

    def __init__(self, workers: list[RebuildWorker]) -> None:
        self.workers = workers
        self._tasks: list[asyncio.Task] = []

    @classmethod
    def from_settings(cls, session_factory: SessionFactory, settings: Settings | None = None) -> WorkerScheduler:
        settings = settings or get_settings()
        return cls([RebuildWorker(level, session_factory, settings) for level in default_worker_levels(settings)])

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._run_forever(worker), name=f"rebuild-{worker.level.name}")
            for worker in self.workers
        ]
        logger.info("Started %s rebuild worker loops", len(self._tasks))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Stopped rebuild worker loops")

    async def _run_forever(self, worker: RebuildWorker) -> None:
        while True:
            try:
                await asyncio.to_thread(worker.run_scan)
            except Exception:
                logger.exception("%s rebuild scan crashed", worker.level.name)
            await asyncio.sleep(worker.level.interval_seconds)
