"""
Background vector indexing
==========================

Observations are written to SQLite synchronously; embedding them can take
far longer, so :class:`IndexWorker` takes them off the request path. Callers
``submit`` and move on. Failures are logged here and never reach them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .models import Observation

logger = logging.getLogger(__name__)


class IndexWorker:
    """Queue of observations drained by ``concurrency`` indexing tasks."""

    def __init__(self, service, concurrency: int = 1):
        self.service = service
        self.concurrency = max(1, int(concurrency))
        self._queue: asyncio.Queue[Optional[Observation]] = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self.indexed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        """Spawn the worker tasks (idempotent)."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._run(i), name=f"engram-index-{i}")
            for i in range(self.concurrency)
        ]
        logger.info("Index worker started (concurrency=%d)", self.concurrency)

    def submit(self, obs: Observation) -> None:
        """Queue ``obs`` for indexing; returns immediately."""
        self._queue.put_nowait(obs)

    async def join(self) -> None:
        """Wait until everything submitted so far has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the worker tasks. Queued items not yet picked up are dropped."""
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info(
                "Index worker stopped (indexed=%d failed=%d pending=%d)",
                self.indexed, self.failed, self._queue.qsize(),
            )

    async def _run(self, worker_id: int) -> None:
        while True:
            obs = await self._queue.get()
            try:
                ok = await self.service.index(obs)
            except Exception as e:
                ok = False
                logger.error("Index worker %d: observation %s raised: %s", worker_id, obs.id, e)
            finally:
                self._queue.task_done()

            if ok:
                self.indexed += 1
            else:
                self.failed += 1
                logger.warning("Index worker %d: observation %s not vector-indexed", worker_id, obs.id)


__all__ = ["IndexWorker"]
