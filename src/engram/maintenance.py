"""
Periodic background jobs.

:func:`startup` runs a coroutine function every ``interval`` seconds until
the returned task is passed to :func:`shutdown`. The vector-sync scheduler
in :mod:`engram.memory.scheduler` is built on these.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


async def startup(
    task_fn: Callable[[], Awaitable[None]],
    interval: float,
    *,
    name: str = "maintenance",
    run_immediately: bool = False,
) -> asyncio.Task:
    """
    Schedule ``task_fn`` to run every ``interval`` seconds.

    :param name: Used for the asyncio task name and in log lines.
    :param run_immediately: Start the first cycle without waiting.
    :returns: The looping task; a failing cycle is logged and the loop goes on.
    """

    async def _periodic() -> None:
        if not run_immediately:
            await asyncio.sleep(interval)
        cycles = 0
        while True:
            cycles += 1
            try:
                await task_fn()
            except Exception as exc:
                logger.error("%s cycle %d failed: %s", name, cycles, exc)
            await asyncio.sleep(interval)

    logger.debug("Scheduling %s every %ss", name, interval)
    return asyncio.create_task(_periodic(), name=name)


async def shutdown(task: asyncio.Task | None) -> None:
    """Cancel a task from :func:`startup` and wait for it; ``None`` is ignored."""
    if not task:
        return

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
