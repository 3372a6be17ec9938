"""
Vector index maintenance
========================

The vector collection can drift from the observations table: background
indexing may have failed, or observations may have been deleted. One
:func:`sync_once` cycle re-indexes observations whose ``obs_<id>`` record is
missing and deletes records whose observation no longer exists.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict

from engram.maintenance import shutdown as _shutdown, startup as _startup
from .hybrid import RECORD_PREFIX, HybridSearchService
from .sql.repositories import ObservationsRepo

logger = logging.getLogger(__name__)

def _parse_record_id(rid: str) -> int | None:
    if not rid.startswith(RECORD_PREFIX):
        return None
    try:
        return int(rid[len(RECORD_PREFIX):])
    except ValueError:
        return None


async def sync_once(service: HybridSearchService, repo: ObservationsRepo, vector_store=None) -> Dict[str, int]:
    """
    Reconcile the project's vector collection with the observations table.

    :param vector_store: Store to list ids from; must provide ``ids(collection)``.
        Defaults to ``service.vector_store``.
    :returns: ``{"indexed": n, "deleted": m}``.
    """
    store = vector_store or service.vector_store
    if not service.vector_configured or store is None:
        logger.info("Vector search not configured; skipping sync")
        return {"indexed": 0, "deleted": 0}

    await service.initialize()

    known_ids = set(await repo.all_ids(project=service.project))
    stored = await store.ids(service.collection)

    present: set[int] = set()
    orphans: list[int] = []
    for rid in stored:
        oid = _parse_record_id(rid)
        if oid is None:
            continue
        if oid in known_ids:
            present.add(oid)
        else:
            orphans.append(oid)

    missing = sorted(known_ids - present)
    indexed = 0
    if missing:
        logger.info("Backfilling %d observations into %s", len(missing), service.collection)
        observations = await repo.get_many(missing)
        indexed = await service.index_batch(sorted(observations, key=lambda o: o.id))

    deleted = 0
    if orphans:
        logger.info("Deleting %d orphaned vectors from %s", len(orphans), service.collection)
        if await service.delete(orphans):
            deleted = len(orphans)

    logger.debug("Sync done: %s existing, %d indexed, %d deleted", len(present), indexed, deleted)
    return {"indexed": indexed, "deleted": deleted}


async def start(
    service: HybridSearchService,
    repo: ObservationsRepo,
    interval: float = 3600,
    task: asyncio.Task | None = None,
) -> asyncio.Task:
    """
    Run one sync now and schedule further cycles every ``interval`` seconds.

    :param task: A task from an earlier call; returned as is while it is still running.
    :returns: The periodic task; the caller owns it and passes it to :func:`stop`.
    """
    logger.info("Starting vector sync (interval=%ds)", interval)
    await sync_once(service, repo)

    if task is not None and not task.done():
        return task

    async def _loop() -> None:
        await sync_once(service, repo)

    return await _startup(_loop, interval, name=f"engram-vector-sync-{service.collection}")


async def stop(task: asyncio.Task | None) -> None:
    """Cancel a task from :func:`start`; ``None`` is ignored."""
    await _shutdown(task)


__all__ = ["sync_once", "start", "stop"]
