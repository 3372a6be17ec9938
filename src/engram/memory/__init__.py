"""
Public façade for engram memory
===============================

Wires the SQLite store, keyword search, embedding provider, vector store and
hybrid fusion into one :class:`Memory` handle::

    from engram.memory import build_service

    memory = build_service()
    await memory.start()
    await memory.add_observation(obs)      # stored now, vector-indexed in the background
    response = await memory.service.search("auth token refresh")
    await memory.close()
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Optional

from engram.config import Config

from . import scheduler
from .embeddings import EmbeddingProvider, get_provider
from .hybrid import HybridSearchService
from .keyword import KeywordSearch
from .models import Observation, Summary, UserPrompt
from .sql import db as _db
from .sql.repositories import ObservationsRepo, PromptsRepo, SummariesRepo
from .vector import VectorStore, get_store
from .worker import IndexWorker

logger = logging.getLogger(__name__)

# Sentinel: "build from config" as opposed to an explicit ``None`` (disabled).
_FROM_CONFIG = object()


@dataclass
class Memory:
    """Everything a caller needs, sharing one connection and one lock."""

    conn: sqlite3.Connection
    lock: asyncio.Lock
    observations: ObservationsRepo
    summaries: SummariesRepo
    prompts: PromptsRepo
    keyword: KeywordSearch
    service: HybridSearchService
    worker: IndexWorker
    sync_interval: float = 3600
    _sync_task: Optional[asyncio.Task] = field(default=None, repr=False)
    _closed: bool = field(default=False, repr=False)

    async def start(self, *, sync: bool = False) -> None:
        """
        Start background indexing and, with ``sync``, periodic vector sync.

        Vector initialization failures are logged; keyword search keeps working.
        An Ollama provider pulls its model first if the server lacks it.
        """
        try:
            ensure_model = getattr(self.service.embeddings, "ensure_model", None)
            if ensure_model is not None and not await ensure_model():
                logger.warning("Embedding model could not be pulled; vector indexing may fail")
            await self.service.initialize()
        except Exception as e:
            logger.warning("Vector search unavailable, running keyword-only: %s", e)
        self.worker.start()
        if sync and self.service.vector_configured:
            self._sync_task = await scheduler.start(
                self.service, self.observations, self.sync_interval, task=self._sync_task
            )

    async def add_observation(self, obs: Observation) -> int:
        """Persist ``obs`` and queue it for vector indexing."""
        rid = await self.observations.insert(obs)
        if self.service.vector_configured:
            self.worker.submit(obs)
        return rid

    async def add_summary(self, summary: Summary) -> int:
        return await self.summaries.insert(summary)

    async def add_prompt(self, prompt: UserPrompt) -> int:
        return await self.prompts.insert(prompt)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await scheduler.stop(self._sync_task)
        self._sync_task = None
        await self.worker.stop()
        store = self.service.vector_store
        if store is not None and hasattr(store, "close"):
            await store.close()
        async with self.lock:
            await asyncio.to_thread(_db.checkpoint, self.conn)
        self.conn.close()


def build_service(
    db_path: Optional[str] = None,
    project: Optional[str] = None,
    embeddings=_FROM_CONFIG,
    vector_store=_FROM_CONFIG,
    config=Config,
) -> Memory:
    """
    Assemble a :class:`Memory` from configuration.

    :param db_path: SQLite file (``":memory:"`` works); defaults to ``core.DB_PATH``.
    :param project: Project namespace; defaults to ``core.PROJECT``.
    :param embeddings: Provider override; ``None`` disables vector search.
    :param vector_store: Store override; ``None`` disables vector search.
    """
    conn = _db.connect(db_path or config.core.DB_PATH)
    _db.migrate(conn)
    lock = asyncio.Lock()

    if embeddings is _FROM_CONFIG:
        embeddings = get_provider(config.embedding)
    if vector_store is _FROM_CONFIG:
        vector_store = get_store(config.vector, config.core.DATA_DIR) if embeddings is not None else None

    search_cfg = config.search
    keyword = KeywordSearch(conn, lock)
    service = HybridSearchService(
        keyword,
        project or config.core.PROJECT,
        embeddings=embeddings,
        vector_store=vector_store,
        vector_weight=search_cfg.VECTOR_WEIGHT,
        text_weight=search_cfg.TEXT_WEIGHT,
        candidate_multiplier=search_cfg.CANDIDATE_MULTIPLIER,
        index_chunk_size=search_cfg.INDEX_CHUNK_SIZE,
        preview_chars=search_cfg.PREVIEW_CHARS,
    )

    return Memory(
        conn=conn,
        lock=lock,
        observations=ObservationsRepo(conn, lock),
        summaries=SummariesRepo(conn, lock),
        prompts=PromptsRepo(conn, lock),
        keyword=keyword,
        service=service,
        worker=IndexWorker(service, concurrency=search_cfg.INDEX_CONCURRENCY),
        sync_interval=search_cfg.SYNC_INTERVAL,
    )


__all__ = [
    "Memory",
    "build_service",
    "EmbeddingProvider",
    "VectorStore",
    "HybridSearchService",
    "KeywordSearch",
    "IndexWorker",
]
