"""
Hybrid search
=============

Fuses FTS5 keyword ranking with vector similarity for one project.

Search flow::

    query ─┬─► KeywordSearch.search(limit * multiplier) ──► fts_score
           └─► embed ─► VectorStore.search(limit * multiplier) ─► vector_score
                          │
        merge by observation id ─► vw * vector + tw * fts ─► sort ─► top ``limit``

The keyword leg always runs. The vector leg runs when both an embedding
provider and a vector store are configured; any failure in it is logged and
the call is answered keyword-only.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence

from engram.errors import QueryError
from .embeddings import EmbeddingProvider
from .keyword import KeywordSearch, TimeRange
from .models import (
    MODE_HYBRID,
    MODE_KEYWORD_ONLY,
    HybridSearchResult,
    Observation,
    SearchResponse,
    SearchStatus,
    TimelineResult,
    VectorRecord,
)
from .vector import VectorStore

logger = logging.getLogger(__name__)

RECORD_PREFIX = "obs_"
COLLECTION_PREFIX = "cm_"
_COLLECTION_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


def collection_name(project: str) -> str:
    """Vector collection for ``project``: ``my-app`` -> ``cm_my_app``."""
    name = project.replace("/", "_").replace("\\", "_").replace("-", "_")
    name = _COLLECTION_UNSAFE.sub("", name)
    name = name.ljust(3, "_")[:60]
    return COLLECTION_PREFIX + name.lower()


def record_id(observation_id: int) -> str:
    return f"{RECORD_PREFIX}{observation_id}"


def observation_text(obs: Observation) -> str:
    """Composite text that gets embedded for an observation."""
    parts: List[str] = []
    if obs.title:
        parts.append(f"Title: {obs.title}")
    if obs.subtitle:
        parts.append(f"Subtitle: {obs.subtitle}")
    if obs.narrative:
        parts.append(obs.narrative)
    if obs.facts:
        parts.append("Facts: " + "; ".join(obs.facts))
    if obs.concepts:
        parts.append("Concepts: " + ", ".join(obs.concepts))
    return "\n\n".join(parts)


def _in_range(epoch: int, time_range: Optional[TimeRange]) -> bool:
    if time_range is None:
        return True
    start, end = time_range
    if start is not None and epoch < start:
        return False
    if end is not None and epoch > end:
        return False
    return True


class HybridSearchService:
    """Keyword + vector retrieval over one project's observations."""

    def __init__(
        self,
        keyword: KeywordSearch,
        project: str,
        embeddings: Optional[EmbeddingProvider] = None,
        vector_store: Optional[VectorStore] = None,
        vector_weight: float = 0.7,
        text_weight: float = 0.3,
        candidate_multiplier: int = 4,
        index_chunk_size: int = 100,
        preview_chars: int = 200,
    ):
        total = float(vector_weight) + float(text_weight)
        if total <= 0:
            raise ValueError(f"Search weights must sum to a positive value, got {total}")

        self.keyword = keyword
        self.project = project
        self.collection = collection_name(project)
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.vector_weight = float(vector_weight) / total
        self.text_weight = float(text_weight) / total
        self.candidate_multiplier = max(1, int(candidate_multiplier))
        self.index_chunk_size = max(1, int(index_chunk_size))
        self.preview_chars = int(preview_chars)

        self._initialized = False
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def vector_configured(self) -> bool:
        return self.embeddings is not None and self.vector_store is not None

    @property
    def mode(self) -> str:
        if self.vector_configured and self._initialized:
            return MODE_HYBRID
        return MODE_KEYWORD_ONLY

    async def initialize(self) -> None:
        """
        Create the project's vector collection (once).

        A no-op without an embedding provider or vector store. Raises
        :class:`~engram.errors.ProviderUnavailable` (or the backend's own
        error) when a configured backend cannot be brought up; the next call
        tries again.
        """
        if self._initialized or not self.vector_configured:
            return
        async with self._init_lock:
            if self._initialized:
                return
            await self.vector_store.initialize(self.collection, self.embeddings.dimension)
            self._initialized = True
            logger.info(
                "Hybrid search ready (project=%s collection=%s provider=%s store=%s)",
                self.project, self.collection, self.embeddings.name, self.vector_store.name,
            )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        limit: int = 10,
        type_filter: Optional[str] = None,
        time_range: Optional[TimeRange] = None,
    ) -> SearchResponse:
        """
        Ranked observations for ``query``.

        :param limit: Maximum results returned.
        :param type_filter: Restrict both legs to one observation type.
        :param time_range: ``(start_ms, end_ms)`` on ``created_at_epoch``.
        :returns: :class:`SearchResponse` whose ``mode`` says whether the
            vector leg contributed.
        """
        candidate_limit = max(0, int(limit)) * self.candidate_multiplier
        candidates: Dict[int, HybridSearchResult] = {}

        try:
            keyword_hits = await self.keyword.search(
                query,
                limit=candidate_limit,
                type_filter=type_filter,
                project_filter=self.project,
                time_range=time_range,
            )
        except QueryError as e:
            logger.warning("Keyword search rejected %r, continuing without it: %s", query, e)
            keyword_hits = []

        for hit in keyword_hits:
            candidates[hit.id] = HybridSearchResult(
                observation_id=hit.id,
                title=hit.title,
                type=hit.type,
                created_at_epoch=hit.created_at_epoch,
                snippet=hit.snippet,
                fts_score=hit.normalized_score,
            )

        mode = MODE_KEYWORD_ONLY
        if self.vector_configured and query and query.strip():
            try:
                await self._vector_leg(query, candidate_limit, type_filter, time_range, candidates)
                mode = MODE_HYBRID
            except Exception as e:
                logger.warning("Vector search failed, answering keyword-only: %s", e)

        for r in candidates.values():
            r.hybrid_score = self.vector_weight * r.vector_score + self.text_weight * r.fts_score

        ranked = sorted(candidates.values(), key=lambda r: r.hybrid_score, reverse=True)
        return SearchResponse(mode=mode, results=ranked[: max(0, int(limit))])

    async def _vector_leg(
        self,
        query: str,
        candidate_limit: int,
        type_filter: Optional[str],
        time_range: Optional[TimeRange],
        candidates: Dict[int, HybridSearchResult],
    ) -> None:
        await self.initialize()
        qvec = await self.embeddings.embed(query)
        flt = {"type": type_filter} if type_filter else None
        hits = await self.vector_store.search(self.collection, qvec, candidate_limit, flt)

        # Merged only once every hit is read, so a failure leaves no partial scores.
        scores: Dict[int, float] = {}
        added: Dict[int, HybridSearchResult] = {}
        for hit in hits:
            meta = hit.metadata or {}
            try:
                obs_id = int(meta.get("observation_id") or 0)
            except (TypeError, ValueError):
                obs_id = 0
            if obs_id <= 0:
                continue

            if obs_id in candidates:
                scores[obs_id] = hit.score
                continue
            if obs_id in added:
                added[obs_id].vector_score = hit.score
                continue

            try:
                created = int(meta.get("created_at_epoch") or 0)
            except (TypeError, ValueError):
                logger.warning(
                    "Skipping vector hit %s: bad created_at_epoch %r", hit.id, meta.get("created_at_epoch")
                )
                continue
            if not _in_range(created, time_range):
                continue
            added[obs_id] = HybridSearchResult(
                observation_id=obs_id,
                title=str(meta.get("title") or ""),
                type=str(meta.get("type") or ""),
                created_at_epoch=created,
                snippet=str(meta.get("content_preview") or ""),
                vector_score=hit.score,
            )

        for obs_id, score in scores.items():
            candidates[obs_id].vector_score = score
        candidates.update(added)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def _record(self, obs: Observation, text: str, vector) -> VectorRecord:
        return VectorRecord(
            id=record_id(obs.id),
            vector=vector,
            metadata={
                "observation_id": obs.id,
                "session_id": obs.memory_session_id,
                "type": obs.type,
                "title": obs.title or "",
                "project": self.project,
                "created_at_epoch": obs.created_at_epoch,
                "content_preview": text[: self.preview_chars],
            },
        )

    async def index(self, obs: Observation) -> bool:
        """Embed and upsert one stored observation. Returns ``False`` on failure."""
        if not self.vector_configured:
            return False
        if obs.id is None:
            logger.warning("Refusing to index an observation without an id")
            return False
        try:
            await self.initialize()
            text = observation_text(obs)
            vector = await self.embeddings.embed(text)
            await self.vector_store.upsert(self.collection, [self._record(obs, text, vector)])
        except Exception as e:
            logger.error("Failed to vector-index observation %s: %s", obs.id, e)
            return False
        return True

    async def index_batch(self, observations: Iterable[Observation]) -> int:
        """
        Embed all observations in one call, then upsert in chunks.

        Chunks are written in order; a failing chunk stops the batch and the
        count of records written so far is returned.
        """
        if not self.vector_configured:
            return 0
        obs_list = [o for o in observations if o.id is not None]
        if not obs_list:
            return 0

        try:
            await self.initialize()
            texts = [observation_text(o) for o in obs_list]
            vectors = await self.embeddings.embed_batch(texts)
        except Exception as e:
            logger.error("Failed to embed batch of %d observations: %s", len(obs_list), e)
            return 0

        records = [self._record(o, t, v) for o, t, v in zip(obs_list, texts, vectors)]
        written = 0
        for i in range(0, len(records), self.index_chunk_size):
            chunk = records[i : i + self.index_chunk_size]
            try:
                await self.vector_store.upsert(self.collection, chunk)
            except Exception as e:
                logger.error(
                    "Vector upsert failed after %d/%d observations: %s", written, len(records), e
                )
                return written
            written += len(chunk)

        logger.info("Indexed %d observations into %s", written, self.collection)
        return written

    async def delete(self, observation_ids: Sequence[int]) -> bool:
        """Drop observations from the vector collection. Returns ``False`` on failure."""
        if not self.vector_configured or not observation_ids:
            return False
        try:
            await self.initialize()
            await self.vector_store.delete(self.collection, [record_id(i) for i in observation_ids])
        except Exception as e:
            logger.error("Failed to delete %d vectors: %s", len(observation_ids), e)
            return False
        return True

    # ------------------------------------------------------------------
    # Timeline / status
    # ------------------------------------------------------------------

    async def timeline(self, anchor_id: int, depth_before: int = 3, depth_after: int = 3) -> TimelineResult:
        return await self.keyword.timeline(anchor_id, depth_before, depth_after, project_filter=self.project)

    async def timeline_by_query(self, query: str, depth_before: int = 3, depth_after: int = 3) -> TimelineResult:
        """Timeline around the best keyword match for ``query``."""
        anchor = await self.keyword.find_anchor_by_query(query, project_filter=self.project)
        if anchor is None:
            return TimelineResult(found=False)
        return await self.timeline(anchor, depth_before, depth_after)

    async def status(self) -> SearchStatus:
        status = SearchStatus(
            mode=self.mode,
            fts_available=True,
            vector_available=self.vector_configured,
        )
        if not self.vector_configured:
            return status

        status.embedding_provider = self.embeddings.name
        status.vector_store = self.vector_store.name
        status.embedding_available = await self.embeddings.is_available()
        status.vector_store_available = await self.vector_store.is_available()
        if status.vector_store_available:
            try:
                info = await self.vector_store.collection_info(self.collection)
            except Exception as e:
                logger.warning("Could not read collection info for %s: %s", self.collection, e)
                info = None
            status.document_count = info.count if info else 0
            status.dimension = self.embeddings.dimension
        return status


__all__ = [
    "HybridSearchService",
    "collection_name",
    "observation_text",
    "record_id",
]
