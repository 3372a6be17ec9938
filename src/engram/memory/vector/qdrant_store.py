"""
Qdrant vector store (REST)
==========================

Qdrant point ids must be unsigned ints or UUIDs, so record ids are mapped to
deterministic UUIDv5 values and the original id travels in the payload under
``record_id``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
import numpy as np

from engram.errors import ParseError, ProviderUnavailable
from ..models import CollectionInfo, VectorRecord, VectorSearchResult
from . import MetadataFilter

logger = logging.getLogger(__name__)

RECORD_ID_KEY = "record_id"
SCROLL_PAGE = 256
_POINT_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "engram:qdrant")


def point_id(record_id: str) -> str:
    return str(uuid.uuid5(_POINT_NAMESPACE, record_id))


def build_filter(flt: Optional[MetadataFilter]) -> Optional[Dict[str, Any]]:
    """``{"type": "bugfix"}`` -> ``{"must": [{"key": "type", "match": {"value": "bugfix"}}]}``"""
    if not flt:
        return None
    return {"must": [{"key": k, "match": {"value": v}} for k, v in flt.items()]}


class QdrantVectorStore:
    def __init__(
        self,
        url: str = "http://localhost:6333",
        api_key: str | None = None,
        timeout: float = 30.0,
    ):
        self.url = url.rstrip("/")
        self.headers = {"api-key": api_key} if api_key else {}
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    @property
    def name(self) -> str:
        return "qdrant"

    def _client(self) -> aiohttp.ClientSession:
        # A session belongs to the loop that opened it.
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)
        return self._session

    async def _request(self, method: str, path: str, payload: dict | None = None) -> Tuple[int, Dict[str, Any]]:
        """
        Send one request; returns ``(status, body)``.

        404 comes back as ``(404, {})`` so callers can treat a missing
        collection as empty. Other error statuses and transport failures raise
        :class:`ProviderUnavailable`.
        """
        try:
            async with self._client().request(method, f"{self.url}{path}", json=payload) as resp:
                status = resp.status
                text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderUnavailable(f"Qdrant {method} {path} failed: {e}") from e

        if status == 404:
            return status, {}
        if status >= 400:
            raise ProviderUnavailable(f"Qdrant {method} {path} -> {status}: {text[:200]}")
        try:
            return status, (json.loads(text) if text else {})
        except ValueError as e:
            raise ParseError(f"Qdrant returned invalid JSON: {e}") from e

    async def initialize(self, collection: str, dimension: int) -> None:
        status, _ = await self._request("GET", f"/collections/{collection}")
        if status != 404:
            return

        body = {"vectors": {"size": int(dimension), "distance": "Cosine"}}
        await self._request("PUT", f"/collections/{collection}", body)
        logger.info("Created Qdrant collection %s (dim=%d)", collection, dimension)

    async def upsert(self, collection: str, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        points = [
            {
                "id": point_id(rec.id),
                "vector": np.asarray(rec.vector, dtype=np.float32).tolist(),
                "payload": {**(rec.metadata or {}), RECORD_ID_KEY: rec.id},
            }
            for rec in records
        ]
        status, _ = await self._request("PUT", f"/collections/{collection}/points?wait=true", {"points": points})
        if status == 404:
            raise ProviderUnavailable(f"Qdrant collection {collection} does not exist")

    async def search(
        self,
        collection: str,
        query_vector: Sequence[float],
        limit: int,
        filter: Optional[MetadataFilter] = None,
    ) -> List[VectorSearchResult]:
        body: Dict[str, Any] = {
            "vector": np.asarray(query_vector, dtype=np.float32).tolist(),
            "limit": int(limit),
            "with_payload": True,
        }
        qfilter = build_filter(filter)
        if qfilter:
            body["filter"] = qfilter

        _, data = await self._request("POST", f"/collections/{collection}/points/search", body)

        results: List[VectorSearchResult] = []
        for hit in data.get("result") or []:
            payload = dict(hit.get("payload") or {})
            rid = payload.pop(RECORD_ID_KEY, None) or str(hit.get("id"))
            results.append(VectorSearchResult(id=rid, score=float(hit.get("score", 0.0)), metadata=payload))
        return results

    async def delete(self, collection: str, ids: Sequence[str]) -> None:
        if not ids:
            return
        body = {"points": [point_id(i) for i in ids]}
        await self._request("POST", f"/collections/{collection}/points/delete?wait=true", body)

    async def collection_info(self, collection: str) -> Optional[CollectionInfo]:
        status, data = await self._request("GET", f"/collections/{collection}")
        if status == 404:
            return None
        result = data.get("result") or {}
        try:
            dimension = int(result["config"]["params"]["vectors"].get("size", 0))
        except (KeyError, TypeError, AttributeError):
            dimension = 0
        count = result.get("points_count") or result.get("vectors_count") or 0
        return CollectionInfo(name=collection, count=int(count), dimension=dimension)

    async def ids(self, collection: str) -> List[str]:
        """Scroll the collection and return every ``record_id``."""
        found: List[str] = []
        offset = None
        while True:
            body: Dict[str, Any] = {"limit": SCROLL_PAGE, "with_payload": [RECORD_ID_KEY], "with_vector": False}
            if offset is not None:
                body["offset"] = offset
            status, data = await self._request("POST", f"/collections/{collection}/points/scroll", body)
            if status == 404:
                return []
            result = data.get("result") or {}
            for point in result.get("points") or []:
                payload = point.get("payload") or {}
                found.append(payload.get(RECORD_ID_KEY) or str(point.get("id")))
            offset = result.get("next_page_offset")
            if offset is None:
                return found

    async def is_available(self) -> bool:
        try:
            async with self._client().get(f"{self.url}/") as resp:
                return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Qdrant unavailable at %s: %s", self.url, e)
            return False

    async def close(self) -> None:
        if self._session is not None:
            session, self._session = self._session, None
            await session.close()


__all__ = ["QdrantVectorStore", "point_id", "build_filter"]
