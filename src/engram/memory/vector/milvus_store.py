"""Milvus-backed vector store (pymilvus ORM, blocking calls run in threads)."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Dict, List, Optional, Sequence

import numpy as np
from pymilvus import (
    Collection,
    CollectionSchema,
    DataType,
    FieldSchema,
    MilvusException,
    connections,
    utility,
)

from engram.errors import ProviderUnavailable
from ..models import CollectionInfo, VectorRecord, VectorSearchResult
from . import MetadataFilter

logger = logging.getLogger(__name__)

ID_FIELD = "id"
VECTOR_FIELD = "vector"
METADATA_FIELD = "metadata"
MAX_ID_LENGTH = 512
DELETE_CHUNK = 500
QUERY_PAGE = 1000

INDEX_PARAMS = {"index_type": "FLAT", "metric_type": "COSINE", "params": {}}
SEARCH_PARAMS = {"metric_type": "COSINE", "params": {}}


def build_expr(flt: Optional[MetadataFilter]) -> str:
    """``{"type": "bugfix"}`` -> ``metadata["type"] == "bugfix"``"""
    if not flt:
        return ""
    return " and ".join(
        f"{METADATA_FIELD}[{json.dumps(str(k))}] == {json.dumps(str(v))}" for k, v in flt.items()
    )


def _id_list_expr(ids: Sequence[str]) -> str:
    return f"{ID_FIELD} in {json.dumps([str(i) for i in ids])}"


class MilvusVectorStore:
    """One Milvus collection per logical collection, exact (FLAT) cosine search."""

    def __init__(self, host: str = "127.0.0.1", port: str | int = "19530", alias: str = "engram"):
        self.uri = f"http://{host}:{port}"
        self.alias = alias
        self._connected = False
        self._collections: Dict[str, Collection] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "milvus"

    def _connect(self) -> None:
        if self._connected:
            return
        with self._lock:
            if self._connected:
                return
            connections.connect(alias=self.alias, uri=self.uri)
            self._connected = True

    def _get_collection(self, collection: str) -> Optional[Collection]:
        """Return the loaded collection, or ``None`` if it does not exist."""
        col = self._collections.get(collection)
        if col is not None:
            return col

        self._connect()
        with self._lock:
            col = self._collections.get(collection)
            if col is not None:
                return col
            if not utility.has_collection(collection, using=self.alias):
                return None
            col = Collection(collection, using=self.alias)
            col.load()
            self._collections[collection] = col
            return col

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except MilvusException as e:
            raise ProviderUnavailable(f"Milvus call failed: {e}") from e

    async def initialize(self, collection: str, dimension: int) -> None:
        def _init() -> None:
            self._connect()
            with self._lock:
                if utility.has_collection(collection, using=self.alias):
                    col = Collection(collection, using=self.alias)
                    if not col.has_index():
                        col.create_index(VECTOR_FIELD, INDEX_PARAMS)
                else:
                    fields = [
                        FieldSchema(
                            name=ID_FIELD, dtype=DataType.VARCHAR,
                            is_primary=True, auto_id=False, max_length=MAX_ID_LENGTH,
                        ),
                        FieldSchema(name=VECTOR_FIELD, dtype=DataType.FLOAT_VECTOR, dim=int(dimension)),
                        FieldSchema(name=METADATA_FIELD, dtype=DataType.JSON),
                    ]
                    schema = CollectionSchema(fields, description="engram observation vectors")
                    col = Collection(collection, schema, using=self.alias)
                    col.create_index(VECTOR_FIELD, INDEX_PARAMS)
                    logger.info("Created Milvus collection %s (dim=%d)", collection, dimension)
                col.load()
                self._collections[collection] = col

        await self._run(_init)

    async def upsert(self, collection: str, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        ids = [r.id for r in records]
        vectors = [np.asarray(r.vector, dtype=np.float32).tolist() for r in records]
        metadata = [dict(r.metadata or {}) for r in records]

        def _upsert() -> None:
            col = self._get_collection(collection)
            if col is None:
                raise ValueError(f"Collection '{collection}' is not initialized")
            for i in range(0, len(ids), DELETE_CHUNK):
                col.delete(_id_list_expr(ids[i : i + DELETE_CHUNK]))  # idempotent upsert
            col.insert([ids, vectors, metadata])
            col.flush()

        await self._run(_upsert)

    async def search(
        self,
        collection: str,
        query_vector: Sequence[float],
        limit: int,
        filter: Optional[MetadataFilter] = None,
    ) -> List[VectorSearchResult]:
        vec = np.asarray(query_vector, dtype=np.float32).tolist()
        expr = build_expr(filter)

        def _search() -> List[VectorSearchResult]:
            col = self._get_collection(collection)
            if col is None:
                return []
            res = col.search(
                data=[vec],
                anns_field=VECTOR_FIELD,
                param=SEARCH_PARAMS,
                limit=int(limit),
                expr=expr or None,
                output_fields=[METADATA_FIELD],
                consistency_level="Strong",
            )
            hits = res[0] if res else []
            return [
                VectorSearchResult(
                    id=str(h.id),
                    score=float(h.score),
                    metadata=dict(h.entity.get(METADATA_FIELD) or {}),
                )
                for h in hits
            ]

        return await self._run(_search)

    async def delete(self, collection: str, ids: Sequence[str]) -> None:
        if not ids:
            return
        ids = list(ids)

        def _delete() -> None:
            col = self._get_collection(collection)
            if col is None:
                return
            for i in range(0, len(ids), DELETE_CHUNK):
                col.delete(_id_list_expr(ids[i : i + DELETE_CHUNK]))
            col.flush()

        await self._run(_delete)

    async def collection_info(self, collection: str) -> Optional[CollectionInfo]:
        def _info() -> Optional[CollectionInfo]:
            col = self._get_collection(collection)
            if col is None:
                return None
            dim = 0
            for f in col.schema.fields:
                if f.dtype == DataType.FLOAT_VECTOR:
                    dim = int(f.params.get("dim", 0))
            return CollectionInfo(name=collection, count=int(col.num_entities), dimension=dim)

        return await self._run(_info)

    async def ids(self, collection: str) -> List[str]:
        def _ids() -> List[str]:
            col = self._get_collection(collection)
            if col is None:
                return []
            found: List[str] = []
            offset = 0
            while True:
                rows = col.query(expr=f'{ID_FIELD} != ""', output_fields=[ID_FIELD], limit=QUERY_PAGE, offset=offset)
                if not rows:
                    break
                found.extend(str(r[ID_FIELD]) for r in rows)
                if len(rows) < QUERY_PAGE:
                    break
                offset += QUERY_PAGE
            return found

        return await self._run(_ids)

    async def is_available(self) -> bool:
        def _probe() -> None:
            self._connect()
            utility.get_server_version(using=self.alias)

        try:
            await asyncio.to_thread(_probe)
        except Exception as e:
            logger.warning("Milvus unavailable at %s: %s", self.uri, e)
            return False
        return True

    async def close(self) -> None:
        def _disconnect() -> None:
            with self._lock:
                if not self._connected:
                    return
                connections.disconnect(self.alias)
                self._connected = False
                self._collections.clear()

        await self._run(_disconnect)


__all__ = ["MilvusVectorStore", "build_expr"]
