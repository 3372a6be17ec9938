"""
Vector stores
=============

Named collections of fixed-dimension vectors with string ids and JSON
metadata, searched by cosine similarity.

Backends:

- :class:`~.sqlite_store.SqliteVectorStore` – brute force over a local SQLite file
- :class:`~.qdrant_store.QdrantVectorStore` – Qdrant REST API
- :class:`~.milvus_store.MilvusVectorStore` – Milvus via pymilvus
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from ..models import CollectionInfo, VectorRecord, VectorSearchResult

logger = logging.getLogger(__name__)

MetadataFilter = Dict[str, Any]


@runtime_checkable
class VectorStore(Protocol):
    @property
    def name(self) -> str: ...

    async def initialize(self, collection: str, dimension: int) -> None: ...

    async def upsert(self, collection: str, records: Sequence[VectorRecord]) -> None: ...

    async def search(
        self,
        collection: str,
        query_vector: Sequence[float],
        limit: int,
        filter: Optional[MetadataFilter] = None,
    ) -> List[VectorSearchResult]: ...

    async def delete(self, collection: str, ids: Sequence[str]) -> None: ...

    async def collection_info(self, collection: str) -> Optional[CollectionInfo]: ...

    async def is_available(self) -> bool: ...


def cosine_similarity(a, b) -> float:
    """Cosine of the angle between ``a`` and ``b``; 0 if either has zero norm."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    sim = float(np.dot(va, vb)) / (na * nb)
    return max(-1.0, min(1.0, sim))


def matches_filter(metadata: Dict[str, Any], flt: Optional[MetadataFilter]) -> bool:
    """All filter keys must be present with an equal string value."""
    if not flt:
        return True
    for key, expected in flt.items():
        if key not in metadata or str(metadata[key]) != str(expected):
            return False
    return True


_TABLE_UNSAFE = re.compile(r"[^a-z0-9_]")


def sanitize_table_name(collection: str) -> str:
    """``cm_My-Proj/x`` -> ``vec_cm_my_proj_x``"""
    name = collection.replace("-", "_").replace("/", "_").lower()
    return "vec_" + _TABLE_UNSAFE.sub("", name)


def get_store(cfg=None, data_dir: str | None = None) -> VectorStore:
    """
    Build the configured vector store.

    :param cfg: An :class:`engram.config.vector.Vector` section; defaults to
        the loaded application config.
    :param data_dir: Where the SQLite backend puts ``vectors.db`` when no
        explicit path is configured.
    """
    if cfg is None:
        from engram.config import vector as cfg
    if data_dir is None:
        from engram.config import core

        data_dir = core.DATA_DIR

    backend = cfg.BACKEND
    if backend == "sqlite":
        from .sqlite_store import SqliteVectorStore

        return SqliteVectorStore(path=cfg.SQLITE_PATH or str(Path(data_dir) / "vectors.db"))

    if backend == "qdrant":
        from .qdrant_store import QdrantVectorStore

        return QdrantVectorStore(url=cfg.QDRANT_URL, api_key=cfg.QDRANT_API_KEY, timeout=cfg.TIMEOUT)

    if backend == "milvus":
        from .milvus_store import MilvusVectorStore

        return MilvusVectorStore(host=cfg.MILVUS_HOST, port=cfg.MILVUS_PORT)

    raise ValueError(f"Unknown vector store backend '{backend}'")


__all__ = [
    "VectorStore",
    "MetadataFilter",
    "cosine_similarity",
    "matches_filter",
    "sanitize_table_name",
    "get_store",
]
