"""
Brute-force vector store on SQLite
==================================

One table per collection::

    vec_<name>      (id TEXT PRIMARY KEY, vector BLOB, metadata TEXT, created_at INTEGER)
    vec_<name>_meta (key TEXT PRIMARY KEY, value TEXT)   -- holds 'dimension'

Vectors are little-endian float32 blobs, metadata is JSON. Search loads every
row and ranks by cosine similarity, which is fine for the few thousand
observations a project accumulates.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from engram.errors import DimensionMismatch
from ..embeddings import from_bytes, to_bytes
from ..models import CollectionInfo, VectorRecord, VectorSearchResult
from ..sql import db
from . import MetadataFilter, cosine_similarity, matches_filter, sanitize_table_name

logger = logging.getLogger(__name__)


class SqliteVectorStore:
    """Collections live in their own SQLite file, separate from the observation DB."""

    def __init__(self, path: str | None = None, conn: sqlite3.Connection | None = None):
        if conn is None and path is None:
            raise ValueError("SqliteVectorStore needs a path or a connection")
        self.path = path
        self._conn = conn
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "sqlite"

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = db.connect(self.path)
        return self._conn

    async def _run(self, fn, *args):
        async with self._lock:
            return await asyncio.to_thread(fn, *args)  # blocking sqlite call

    @staticmethod
    def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchone()
        return row is not None

    @staticmethod
    def _dimension(conn: sqlite3.Connection, table: str) -> Optional[int]:
        row = conn.execute(
            f"SELECT value FROM {table}_meta WHERE key='dimension'"
        ).fetchone()
        return int(row[0]) if row else None

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    async def initialize(self, collection: str, dimension: int) -> None:
        """Create the collection tables if missing and record ``dimension``."""
        table = sanitize_table_name(collection)

        def _init() -> None:
            conn = self._connection()
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {table} (
                  id         TEXT PRIMARY KEY,
                  vector     BLOB NOT NULL,
                  metadata   TEXT,
                  created_at INTEGER DEFAULT (strftime('%s','now'))
                )
                """
            )
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {table}_meta (key TEXT PRIMARY KEY, value TEXT)"
            )
            conn.execute(
                f"INSERT OR REPLACE INTO {table}_meta (key, value) VALUES ('dimension', ?)",
                (str(int(dimension)),),
            )

        await self._run(_init)
        logger.info("Vector collection %s ready (dim=%d)", table, dimension)

    async def upsert(self, collection: str, records: Sequence[VectorRecord]) -> None:
        """Insert or replace ``records`` in one transaction."""
        if not records:
            return
        table = sanitize_table_name(collection)

        def _upsert() -> None:
            conn = self._connection()
            expected = self._dimension(conn, table) if self._table_exists(conn, f"{table}_meta") else None
            if expected is None:
                raise ValueError(f"Collection '{collection}' is not initialized")

            rows = []
            for rec in records:
                vec = np.asarray(rec.vector, dtype=np.float32).reshape(-1)
                if vec.shape[0] != expected:
                    raise DimensionMismatch(expected, vec.shape[0], collection)
                rows.append((rec.id, to_bytes(vec), json.dumps(rec.metadata or {})))

            conn.execute("BEGIN")
            try:
                conn.executemany(
                    f"INSERT OR REPLACE INTO {table} (id, vector, metadata) VALUES (?, ?, ?)",
                    rows,
                )
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

        await self._run(_upsert)

    async def search(
        self,
        collection: str,
        query_vector: Sequence[float],
        limit: int,
        filter: Optional[MetadataFilter] = None,
    ) -> List[VectorSearchResult]:
        """Rank every stored vector by cosine similarity to ``query_vector``."""
        table = sanitize_table_name(collection)
        query = np.asarray(query_vector, dtype=np.float32).reshape(-1)

        def _scan():
            conn = self._connection()
            if not self._table_exists(conn, table):
                return None, []
            dim = self._dimension(conn, table)
            rows = conn.execute(f"SELECT id, vector, metadata FROM {table}").fetchall()
            return dim, rows

        dim, rows = await self._run(_scan)
        if dim is None and not rows:
            return []
        if dim is not None and query.shape[0] != dim:
            raise DimensionMismatch(dim, query.shape[0], collection)

        scored: List[VectorSearchResult] = []
        for row in rows:
            try:
                metadata: Dict[str, Any] = json.loads(row["metadata"]) if row["metadata"] else {}
            except json.JSONDecodeError:
                logger.warning("Skipping %s row %s: malformed metadata", table, row["id"])
                continue
            if not isinstance(metadata, dict):
                logger.warning("Skipping %s row %s: metadata is not an object", table, row["id"])
                continue
            if not matches_filter(metadata, filter):
                continue

            vec = from_bytes(row["vector"])
            if vec.shape[0] != query.shape[0]:
                logger.warning(
                    "Skipping %s row %s: stored dim %d != %d",
                    table, row["id"], vec.shape[0], query.shape[0],
                )
                continue
            scored.append(
                VectorSearchResult(id=row["id"], score=cosine_similarity(query, vec), metadata=metadata)
            )

        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[: max(0, int(limit))]

    async def delete(self, collection: str, ids: Sequence[str]) -> None:
        if not ids:
            return
        table = sanitize_table_name(collection)

        def _delete() -> None:
            conn = self._connection()
            if not self._table_exists(conn, table):
                return
            ph = ",".join(["?"] * len(ids))
            conn.execute(f"DELETE FROM {table} WHERE id IN ({ph})", list(ids))

        await self._run(_delete)

    async def collection_info(self, collection: str) -> Optional[CollectionInfo]:
        table = sanitize_table_name(collection)

        def _info() -> Optional[CollectionInfo]:
            conn = self._connection()
            if not self._table_exists(conn, table):
                return None
            count = int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
            dim = self._dimension(conn, table) if self._table_exists(conn, f"{table}_meta") else None
            return CollectionInfo(name=collection, count=count, dimension=dim or 0)

        return await self._run(_info)

    async def ids(self, collection: str) -> List[str]:
        """Every record id in ``collection`` (empty if it does not exist)."""
        table = sanitize_table_name(collection)

        def _ids() -> List[str]:
            conn = self._connection()
            if not self._table_exists(conn, table):
                return []
            return [r[0] for r in conn.execute(f"SELECT id FROM {table} ORDER BY id").fetchall()]

        return await self._run(_ids)

    async def is_available(self) -> bool:
        try:
            await self._run(lambda: self._connection().execute("SELECT 1").fetchone())
        except sqlite3.Error as e:
            logger.warning("SQLite vector store unavailable: %s", e)
            return False
        return True

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await self._run(conn.close)


__all__ = ["SqliteVectorStore"]
