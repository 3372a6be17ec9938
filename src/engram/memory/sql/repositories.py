"""
Repositories (SQL-only)
=======================
- No embedding logic here; pure CRUD and selects.
- The FTS5 index follows automatically through the triggers in schema.sql.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import List, Optional, Sequence
import asyncio
import json
import sqlite3

from ..models import Observation, Summary, UserPrompt

# Stay well under SQLITE_MAX_VARIABLE_NUMBER for IN (...) lists.
_IN_CHUNK = 500


def _iso(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


def _json_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


def row_to_observation(row: sqlite3.Row) -> Observation:
    return Observation(
        id=int(row["id"]),
        memory_session_id=row["memory_session_id"],
        project=row["project"],
        type=row["type"],
        title=row["title"],
        subtitle=row["subtitle"],
        narrative=row["narrative"],
        text=row["text"],
        facts=_json_list(row["facts"]),
        concepts=_json_list(row["concepts"]),
        files_read=_json_list(row["files_read"]),
        files_modified=_json_list(row["files_modified"]),
        prompt_number=row["prompt_number"],
        discovery_tokens=int(row["discovery_tokens"] or 0),
        created_at_epoch=int(row["created_at_epoch"]),
    )


class ObservationsRepo:
    """Async CRUD helpers for the ``observations`` table."""

    def __init__(self, conn: sqlite3.Connection, lock: asyncio.Lock):
        self.conn = conn
        self._lock = lock

    async def insert(self, obs: Observation) -> int:
        """
        Insert an observation and return its row id.

        :param obs: Observation to store; ``obs.id`` is set on success.
        """
        sql = """
            INSERT INTO observations (
              memory_session_id, project, type, title, subtitle, narrative, text,
              facts, concepts, files_read, files_modified, prompt_number,
              discovery_tokens, created_at, created_at_epoch
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        row = (
            obs.memory_session_id, obs.project, obs.type,
            obs.title, obs.subtitle, obs.narrative, obs.text,
            json.dumps(obs.facts), json.dumps(obs.concepts),
            json.dumps(obs.files_read), json.dumps(obs.files_modified),
            obs.prompt_number, obs.discovery_tokens,
            _iso(obs.created_at_epoch), obs.created_at_epoch,
        )

        def _run() -> int:
            with self.conn:
                cur = self.conn.execute(sql, row)
            return int(cur.lastrowid)

        async with self._lock:
            rid = await asyncio.to_thread(_run)  # blocking sqlite call
        obs.id = rid
        return rid

    async def get(self, observation_id: int) -> Optional[Observation]:
        """Return one observation or ``None``."""

        def _query():
            return self.conn.execute(
                "SELECT * FROM observations WHERE id=?", (observation_id,)
            ).fetchone()

        async with self._lock:
            row = await asyncio.to_thread(_query)
        return row_to_observation(row) if row else None

    async def get_many(self, ids: Sequence[int]) -> List[Observation]:
        """Fetch observations by primary key list, newest first."""
        if not ids:
            return []
        id_list = list(ids)

        def _query():
            rows = []
            for i in range(0, len(id_list), _IN_CHUNK):
                chunk = id_list[i : i + _IN_CHUNK]
                ph = ",".join(["?"] * len(chunk))
                rows.extend(
                    self.conn.execute(f"SELECT * FROM observations WHERE id IN ({ph})", chunk).fetchall()
                )
            return rows

        async with self._lock:
            rows = await asyncio.to_thread(_query)
        rows.sort(key=lambda r: (r["created_at_epoch"], r["id"]), reverse=True)
        return [row_to_observation(r) for r in rows]

    async def recent(
        self,
        project: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Observation]:
        """Return the most recent observations, optionally scoped to a project."""
        sql = "SELECT * FROM observations"
        params: list = []
        if project is not None:
            sql += " WHERE project=?"
            params.append(project)
        sql += " ORDER BY created_at_epoch DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        def _query():
            return self.conn.execute(sql, params).fetchall()

        async with self._lock:
            rows = await asyncio.to_thread(_query)
        return [row_to_observation(r) for r in rows]

    async def count(self, project: Optional[str] = None) -> int:
        if project is None:
            sql, params = "SELECT COUNT(*) FROM observations", ()
        else:
            sql, params = "SELECT COUNT(*) FROM observations WHERE project=?", (project,)

        def _query() -> int:
            return int(self.conn.execute(sql, params).fetchone()[0])

        async with self._lock:
            return await asyncio.to_thread(_query)

    async def all_ids(self, project: Optional[str] = None) -> List[int]:
        """Return every observation id (used by vector sync)."""
        if project is None:
            sql, params = "SELECT id FROM observations ORDER BY id", ()
        else:
            sql, params = "SELECT id FROM observations WHERE project=? ORDER BY id", (project,)

        def _query() -> List[int]:
            return [int(r[0]) for r in self.conn.execute(sql, params).fetchall()]

        async with self._lock:
            return await asyncio.to_thread(_query)

    async def delete(self, observation_id: int) -> bool:
        def _run() -> bool:
            with self.conn:
                cur = self.conn.execute("DELETE FROM observations WHERE id=?", (observation_id,))
            return cur.rowcount > 0

        async with self._lock:
            return await asyncio.to_thread(_run)


class SummariesRepo:
    """Insert helper for ``session_summaries``."""

    def __init__(self, conn: sqlite3.Connection, lock: asyncio.Lock):
        self.conn = conn
        self._lock = lock

    async def insert(self, summary: Summary) -> int:
        sql = """
            INSERT INTO session_summaries (
              memory_session_id, project, request, investigated, learned,
              completed, next_steps, notes, created_at, created_at_epoch
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(memory_session_id) DO UPDATE SET
              request=excluded.request,
              investigated=excluded.investigated,
              learned=excluded.learned,
              completed=excluded.completed,
              next_steps=excluded.next_steps,
              notes=excluded.notes
        """
        row = (
            summary.memory_session_id, summary.project, summary.request,
            summary.investigated, summary.learned, summary.completed,
            summary.next_steps, summary.notes,
            _iso(summary.created_at_epoch), summary.created_at_epoch,
        )

        def _run() -> int:
            with self.conn:
                self.conn.execute(sql, row)
                found = self.conn.execute(
                    "SELECT id FROM session_summaries WHERE memory_session_id=?",
                    (summary.memory_session_id,),
                ).fetchone()
            return int(found[0])

        async with self._lock:
            rid = await asyncio.to_thread(_run)
        summary.id = rid
        return rid


class PromptsRepo:
    """Insert helper for ``user_prompts``."""

    def __init__(self, conn: sqlite3.Connection, lock: asyncio.Lock):
        self.conn = conn
        self._lock = lock

    async def insert(self, prompt: UserPrompt) -> int:
        sql = """
            INSERT INTO user_prompts (
              content_session_id, project, prompt_number, prompt_text,
              memory_session_id, created_at, created_at_epoch
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """
        row = (
            prompt.content_session_id, prompt.project, prompt.prompt_number,
            prompt.prompt_text, prompt.memory_session_id,
            _iso(prompt.created_at_epoch), prompt.created_at_epoch,
        )

        def _run() -> int:
            with self.conn:
                cur = self.conn.execute(sql, row)
            return int(cur.lastrowid)

        async with self._lock:
            rid = await asyncio.to_thread(_run)
        prompt.id = rid
        return rid
