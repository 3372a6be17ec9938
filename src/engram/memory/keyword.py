"""
Keyword search (SQLite FTS5)
============================

BM25-ranked full-text search over observations, summaries and prompts, plus
chronological timeline traversal around an anchor observation.

Raw ``bm25()`` values are lower-is-better; :attr:`KeywordSearchResult.normalized_score`
maps them onto ``[0, 1]`` for fusion.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import List, Optional, Tuple

from engram.errors import QueryError
from .models import KeywordSearchResult, TimelineItem, TimelineResult

logger = logging.getLogger(__name__)

# Characters with operator meaning in the FTS5 query grammar.
_FTS_OPERATOR_CHARS = frozenset('+-*(){}[]^~:')
# Bareword operators; FTS5 only treats the upper-case spelling as an operator.
_FTS_KEYWORDS = frozenset(("AND", "OR", "NOT", "NEAR"))

SNIPPET_OPEN = "<mark>"
SNIPPET_CLOSE = "</mark>"
SNIPPET_ELLIPSIS = "..."
SNIPPET_TOKENS = 64

TimeRange = Tuple[Optional[int], Optional[int]]


def sanitize_query(query: str) -> str:
    """
    Make user input safe for ``MATCH``.

    Double quotes are doubled; if the raw query contains any operator character
    the whole thing is wrapped in quotes so FTS5 treats it as a phrase.
    A bare ``AND``, ``OR``, ``NOT`` or ``NEAR`` word triggers the same wrapping.
    Other punctuation (quotes, dots, slashes) is not valid in an FTS5 bareword
    either, so it triggers the same wrapping. Returns ``""`` for blank input.
    """
    if not query or not query.strip():
        return ""

    escaped = query.replace('"', '""')
    has_operator = any(c in _FTS_OPERATOR_CHARS or _is_punct(c) for c in query)
    if has_operator or _FTS_KEYWORDS.intersection(query.split()):
        escaped = f'"{escaped}"'
    return escaped


def _is_punct(c: str) -> bool:
    return not (c.isalnum() or c.isspace() or c == "_")


def _snippet(table: str) -> str:
    return (
        f"snippet({table}, -1, '{SNIPPET_OPEN}', '{SNIPPET_CLOSE}', "
        f"'{SNIPPET_ELLIPSIS}', {SNIPPET_TOKENS})"
    )


def _row_to_result(row: sqlite3.Row) -> KeywordSearchResult:
    return KeywordSearchResult(
        id=int(row["id"]),
        title=row["title"] or "",
        type=row["type"] or "",
        project=row["project"] or "",
        created_at_epoch=int(row["created_at_epoch"]),
        rank=float(row["rank"]),
        snippet=row["snippet"] or "",
    )


def _row_to_item(row: sqlite3.Row) -> TimelineItem:
    return TimelineItem(
        id=int(row["id"]),
        title=row["title"] or "",
        type=row["type"] or "",
        project=row["project"] or "",
        created_at_epoch=int(row["created_at_epoch"]),
    )


class KeywordSearch:
    """Async FTS5 queries over the shared SQLite connection."""

    def __init__(self, conn: sqlite3.Connection, lock: asyncio.Lock):
        self.conn = conn
        self._lock = lock

    async def _fetch(self, sql: str, params: list) -> List[sqlite3.Row]:
        def _query():
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.OperationalError as e:
                raise QueryError(f"Keyword query rejected: {e}") from e

        async with self._lock:
            return await asyncio.to_thread(_query)  # blocking sqlite call

    async def search(
        self,
        query: str,
        limit: int = 20,
        type_filter: Optional[str] = None,
        project_filter: Optional[str] = None,
        time_range: Optional[TimeRange] = None,
    ) -> List[KeywordSearchResult]:
        """
        Rank observations by BM25 relevance.

        :param query: Free-text query; sanitized before reaching FTS5.
        :param limit: Maximum number of hits.
        :param type_filter: Only observations of this type.
        :param project_filter: Only observations of this project.
        :param time_range: ``(start_ms, end_ms)``, either bound may be ``None``.
        :returns: Hits ordered most relevant first (ascending ``rank``).
        """
        match = sanitize_query(query)
        if not match:
            return []

        sql = f"""
            SELECT o.id, o.title, o.type, o.project, o.created_at_epoch,
                   bm25(observations_fts) AS rank,
                   {_snippet('observations_fts')} AS snippet
            FROM observations_fts
            JOIN observations o ON observations_fts.rowid = o.id
            WHERE observations_fts MATCH ?
        """
        params: list = [match]
        if type_filter:
            sql += " AND o.type = ?"
            params.append(type_filter)
        if project_filter:
            sql += " AND o.project = ?"
            params.append(project_filter)
        if time_range is not None:
            start, end = time_range
            if start is not None:
                sql += " AND o.created_at_epoch >= ?"
                params.append(int(start))
            if end is not None:
                sql += " AND o.created_at_epoch <= ?"
                params.append(int(end))
        sql += " ORDER BY rank LIMIT ?"
        params.append(int(limit))

        rows = await self._fetch(sql, params)
        return [_row_to_result(r) for r in rows]

    async def search_summaries(
        self,
        query: str,
        limit: int = 20,
        project_filter: Optional[str] = None,
    ) -> List[KeywordSearchResult]:
        """Rank session summaries; ``title`` is the summary's request line."""
        match = sanitize_query(query)
        if not match:
            return []

        sql = f"""
            SELECT s.id, s.request AS title, 'summary' AS type, s.project,
                   s.created_at_epoch,
                   bm25(summaries_fts) AS rank,
                   {_snippet('summaries_fts')} AS snippet
            FROM summaries_fts
            JOIN session_summaries s ON summaries_fts.rowid = s.id
            WHERE summaries_fts MATCH ?
        """
        params: list = [match]
        if project_filter:
            sql += " AND s.project = ?"
            params.append(project_filter)
        sql += " ORDER BY rank LIMIT ?"
        params.append(int(limit))

        rows = await self._fetch(sql, params)
        return [_row_to_result(r) for r in rows]

    async def search_prompts(
        self,
        query: str,
        limit: int = 20,
        project_filter: Optional[str] = None,
    ) -> List[KeywordSearchResult]:
        """Rank raw user prompts."""
        match = sanitize_query(query)
        if not match:
            return []

        sql = f"""
            SELECT p.id, substr(p.prompt_text, 1, 80) AS title, 'prompt' AS type,
                   p.project, p.created_at_epoch,
                   bm25(prompts_fts) AS rank,
                   {_snippet('prompts_fts')} AS snippet
            FROM prompts_fts
            JOIN user_prompts p ON prompts_fts.rowid = p.id
            WHERE prompts_fts MATCH ?
        """
        params: list = [match]
        if project_filter:
            sql += " AND p.project = ?"
            params.append(project_filter)
        sql += " ORDER BY rank LIMIT ?"
        params.append(int(limit))

        rows = await self._fetch(sql, params)
        return [_row_to_result(r) for r in rows]

    async def timeline(
        self,
        anchor_id: int,
        depth_before: int = 3,
        depth_after: int = 3,
        project_filter: Optional[str] = None,
    ) -> TimelineResult:
        """
        Observations immediately before and after ``anchor_id`` by creation time.

        Both lists come back in chronological order and exclude the anchor.
        A missing anchor yields ``found=False``.
        """
        cols = "SELECT id, title, type, project, created_at_epoch FROM observations"
        project_clause = " AND project = ?" if project_filter is not None else ""

        def _query():
            anchor = self.conn.execute(f"{cols} WHERE id = ?", (anchor_id,)).fetchone()
            if anchor is None:
                return None, [], []

            epoch = anchor["created_at_epoch"]
            before_params: list = [epoch]
            after_params: list = [epoch]
            if project_filter is not None:
                before_params.append(project_filter)
                after_params.append(project_filter)
            before_params.append(max(0, int(depth_before)))
            after_params.append(max(0, int(depth_after)))

            before = self.conn.execute(
                f"{cols} WHERE created_at_epoch < ?{project_clause}"
                " ORDER BY created_at_epoch DESC, id DESC LIMIT ?",
                before_params,
            ).fetchall()
            after = self.conn.execute(
                f"{cols} WHERE created_at_epoch > ?{project_clause}"
                " ORDER BY created_at_epoch ASC, id ASC LIMIT ?",
                after_params,
            ).fetchall()
            return anchor, before, after

        async with self._lock:
            anchor, before, after = await asyncio.to_thread(_query)

        if anchor is None:
            logger.info("Timeline anchor %s not found", anchor_id)
            return TimelineResult(found=False)

        return TimelineResult(
            found=True,
            anchor=_row_to_item(anchor),
            before=[_row_to_item(r) for r in reversed(before)],
            after=[_row_to_item(r) for r in after],
        )

    async def find_anchor_by_query(
        self,
        query: str,
        project_filter: Optional[str] = None,
    ) -> Optional[int]:
        """Return the id of the single best keyword match, or ``None``."""
        hits = await self.search(query, limit=1, project_filter=project_filter)
        return hits[0].id if hits else None


__all__ = ["KeywordSearch", "sanitize_query", "TimeRange"]
