"""
SQLite connection and schema
============================

One connection is shared by every repository, the keyword search and (by
default) nothing else: the brute-force vector store opens its own file.

Connections are autocommit (``isolation_level=None``); code that needs an
atomic multi-statement write issues ``BEGIN``/``COMMIT`` itself.
"""

from __future__ import annotations

import logging
import pathlib
import sqlite3
from typing import Optional

from engram.config import core

logger = logging.getLogger(__name__)

MEMORY = ":memory:"
SCHEMA_FILE = pathlib.Path(__file__).with_name("schema.sql")

# WAL first; the rest tune a single-writer, many-reader workload.
PRAGMAS = (
    "journal_mode=WAL",
    "synchronous=NORMAL",
    "temp_store=MEMORY",
    "cache_size=-65536",      # 64 MiB
    "mmap_size=268435456",    # 256 MiB
    "busy_timeout=3000",      # ms
)


def connect(path: Optional[str] = None) -> sqlite3.Connection:
    """Open ``path`` (default ``core.DB_PATH``), creating its directory."""
    target = path or core.DB_PATH
    if target != MEMORY:
        pathlib.Path(target).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(target, isolation_level=None, check_same_thread=False)
    for pragma in PRAGMAS:
        conn.execute(f"PRAGMA {pragma};")
    conn.row_factory = sqlite3.Row
    return conn


def migrate(conn: sqlite3.Connection) -> None:
    """Apply ``schema.sql``. Safe to replay: every statement is IF NOT EXISTS / OR IGNORE."""
    conn.executescript(SCHEMA_FILE.read_text(encoding="utf-8"))
    logger.debug("Schema at version %s", schema_version(conn))


def schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT MAX(version) FROM schema_versions").fetchone()
    return int(row[0] or 0)


def checkpoint(conn: sqlite3.Connection) -> None:
    """Fold the WAL back into the main file and truncate it."""
    conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
