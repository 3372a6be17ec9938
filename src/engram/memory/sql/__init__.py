"""SQLite storage for observations, summaries and prompts (FTS5-indexed)."""
