"""
Data model
==========

Plain dataclasses shared by the embedding, vector, keyword and fusion layers.
Timestamps are Unix epoch milliseconds.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

OBSERVATION_TYPES = ("decision", "bugfix", "feature", "refactor", "discovery")

MODE_HYBRID = "hybrid"
MODE_KEYWORD_ONLY = "keyword-only"


@dataclass(slots=True)
class Observation:
    """One structured observation captured during a coding session."""

    memory_session_id: str
    project: str
    type: str
    text: str
    created_at_epoch: int
    id: int | None = None
    title: str | None = None
    subtitle: str | None = None
    narrative: str | None = None
    facts: List[str] = field(default_factory=list)
    concepts: List[str] = field(default_factory=list)
    files_read: List[str] = field(default_factory=list)
    files_modified: List[str] = field(default_factory=list)
    prompt_number: int | None = None
    discovery_tokens: int = 0

    def __post_init__(self) -> None:
        if self.type not in OBSERVATION_TYPES:
            raise ValueError(f"Unknown observation type '{self.type}'")


@dataclass(slots=True)
class Summary:
    """End-of-session summary row."""

    memory_session_id: str
    project: str
    created_at_epoch: int
    id: int | None = None
    request: str | None = None
    investigated: str | None = None
    learned: str | None = None
    completed: str | None = None
    next_steps: str | None = None
    notes: str | None = None


@dataclass(slots=True)
class UserPrompt:
    """Raw prompt text typed by the user."""

    content_session_id: str
    project: str
    prompt_number: int
    prompt_text: str
    created_at_epoch: int
    id: int | None = None
    memory_session_id: str | None = None


# --- Vector store -----------------------------------------------------------

@dataclass(slots=True)
class VectorRecord:
    id: str
    vector: Sequence[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class VectorSearchResult:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CollectionInfo:
    name: str
    count: int
    dimension: int


# --- Keyword search ---------------------------------------------------------

@dataclass(slots=True)
class KeywordSearchResult:
    """One FTS5 hit. ``rank`` is raw bm25 (lower is more relevant)."""

    id: int
    title: str
    type: str
    project: str
    created_at_epoch: int
    rank: float
    snippet: str

    @property
    def normalized_score(self) -> float:
        return 1.0 / (1.0 + max(0.0, -self.rank))


@dataclass(slots=True)
class TimelineItem:
    id: int
    title: str
    type: str
    project: str
    created_at_epoch: int


@dataclass(slots=True)
class TimelineResult:
    found: bool
    anchor: Optional[TimelineItem] = None
    before: List[TimelineItem] = field(default_factory=list)
    after: List[TimelineItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# --- Hybrid fusion ----------------------------------------------------------

@dataclass(slots=True)
class HybridSearchResult:
    observation_id: int
    title: str = ""
    type: str = ""
    created_at_epoch: int = 0
    snippet: str = ""
    fts_score: float = 0.0
    vector_score: float = 0.0
    hybrid_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SearchResponse:
    """Ranked hybrid results plus the retrieval mode used to produce them."""

    mode: str
    results: List[HybridSearchResult] = field(default_factory=list)

    def __iter__(self) -> Iterator[HybridSearchResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def __getitem__(self, idx):
        return self.results[idx]

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": self.mode, "results": [r.to_dict() for r in self.results]}


@dataclass(slots=True)
class SearchStatus:
    mode: str
    fts_available: bool = True
    vector_available: bool = False
    embedding_provider: str | None = None
    embedding_available: bool = False
    vector_store: str | None = None
    vector_store_available: bool = False
    document_count: int | None = None
    dimension: int | None = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    "OBSERVATION_TYPES",
    "MODE_HYBRID",
    "MODE_KEYWORD_ONLY",
    "Observation",
    "Summary",
    "UserPrompt",
    "VectorRecord",
    "VectorSearchResult",
    "CollectionInfo",
    "KeywordSearchResult",
    "TimelineItem",
    "TimelineResult",
    "HybridSearchResult",
    "SearchResponse",
    "SearchStatus",
]
