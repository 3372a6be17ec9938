import hashlib
import os
import sys
import tempfile
from pathlib import Path

import numpy as np
import pytest

# Add src/ to sys.path for imports without an editable install
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

# Keep tests hermetic: no stray config.toml, no real data dir, no vector backends.
_TMP = tempfile.mkdtemp(prefix="engram-tests-")
os.environ["ENGRAM_CONFIG"] = str(Path(_TMP) / "missing.toml")
os.environ.setdefault("ENGRAM_DATA_DIR", _TMP)
os.environ.setdefault("ENGRAM_EMBEDDING_PROVIDER", "none")
os.environ.setdefault("ENGRAM_PROJECT", "test-project")

from engram.memory.models import Observation  # noqa: E402
from engram.memory.sql import db  # noqa: E402


@pytest.fixture
def conn():
    """In-memory SQLite connection with the real schema applied."""
    c = db.connect(":memory:")
    db.migrate(c)
    yield c
    c.close()


@pytest.fixture
def make_observation():
    """Factory for valid observations; keyword args override the defaults."""

    def _make(**overrides) -> Observation:
        fields = dict(
            memory_session_id="session-1",
            project="test-project",
            type="discovery",
            text="",
            created_at_epoch=1_700_000_000_000,
        )
        fields.update(overrides)
        return Observation(**fields)

    return _make


class HashEmbeddings:
    """Deterministic provider: positive unit vectors derived from a text hash."""

    name = "hash"

    def __init__(self, dimension: int = 8):
        self.dimension = dimension
        self.calls = 0

    def _vec(self, text: str):
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        v = np.frombuffer(digest[: self.dimension * 4], dtype=np.uint32).astype(np.float32) + 1.0
        return v / np.linalg.norm(v)

    async def embed(self, text: str):
        self.calls += 1
        return self._vec(text)

    async def embed_batch(self, texts):
        self.calls += 1
        return [self._vec(t) for t in texts]

    async def is_available(self) -> bool:
        return True


@pytest.fixture
def hash_embeddings():
    return HashEmbeddings()
