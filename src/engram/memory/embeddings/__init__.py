"""
Embedding utilities
===================

Centralizes embedding logic so the rest of the codebase does not care
about model details (dimensionality, provider, etc.).

Every provider satisfies :class:`EmbeddingProvider`; :func:`get_provider`
picks one from configuration.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Text -> fixed-length float32 vector."""

    @property
    def name(self) -> str: ...

    @property
    def dimension(self) -> int: ...

    async def embed(self, text: str) -> np.ndarray: ...

    async def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]: ...

    async def is_available(self) -> bool: ...


def to_bytes(vec) -> bytes:
    """Serialize an embedding to raw little-endian float32 bytes."""
    return np.asarray(vec, dtype="<f4").tobytes()


def from_bytes(blob: bytes) -> np.ndarray:
    """Deserialize raw bytes into a float32 ``np.ndarray`` embedding."""
    return np.frombuffer(blob, dtype="<f4").astype(np.float32)


def l2_normalize(vec: np.ndarray) -> np.ndarray:
    """Return ``vec`` scaled to unit length; a zero vector is returned unchanged."""
    norm = float(np.linalg.norm(vec))
    if norm == 0.0:
        return vec
    return (vec / norm).astype(np.float32)


def get_provider(cfg=None) -> Optional[EmbeddingProvider]:
    """
    Build the configured embedding provider.

    :param cfg: An :class:`engram.config.embedding.Embedding` section; defaults
        to the loaded application config.
    :returns: Provider instance, or ``None`` when embeddings are disabled.
    """
    if cfg is None:
        from engram.config import embedding as cfg

    provider = cfg.PROVIDER
    if provider in ("", "none", "off"):
        logger.info("Embedding provider disabled; search runs keyword-only")
        return None

    if provider == "local":
        from .local_onnx import LocalOnnxProvider

        return LocalOnnxProvider(model_dir=cfg.MODEL_DIR, model_name=cfg.MODEL)

    if provider == "openai":
        from .openai_provider import OpenAIEmbeddingProvider

        if not cfg.API_KEY:
            logger.warning("OpenAI embeddings selected but no API key set; disabling vector search")
            return None
        return OpenAIEmbeddingProvider(
            api_key=cfg.API_KEY, model=cfg.MODEL, base_url=cfg.BASE_URL, timeout=cfg.TIMEOUT
        )

    if provider == "ollama":
        from .ollama_provider import OllamaEmbeddingProvider

        return OllamaEmbeddingProvider(host=cfg.OLLAMA_HOST, model=cfg.MODEL, timeout=cfg.TIMEOUT)

    raise ValueError(f"Unknown embedding provider '{provider}'")


__all__ = [
    "EmbeddingProvider",
    "get_provider",
    "to_bytes",
    "from_bytes",
    "l2_normalize",
]
