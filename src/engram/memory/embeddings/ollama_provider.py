"""Embeddings from a local Ollama server."""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence

import httpx
import numpy as np
import ollama
from ollama import AsyncClient

from engram.errors import ParseError, ProviderUnavailable

logger = logging.getLogger(__name__)

MODEL_DIMENSIONS: Dict[str, int] = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
}
DEFAULT_DIMENSION = 768


def _base_name(model: str) -> str:
    """``nomic-embed-text:latest`` -> ``nomic-embed-text``."""
    return model.split(":", 1)[0]


class OllamaEmbeddingProvider:
    """One ``/api/embeddings`` request per text; Ollama has no batch endpoint for it."""

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        timeout: float = 60.0,
        client: AsyncClient | None = None,
    ):
        self.model = model
        self.client = client or AsyncClient(host=host, timeout=timeout)

    @property
    def name(self) -> str:
        return "ollama"

    @property
    def dimension(self) -> int:
        return MODEL_DIMENSIONS.get(_base_name(self.model), DEFAULT_DIMENSION)

    async def embed(self, text: str) -> np.ndarray:
        try:
            resp = await self.client.embeddings(model=self.model, prompt=text)
        except (ollama.ResponseError, httpx.HTTPError) as e:
            raise ProviderUnavailable(f"Ollama embeddings request failed: {e}") from e

        embedding = resp["embedding"] if resp is not None else None
        if not embedding:
            raise ParseError(f"Ollama returned no embedding for model '{self.model}'")
        return np.asarray(embedding, dtype=np.float32)

    async def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        return [await self.embed(t) for t in texts]

    async def _installed_models(self) -> List[str]:
        resp = await self.client.list()
        return [m.model for m in resp.models if m.model]

    async def is_available(self) -> bool:
        try:
            await self._installed_models()
        except Exception as e:
            logger.warning("Ollama unavailable: %s", e)
            return False
        return True

    async def ensure_model(self) -> bool:
        """Pull ``self.model`` if the server does not have it yet."""
        try:
            installed = {_base_name(m) for m in await self._installed_models()}
            if _base_name(self.model) in installed:
                return True
            logger.info("Pulling Ollama model %s", self.model)
            await self.client.pull(self.model)
        except (ollama.ResponseError, httpx.HTTPError) as e:
            logger.error("Failed to pull Ollama model %s: %s", self.model, e)
            return False
        return True


__all__ = ["OllamaEmbeddingProvider", "MODEL_DIMENSIONS"]
