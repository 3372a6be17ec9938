"""Embeddings through the OpenAI API (or any compatible endpoint)."""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence

import numpy as np
import openai
from openai import AsyncOpenAI

from engram.errors import ParseError, ProviderUnavailable

logger = logging.getLogger(__name__)

MODEL_DIMENSIONS: Dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}
DEFAULT_DIMENSION = 1536


class OpenAIEmbeddingProvider:
    """Native batch embeddings via ``AsyncOpenAI.embeddings.create``."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str | None = None,
        timeout: float = 60.0,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url or None, timeout=timeout)

    @property
    def name(self) -> str:
        return "openai"

    @property
    def dimension(self) -> int:
        return MODEL_DIMENSIONS.get(self.model, DEFAULT_DIMENSION)

    async def _create(self, inputs: List[str]):
        try:
            return await self.client.embeddings.create(model=self.model, input=inputs)
        except openai.APIError as e:
            raise ProviderUnavailable(f"OpenAI embeddings request failed: {e}") from e

    async def embed(self, text: str) -> np.ndarray:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Return one vector per input, in input order."""
        if not texts:
            return []
        resp = await self._create(list(texts))

        try:
            data = sorted(resp.data, key=lambda d: d.index)
            vectors = [np.asarray(d.embedding, dtype=np.float32) for d in data]
        except (AttributeError, TypeError, ValueError) as e:
            raise ParseError(f"Malformed OpenAI embeddings response: {e}") from e

        if len(vectors) != len(texts):
            raise ParseError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors

    async def is_available(self) -> bool:
        try:
            await self.client.models.retrieve(self.model)
        except Exception as e:
            logger.warning("OpenAI embeddings unavailable (model=%s): %s", self.model, e)
            return False
        return True


__all__ = ["OpenAIEmbeddingProvider", "MODEL_DIMENSIONS"]
