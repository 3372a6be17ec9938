"""
Local ONNX embeddings
=====================

Runs ``all-MiniLM-L6-v2`` in-process with onnxruntime. Model assets are
fetched from HuggingFace on first use and cached under ``model_dir``.

Vectors are the mean of ``last_hidden_state`` over every position
(``[CLS]``/``[SEP]`` included), L2-normalized, 384 floats.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, List, Sequence

import aiohttp
import numpy as np
import onnxruntime as ort

from engram.errors import ParseError, ProviderUnavailable
from . import l2_normalize
from .wordpiece import WordPieceTokenizer

logger = logging.getLogger(__name__)

HF_BASE_URL = "https://huggingface.co/sentence-transformers/all-MiniLM-L6-v2/resolve/main"
DIMENSION = 384
OUTPUT_NAME = "last_hidden_state"
DOWNLOAD_CHUNK = 1 << 16

# local filename -> path under HF_BASE_URL
MODEL_FILES: Dict[str, str] = {
    "model.onnx": "onnx/model.onnx",
    "vocab.txt": "vocab.txt",
    "tokenizer_config.json": "tokenizer_config.json",
}


def _detect_providers() -> List[str]:
    """Prefer CUDA when onnxruntime was built with it."""
    available = set(ort.get_available_providers())
    providers: List[str] = []
    if "CUDAExecutionProvider" in available:
        providers.append("CUDAExecutionProvider")
    providers.append("CPUExecutionProvider")
    return providers


def mean_pool(hidden: np.ndarray) -> np.ndarray:
    """Average a ``(1, seq, dim)`` or ``(seq, dim)`` hidden state over ``seq``."""
    arr = np.asarray(hidden, dtype=np.float32)
    if arr.ndim == 3:
        arr = arr[0]
    if arr.ndim != 2 or arr.shape[0] == 0:
        raise ParseError(f"Unexpected hidden state shape {np.shape(hidden)}")
    return arr.mean(axis=0).astype(np.float32)


class LocalOnnxProvider:
    """In-process sentence embeddings; no network after the first download."""

    def __init__(
        self,
        model_dir: str | os.PathLike,
        model_name: str = "all-MiniLM-L6-v2",
        base_url: str = HF_BASE_URL,
        download_timeout: float = 300.0,
    ):
        self.model_dir = Path(model_dir).expanduser() / model_name
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self.download_timeout = download_timeout

        self._session: ort.InferenceSession | None = None
        self._tokenizer: WordPieceTokenizer | None = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "local-onnx"

    @property
    def dimension(self) -> int:
        return DIMENSION

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Download missing assets and load the ONNX session (once)."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            await self._ensure_assets()
            self._session, self._tokenizer = await asyncio.to_thread(self._load)
            self._initialized = True
            logger.info("Loaded local embedding model from %s", self.model_dir)

    async def _ensure_assets(self) -> None:
        self.model_dir.mkdir(parents=True, exist_ok=True)
        missing = [name for name in MODEL_FILES if not (self.model_dir / name).exists()]
        if not missing:
            return

        timeout = aiohttp.ClientTimeout(total=self.download_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for name in missing:
                await self._download(session, f"{self.base_url}/{MODEL_FILES[name]}", self.model_dir / name)

    async def _download(self, session: aiohttp.ClientSession, url: str, dest: Path) -> None:
        logger.info("Downloading %s", url)
        tmp = dest.with_suffix(dest.suffix + ".part")
        try:
            async with session.get(url) as resp:
                resp.raise_for_status()
                with open(tmp, "wb") as fh:
                    async for chunk in resp.content.iter_chunked(DOWNLOAD_CHUNK):
                        fh.write(chunk)
            os.replace(tmp, dest)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            tmp.unlink(missing_ok=True)
            raise ProviderUnavailable(f"Failed to download {url}: {e}") from e

    def _load(self):
        vocab_path = self.model_dir / "vocab.txt"
        model_path = self.model_dir / "model.onnx"
        try:
            tokenizer = WordPieceTokenizer.from_file(vocab_path)
        except (OSError, ValueError) as e:
            raise ParseError(f"Corrupt vocabulary at {vocab_path}: {e}") from e
        try:
            session = ort.InferenceSession(str(model_path), providers=_detect_providers())
        except Exception as e:
            raise ParseError(f"Corrupt ONNX model at {model_path}: {e}") from e
        return session, tokenizer

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def _infer(self, text: str) -> np.ndarray:
        ids = self._tokenizer.encode(text)
        input_ids = np.asarray([ids], dtype=np.int64)
        feeds = {
            "input_ids": input_ids,
            "attention_mask": np.ones_like(input_ids),
            "token_type_ids": np.zeros_like(input_ids),
        }
        outputs = self._session.run([OUTPUT_NAME], feeds)
        return l2_normalize(mean_pool(outputs[0]))

    async def embed(self, text: str) -> np.ndarray:
        await self.initialize()
        return await asyncio.to_thread(self._infer, text)

    async def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Sequential per-text inference (inputs differ in length)."""
        await self.initialize()

        def _run() -> List[np.ndarray]:
            return [self._infer(t) for t in texts]

        return await asyncio.to_thread(_run)

    async def is_available(self) -> bool:
        try:
            await self.initialize()
        except Exception as e:
            logger.warning("Local embedding model unavailable: %s", e)
            return False
        return True


__all__ = ["LocalOnnxProvider", "mean_pool", "DIMENSION", "HF_BASE_URL"]
