"""Text embedders.

SentenceTransformerEmbedder runs a local sentence-transformers model in a
thread pool executor so encoding never blocks the event loop.
"""

from __future__ import annotations

import asyncio
import atexit
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from src.agentcore.errors import EmbedderError
from src.utils.logger import get_logger

logger = get_logger("Embedder")

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class Embedder(ABC):
    """Computes one embedding vector per input text."""

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        ...


class SentenceTransformerEmbedder(Embedder):
    """
    Async wrapper around a local sentence-transformers model.

    The model is loaded lazily on first use and reused afterwards.
    Vectors are L2-normalised.
    """

    def __init__(self, model_name: str = DEFAULT_EMBEDDING_MODEL, max_workers: int = 2):
        self.model_name = model_name
        self._model = None
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="embedder")
        # Guards model loading only; encoding runs without it
        self._load_lock: Optional[asyncio.Lock] = None
        atexit.register(self._executor.shutdown, wait=False)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        await self._ensure_loaded()
        loop = asyncio.get_running_loop()
        try:
            vectors = await loop.run_in_executor(self._executor, self._encode_batch, texts)
        except Exception as e:
            logger.error(f"❌ Embedding {len(texts)} texts failed: {e}")
            raise EmbedderError(f"Failed to embed texts: {e}") from e
        return [v.tolist() for v in vectors]

    async def _ensure_loaded(self) -> None:
        if self._model is not None:
            return
        if self._load_lock is None:
            self._load_lock = asyncio.Lock()
        async with self._load_lock:
            if self._model is None:
                loop = asyncio.get_running_loop()
                logger.info(f"Loading embedding model {self.model_name}")
                try:
                    self._model = await loop.run_in_executor(
                        self._executor, self._import_and_load, self.model_name
                    )
                except (OSError, RuntimeError, ImportError, ValueError) as e:
                    logger.error(f"❌ Failed to load embedding model {self.model_name}: {e}")
                    raise EmbedderError(f"Failed to load embedding model: {e}") from e
                logger.info(f"✅ Embedding model {self.model_name} loaded")

    @staticmethod
    def _import_and_load(model_name: str):
        """Synchronous model load, runs in the thread pool."""
        from sentence_transformers import SentenceTransformer

        return SentenceTransformer(model_name)

    def _encode_batch(self, texts: list[str]):
        return self._model.encode(
            texts, normalize_embeddings=True, batch_size=32, show_progress_bar=False
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __repr__(self) -> str:
        loaded = "loaded" if self._model is not None else "not loaded"
        return f"<SentenceTransformerEmbedder model={self.model_name} status={loaded}>"
