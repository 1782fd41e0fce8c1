"""Embedding generation against the local Ollama model.

Handles:
- One-time model initialization and dimension detection
- Batched, cache-aware embedding of passages
- L2 normalization so cosine similarity is a dot product
"""
import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import structlog

from docrag.exceptions import EmbeddingError
from docrag.llm_client import OllamaClient
from docrag.rag.cache import EmbeddingCache

logger = structlog.get_logger()

DEFAULT_BATCH_SIZE = 50


def normalize(vector: Sequence[float]) -> List[float]:
    """Scale a vector to unit length.

    Raises:
        EmbeddingError: If the vector is empty or has zero norm
    """
    array = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(array)) if array.size else 0.0
    if norm == 0.0 or not np.isfinite(norm):
        raise EmbeddingError(
            "Cannot normalize a zero or non-finite embedding",
            operation="normalize",
            dimension=int(array.size),
        )
    return (array / norm).tolist()


class EmbeddingGenerator:
    """Produces unit-length embeddings for passages and queries."""

    def __init__(
        self,
        client: OllamaClient,
        model: str,
        cache: Optional[EmbeddingCache] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        """Initialize the generator.

        Args:
            client: Ollama client used to run the model
            model: Embedding model name
            cache: Optional embedding cache consulted before every model call
            batch_size: Number of texts embedded concurrently per batch
        """
        self.client = client
        self.model = model
        self.cache = cache
        self.batch_size = batch_size

        self.dimension: Optional[int] = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Load the model and detect its dimension.

        Safe to call repeatedly and concurrently: callers queue on one lock and
        only the first performs the (potentially slow) load.

        Raises:
            EmbeddingError: If the model cannot be loaded
        """
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            logger.info("initializing_embedding_model", model=self.model)
            start = time.perf_counter()

            probe = await self._invoke_model("test")
            self.dimension = len(probe)
            self._initialized = True

            logger.info(
                "embedding_model_initialized",
                model=self.model,
                dimension=self.dimension,
                init_time_ms=round((time.perf_counter() - start) * 1000),
            )

    async def _invoke_model(self, text: str) -> List[float]:
        try:
            response = await self.client.embeddings(prompt=text, model=self.model)
        except Exception as e:
            logger.error(
                "embedding_generation_failed",
                model=self.model,
                text_preview=text[:100],
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EmbeddingError(
                f"Failed to generate embedding: {e}",
                operation="embed",
                model=self.model,
            ) from e

        embedding = response.get("embedding") or []
        if not embedding:
            raise EmbeddingError(
                "Empty embedding returned by model",
                operation="embed",
                model=self.model,
            )
        return embedding

    async def _embed_with_cache(self, text: str) -> List[float]:
        if self.cache is not None:
            cached = self.cache.get(text)
            if cached is not None:
                return cached

        vector = normalize(await self._invoke_model(text))

        if self.dimension is not None and len(vector) != self.dimension:
            raise EmbeddingError(
                f"Embedding dimension mismatch: expected {self.dimension}, got {len(vector)}",
                operation="embed",
                model=self.model,
            )

        if self.cache is not None:
            self.cache.set(text, vector)

        return vector

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed texts in order, batching for throughput.

        Args:
            texts: Texts to embed

        Returns:
            One unit-length vector per input text, in input order

        Raises:
            EmbeddingError: If initialization or any single embedding fails;
                no partial results are returned
        """
        if not texts:
            return []

        await self.initialize()

        start = time.perf_counter()
        embeddings: List[List[float]] = []

        for batch_start in range(0, len(texts), self.batch_size):
            batch = texts[batch_start : batch_start + self.batch_size]

            # The first failure cancels the rest of the batch
            try:
                async with asyncio.TaskGroup() as group:
                    tasks = [group.create_task(self._embed_with_cache(text)) for text in batch]
            except ExceptionGroup as errors:
                raise errors.exceptions[0]

            embeddings.extend(task.result() for task in tasks)

            logger.debug(
                "embeddings_batch_generated",
                processed=len(embeddings),
                total=len(texts),
            )

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "embeddings_generated",
            count=len(texts),
            processing_time_ms=round(elapsed_ms),
            avg_time_per_text_ms=round(elapsed_ms / len(texts), 2),
        )

        return embeddings

    async def embed_one(self, text: str) -> List[float]:
        """Embed a single text (typically a query)."""
        await self.initialize()
        return await self._embed_with_cache(text)

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "name": self.model,
            "initialized": self._initialized,
            "dimension": self.dimension,
            "batch_size": self.batch_size,
        }
