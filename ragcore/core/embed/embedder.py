import logging
import time
from typing import Callable, List, Optional

from ragcore.config.settings import EmbeddingConfig, settings
from ragcore.core.cache import TTLCache
from ragcore.core.embed.providers import EmbeddingProvider
from ragcore.core.errors import (
    DimensionMismatchError,
    EmbeddingBatchError,
    EmbeddingProviderError,
)
from ragcore.models.chunk import TextChunk

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class Embedder:
    """
    Generates embeddings for chunks and queries through a single provider.
    - One provider/model per Embedder, so every vector it produces has the
      configured dimensionality; anything else is rejected.
    - Batches are all-or-nothing: a failure partway raises EmbeddingBatchError
      with the number of vectors produced before the failure.
    - Optional delay between sequential provider calls.
    """

    def __init__(self,
                 provider: EmbeddingProvider,
                 config: Optional[EmbeddingConfig] = None,
                 query_cache: Optional[TTLCache] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.provider = provider
        self.config = config or settings.embedding
        self.query_cache = query_cache
        self._sleep = sleep

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    @property
    def dimensions(self) -> int:
        return self.config.vector_dim

    def embed_query(self, query: str) -> List[float]:
        """Single-text variant, cached per model when a cache was supplied."""
        if self.query_cache is not None:
            cached = self.query_cache.get(query, self.model_name)
            if cached is not None:
                return cached

        vector = self.provider.embed(query)
        self._check_dimensions(vector)

        if self.query_cache is not None:
            self.query_cache.set(query, self.model_name, vector)
        return vector

    def embed_chunks(self, chunks: List[TextChunk], on_progress: Optional[ProgressCallback] = None) -> List[List[float]]:
        return self.embed_texts([c.text for c in chunks], on_progress=on_progress)

    def embed_texts(self, texts: List[str], on_progress: Optional[ProgressCallback] = None) -> List[List[float]]:
        if not texts:
            return []

        total = len(texts)
        embeddings: List[List[float]] = []
        step = max(1, self.config.batch_size) if self.provider.supports_batch else 1

        for i in range(0, total, step):
            batch = texts[i:i + step]
            try:
                if step == 1:
                    vectors = [self.provider.embed(batch[0])]
                else:
                    vectors = self.provider.embed_many(batch)
            except EmbeddingProviderError as e:
                raise EmbeddingBatchError(
                    f"Embedding failed after {len(embeddings)}/{total} chunks: {e}",
                    succeeded=len(embeddings), total=total
                ) from e

            if len(vectors) != len(batch):
                raise EmbeddingBatchError(
                    f"Provider returned {len(vectors)} embeddings for {len(batch)} texts",
                    succeeded=len(embeddings), total=total
                )
            for v in vectors:
                self._check_dimensions(v)
            embeddings.extend(vectors)

            if on_progress:
                on_progress(len(embeddings), total)

            # Small delay to avoid overwhelming the inference endpoint
            if self.config.request_delay_seconds > 0 and len(embeddings) < total:
                self._sleep(self.config.request_delay_seconds)

        logger.info(f"Generated {len(embeddings)} embeddings with {self.model_name} ({self.dimensions} dims)")
        return embeddings

    def _check_dimensions(self, vector: List[float]) -> None:
        if self.dimensions and len(vector) != self.dimensions:
            raise DimensionMismatchError(expected=self.dimensions, actual=len(vector))
