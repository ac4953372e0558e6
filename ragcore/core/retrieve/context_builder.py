import logging
from typing import List, Optional

from ragcore.config.settings import RetrievalConfig, settings
from ragcore.core.cache import TTLCache
from ragcore.core.embed.embedder import Embedder
from ragcore.models.query import ContextResult, SimilarityMatch
from ragcore.storage.base import VectorStore

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"


def format_block(position: int, match: SimilarityMatch, text: Optional[str] = None) -> str:
    return f"[Context {position}] (similarity: {match.similarity * 100:.1f}%)\n{match.chunk_text if text is None else text}"


def format_context(matches: List[SimilarityMatch]) -> str:
    return CONTEXT_SEPARATOR.join(format_block(i, m) for i, m in enumerate(matches, start=1))


class ContextBuilder:
    """
    Assembles the retrieval context handed to the generation step.
    - Embeds the query, searches the owner's chunks and labels each hit.
    - Keeps the block under max_context_chars by dropping the lowest-similarity
      chunks first; a single oversized chunk is cut to fit.
    - No hits means an empty context, never an error.
    """

    def __init__(self,
                 embedder: Embedder,
                 vector_store: VectorStore,
                 config: Optional[RetrievalConfig] = None,
                 cache: Optional[TTLCache] = None):
        self.embedder = embedder
        self.vector_store = vector_store
        self.config = config or settings.retrieval
        self.cache = cache

    def build(self,
              query: str,
              owner_id: str,
              top_k: Optional[int] = None,
              threshold: Optional[float] = None) -> ContextResult:
        top_k = self.config.top_k if top_k is None else top_k
        threshold = self.config.similarity_threshold if threshold is None else threshold

        if not query.strip() or top_k <= 0:
            return ContextResult(context_text="", sources_used=[])

        cache_query = f"{top_k}|{threshold}|{query}"
        if self.cache is not None:
            cached = self.cache.get(cache_query, owner_id)
            if cached is not None:
                return cached

        query_vector = self.embedder.embed_query(query)
        matches = self.vector_store.search(query_vector, owner_id, top_k, threshold)

        if not matches:
            logger.info(f"No chunks above threshold {threshold} for owner {owner_id}")
            result = ContextResult(context_text="", sources_used=[])
        else:
            result = self._fit_budget(matches)
            logger.info(
                f"Built context from {len(result.sources_used)} chunks "
                f"({len(result.context_text)} chars, {result.dropped_for_budget} dropped)"
            )

        if self.cache is not None:
            self.cache.set(cache_query, owner_id, result)
        return result

    def _fit_budget(self, matches: List[SimilarityMatch]) -> ContextResult:
        budget = self.config.max_context_chars
        kept = list(matches)  # highest similarity first

        while len(kept) > 1 and len(format_context(kept)) > budget:
            kept.pop()

        context_text = format_context(kept)
        if len(context_text) > budget:
            header_len = len(format_block(1, kept[0], text=""))
            truncated = kept[0].chunk_text[:max(0, budget - header_len)]
            context_text = format_block(1, kept[0], text=truncated)

        return ContextResult(
            context_text=context_text,
            sources_used=kept,
            dropped_for_budget=len(matches) - len(kept),
        )
