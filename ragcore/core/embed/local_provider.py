import logging
import threading
from typing import List, Optional

from sentence_transformers import SentenceTransformer

from ragcore.config.settings import EmbeddingConfig, settings
from ragcore.core.embed.providers import EmbeddingProvider
from ragcore.core.errors import EmbeddingProviderError

logger = logging.getLogger(__name__)


class SentenceTransformerProvider(EmbeddingProvider):
    """
    In-process embedding model.
    - Loaded once per process and shared by every instance.
    - Encodes whole batches in one call.
    """

    _models = {}
    _lock = threading.Lock()

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.config = config or settings.embedding
        self.model_name = self.config.model_name
        self._load_model()

    def _load_model(self):
        """Loads the sentence-transformer model onto CPU."""
        with SentenceTransformerProvider._lock:
            if self.model_name not in SentenceTransformerProvider._models:
                logger.info(f"Loading embedding model: {self.model_name}...")
                SentenceTransformerProvider._models[self.model_name] = SentenceTransformer(self.model_name, device="cpu")
        self.model = SentenceTransformerProvider._models[self.model_name]

    @property
    def supports_batch(self) -> bool:
        return True

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        try:
            embeddings = self.model.encode(
                texts,
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                normalize_embeddings=self.config.normalise
            )
        except Exception as e:
            raise EmbeddingProviderError(f"Local embedding model failed: {e}") from e
        return [e.tolist() for e in embeddings]
