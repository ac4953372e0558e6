"""Embedding providers: the external models that turn text into vectors."""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import httpx

from ragcore.config.settings import EmbeddingConfig, settings
from ragcore.core.errors import EmbeddingProviderError

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    model_name: str

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        pass

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        """One call per text unless the provider supports multi-input requests."""
        return [self.embed(t) for t in texts]

    @property
    def supports_batch(self) -> bool:
        return False

    def check_availability(self) -> Dict[str, object]:
        return {"available": True, "has_model": True, "error": None}

    def close(self) -> None:
        pass


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Ollama `/api/embeddings` client with an explicit request timeout."""

    def __init__(self, config: Optional[EmbeddingConfig] = None, client: Optional[httpx.Client] = None):
        self.config = config or settings.embedding
        self.model_name = self.config.model_name
        self.base_url = self.config.base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=self.config.timeout_seconds)

    def embed(self, text: str) -> List[float]:
        try:
            response = self.client.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model_name, "prompt": text},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise EmbeddingProviderError(
                f"Ollama embedding request timed out after {self.config.timeout_seconds}s"
            ) from e
        except httpx.HTTPStatusError as e:
            raise EmbeddingProviderError(
                f"Ollama API error: {e.response.status_code} - {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingProviderError(f"Failed to generate embedding: {e}") from e

        embedding = data.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingProviderError("Invalid response from Ollama: missing embedding array")
        return [float(v) for v in embedding]

    def check_availability(self) -> Dict[str, object]:
        """Checks the endpoint is reachable and the embedding model has been pulled."""
        try:
            response = self.client.get(f"{self.base_url}/api/tags")
            response.raise_for_status()
            models = response.json().get("models", [])
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to connect to Ollama at {self.base_url}: {e}")
            return {"available": False, "has_model": False, "error": str(e)}

        names = {m.get("name", "") for m in models}
        has_model = self.model_name in names or f"{self.model_name}:latest" in names
        if not has_model:
            logger.warning(f"{self.model_name} model not found. Please run: ollama pull {self.model_name}")
        return {"available": True, "has_model": has_model, "error": None}

    def close(self) -> None:
        self.client.close()


def create_provider(config: Optional[EmbeddingConfig] = None) -> EmbeddingProvider:
    config = config or settings.embedding
    if config.provider == "ollama":
        return OllamaEmbeddingProvider(config)
    if config.provider == "sentence-transformers":
        # Imported lazily: pulls in torch
        from ragcore.core.embed.local_provider import SentenceTransformerProvider
        return SentenceTransformerProvider(config)
    raise ValueError(f"Unknown embedding provider: {config.provider}")
