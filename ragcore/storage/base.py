from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ragcore.models.chunk import TextChunk
from ragcore.models.document import JobLease
from ragcore.models.query import OwnerEmbeddingStats, SimilarityMatch


class VectorStore(ABC):
    @abstractmethod
    def store(self,
              owner_id: str,
              document_id: str,
              chunks: List[TextChunk],
              vectors: List[List[float]],
              embedding_model: str,
              metadata: Optional[Dict] = None,
              lease: Optional[JobLease] = None) -> int:
        """
        All-or-nothing insert of one record per chunk. Returns the count stored.
        With a `lease`, nothing is kept unless that worker still holds the
        job when the write lands; JobStaleError otherwise.
        """
        pass

    @abstractmethod
    def search(self, query_vector: List[float], owner_id: str, top_k: int, threshold: float) -> List[SimilarityMatch]:
        pass

    @abstractmethod
    def delete_document(self, document_id: str) -> int:
        pass

    @abstractmethod
    def count_for_document(self, document_id: str) -> int:
        pass

    @abstractmethod
    def owner_stats(self, owner_id: str) -> OwnerEmbeddingStats:
        pass

    @abstractmethod
    def clear_owner(self, owner_id: str) -> int:
        """Removes every embedding of an owner, e.g. before switching embedding models."""
        pass


class FileStore(ABC):
    @abstractmethod
    def save_upload(self, document_id: str, file_name: str, file_bytes: bytes) -> str:
        """Persists uploaded bytes and returns a location fetch() understands."""
        pass

    @abstractmethod
    def fetch(self, location: str) -> bytes:
        pass

    @abstractmethod
    def delete(self, location: str) -> None:
        pass
