import logging
import time
import uuid
from typing import Callable, Dict, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.http import models as rest

from ragcore.config.settings import QdrantConfig, settings
from ragcore.core.errors import (
    DimensionMismatchError,
    EmbeddingModelMismatchError,
    JobStaleError,
    StorageWriteError,
)
from ragcore.models.chunk import TextChunk
from ragcore.models.document import JobLease
from ragcore.models.query import OwnerEmbeddingStats, SimilarityMatch
from ragcore.storage.base import VectorStore

logger = logging.getLogger(__name__)

_POINT_NAMESPACE = uuid.UUID("6f1c9a52-8d1e-4b7a-9c3e-2a5d7e0b4f18")


def _point_id(document_id: str, chunk_index: int) -> str:
    """Deterministic point id, so re-storing a chunk overwrites instead of duplicating."""
    return str(uuid.uuid5(_POINT_NAMESPACE, f"{document_id}:{chunk_index}"))


def _match(key: str, value: str, **more: str) -> rest.Filter:
    conditions = {key: value, **more}
    return rest.Filter(must=[
        rest.FieldCondition(key=k, match=rest.MatchValue(value=v)) for k, v in conditions.items()
    ])


class QdrantVectorStore(VectorStore):
    """
    Implements VectorStore using Qdrant (local storage or a remote cluster).
    - One collection with a fixed vector size; owners are separated by an
      indexed owner_id payload filter on every query.
    - Stores float vectors only; the compression codec applies to the SQL backend.
    - Writes are not transactional with the job queue. A leased write is
      checked against `lease_check` after the upsert and its own points
      (tagged with a per-write id) are removed if the lease was lost.
    """

    def __init__(self,
                 config: Optional[QdrantConfig] = None,
                 vector_dim: Optional[int] = None,
                 client: Optional[QdrantClient] = None,
                 lease_check: Optional[Callable[[JobLease], bool]] = None):
        self.config = config or settings.qdrant
        self.vector_dim = vector_dim or settings.embedding.vector_dim
        if client is not None:
            self.client = client
        elif self.config.mode == "cloud":
            self.client = QdrantClient(url=self.config.cloud_url)
        else:
            self.client = QdrantClient(path=self.config.local_path)
        self.collection = self.config.collection_name
        self.lease_check = lease_check
        self._ensure_collection()

    def _ensure_collection(self):
        collections = self.client.get_collections().collections
        if any(c.name == self.collection for c in collections):
            return

        logger.info(f"Creating Qdrant collection: {self.collection} ({self.vector_dim} dims)")
        self.client.create_collection(
            collection_name=self.collection,
            vectors_config=rest.VectorParams(size=self.vector_dim, distance=rest.Distance.COSINE),
            hnsw_config=rest.HnswConfigDiff(
                m=self.config.hnsw_m,
                ef_construct=self.config.hnsw_ef_construct
            )
        )
        for field in ["owner_id", "document_id"]:
            self.client.create_payload_index(
                collection_name=self.collection,
                field_name=field,
                field_schema=rest.PayloadSchemaType.KEYWORD
            )

    def _stored_model(self, owner_id: str) -> Optional[str]:
        points, _ = self.client.scroll(
            collection_name=self.collection,
            scroll_filter=_match("owner_id", owner_id),
            limit=1,
            with_payload=["embedding_model"],
            with_vectors=False,
        )
        return points[0].payload.get("embedding_model") if points else None

    def _holds(self, lease: JobLease) -> bool:
        return self.lease_check is None or self.lease_check(lease)

    def store(self,
              owner_id: str,
              document_id: str,
              chunks: List[TextChunk],
              vectors: List[List[float]],
              embedding_model: str,
              metadata: Optional[Dict] = None,
              lease: Optional[JobLease] = None) -> int:
        if len(chunks) != len(vectors):
            raise ValueError(f"Got {len(vectors)} vectors for {len(chunks)} chunks")
        if not chunks:
            return 0

        for v in vectors:
            if len(v) != self.vector_dim:
                raise DimensionMismatchError(expected=self.vector_dim, actual=len(v), owner_id=owner_id)

        stored_model = self._stored_model(owner_id)
        if stored_model is not None and stored_model != embedding_model:
            raise EmbeddingModelMismatchError(stored_model, embedding_model, owner_id)

        if lease is not None and not self._holds(lease):
            raise JobStaleError(f"Job {lease.job_id} is no longer held by {lease.worker_id}")

        inserted_at = time.time_ns()
        write_id = uuid.uuid4().hex
        points = [
            rest.PointStruct(
                id=_point_id(document_id, chunk.index),
                vector=[float(x) for x in vector],
                payload={
                    **(metadata or {}),
                    "owner_id": owner_id,
                    "document_id": document_id,
                    "chunk_index": chunk.index,
                    "start_char": chunk.start_char,
                    "end_char": chunk.end_char,
                    "chunk_text": chunk.text,
                    "embedding_model": embedding_model,
                    "inserted_at": inserted_at,
                    "write_id": write_id,
                },
            )
            for chunk, vector in zip(chunks, vectors)
        ]

        try:
            self.client.upsert(collection_name=self.collection, points=points, wait=True)
        except Exception as e:
            # Remove whatever part of the batch landed before surfacing the failure
            self.delete_document(document_id)
            raise StorageWriteError(f"Failed to store embeddings for document {document_id}: {e}") from e

        if lease is not None and not self._holds(lease):
            # Only this write's points; a new lease holder may have overwritten some
            self.client.delete(
                collection_name=self.collection,
                points_selector=rest.FilterSelector(filter=_match("document_id", document_id, write_id=write_id)),
                wait=True
            )
            raise JobStaleError(f"Job {lease.job_id} was reclaimed while storing; discarded {len(points)} points")

        logger.info(f"Stored {len(points)} points for document {document_id} in {self.collection}")
        return len(points)

    def search(self, query_vector: List[float], owner_id: str, top_k: int, threshold: float) -> List[SimilarityMatch]:
        if len(query_vector) != self.vector_dim:
            raise DimensionMismatchError(expected=self.vector_dim, actual=len(query_vector), owner_id=owner_id)

        if top_k <= 0:
            return []

        # Widen the fetch until every point tied with the top_k-th score is in
        # hand; Qdrant picks arbitrarily among ties at its own cutoff
        limit = top_k
        while True:
            results = self.client.query_points(
                collection_name=self.collection,
                query=query_vector,
                limit=limit,
                query_filter=_match("owner_id", owner_id),
                score_threshold=threshold,
                with_payload=True,
                search_params=rest.SearchParams(hnsw_ef=self.config.hnsw_ef)
            ).points
            if len(results) < limit or results[-1].score < results[top_k - 1].score:
                break
            limit *= 2

        # Equal scores fall back to insertion order
        results = sorted(results, key=lambda r: (
            -r.score, r.payload.get("inserted_at", 0), r.payload.get("chunk_index", 0)
        ))[:top_k]
        return [
            SimilarityMatch(
                id=str(r.id),
                document_id=r.payload["document_id"],
                chunk_text=r.payload["chunk_text"],
                chunk_index=r.payload["chunk_index"],
                similarity=r.score,
            )
            for r in results
        ]

    def _count(self, key: str, value: str) -> int:
        return self.client.count(
            collection_name=self.collection,
            count_filter=_match(key, value),
            exact=True
        ).count

    def _delete(self, key: str, value: str) -> int:
        count = self._count(key, value)
        if count:
            self.client.delete(
                collection_name=self.collection,
                points_selector=rest.FilterSelector(filter=_match(key, value)),
                wait=True
            )
        return count

    def delete_document(self, document_id: str) -> int:
        return self._delete("document_id", document_id)

    def count_for_document(self, document_id: str) -> int:
        return self._count("document_id", document_id)

    def owner_stats(self, owner_id: str) -> OwnerEmbeddingStats:
        documents = set()
        embedding_model = None
        offset = None
        while True:
            points, offset = self.client.scroll(
                collection_name=self.collection,
                scroll_filter=_match("owner_id", owner_id),
                limit=256,
                offset=offset,
                with_payload=["document_id", "embedding_model"],
                with_vectors=False,
            )
            for p in points:
                documents.add(p.payload.get("document_id"))
                embedding_model = embedding_model or p.payload.get("embedding_model")
            if offset is None:
                break

        embedding_count = self._count("owner_id", owner_id)
        return OwnerEmbeddingStats(
            owner_id=owner_id,
            embedding_count=embedding_count,
            document_count=len(documents),
            dimensions=self.vector_dim if embedding_count else None,
            embedding_model=embedding_model,
        )

    def clear_owner(self, owner_id: str) -> int:
        removed = self._delete("owner_id", owner_id)
        logger.info(f"Cleared {removed} points for owner {owner_id}")
        return removed
