import logging
from typing import Dict, List, Optional

import numpy as np
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ragcore.config.settings import CompressionConfig, settings
from ragcore.core.embed import compression
from ragcore.core.errors import (
    DimensionMismatchError,
    EmbeddingModelMismatchError,
    JobStaleError,
    StorageWriteError,
)
from ragcore.core.retrieve.similarity import cosine_similarities, rank
from ragcore.models.chunk import TextChunk
from ragcore.models.document import JobLease, JobStatus
from ragcore.models.query import OwnerEmbeddingStats, SimilarityMatch
from ragcore.storage.base import VectorStore
from ragcore.storage.db import ChunkEmbeddingRow, JobRow

logger = logging.getLogger(__name__)


class SQLVectorStore(VectorStore):
    """
    Implements VectorStore on the chunk_embeddings table.
    - Vectors live in a JSON column, optionally quantized (int8/int16).
    - Search loads the owner's vectors, decompresses where needed and scores
      them with numpy. Fine for the per-owner corpus sizes a document
      assistant sees; use the Qdrant backend for anything larger.
    - A document's rows are written in a single transaction, so readers see
      either none or all of them.
    """

    def __init__(self, session_factory: sessionmaker, config: Optional[CompressionConfig] = None):
        self.session_factory = session_factory
        self.config = config or settings.compression

    def _owner_profile(self, session, owner_id: str) -> Optional[tuple]:
        stmt = (
            select(ChunkEmbeddingRow.dimensions, ChunkEmbeddingRow.embedding_model)
            .where(ChunkEmbeddingRow.owner_id == owner_id)
            .order_by(ChunkEmbeddingRow.id)
            .limit(1)
        )
        return session.execute(stmt).first()

    @staticmethod
    def _lease_held(session, lease: JobLease) -> bool:
        # Checked after the inserts, inside their transaction; FOR UPDATE holds
        # off a concurrent recovery until we commit
        stmt = (
            select(JobRow.id)
            .where(
                JobRow.id == lease.job_id,
                JobRow.worker_id == lease.worker_id,
                JobRow.status == JobStatus.processing.value,
            )
            .with_for_update()
        )
        return session.execute(stmt).first() is not None

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

        dims = len(vectors[0])
        for v in vectors:
            if len(v) != dims:
                raise DimensionMismatchError(expected=dims, actual=len(v), owner_id=owner_id)

        method = self.config.method
        with self.session_factory() as session:
            profile = self._owner_profile(session, owner_id)
            if profile is not None:
                stored_dims, stored_model = profile
                if stored_dims != dims:
                    raise DimensionMismatchError(expected=stored_dims, actual=dims, owner_id=owner_id)
                if stored_model != embedding_model:
                    raise EmbeddingModelMismatchError(stored_model, embedding_model, owner_id)

            rows = []
            for chunk, vector in zip(chunks, vectors):
                if method == "none":
                    values, v_min, v_max = [float(x) for x in vector], None, None
                else:
                    packed = compression.compress(vector, method)
                    values, v_min, v_max = packed.values, packed.min, packed.max

                rows.append(ChunkEmbeddingRow(
                    owner_id=owner_id,
                    document_id=document_id,
                    chunk_index=chunk.index,
                    start_char=chunk.start_char,
                    end_char=chunk.end_char,
                    chunk_text=chunk.text,
                    embedding=values,
                    embedding_model=embedding_model,
                    dimensions=dims,
                    compression_method=method,
                    compression_min=v_min,
                    compression_max=v_max,
                    metadata_json=dict(metadata or {}),
                ))

            try:
                session.add_all(rows)
                session.flush()
                if lease is not None and not self._lease_held(session, lease):
                    session.rollback()
                    raise JobStaleError(
                        f"Job {lease.job_id} is no longer held by {lease.worker_id}; "
                        f"discarded {len(rows)} embeddings"
                    )
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageWriteError(f"Failed to store embeddings for document {document_id}: {e}") from e

        logger.info(f"Stored {len(rows)} embeddings for document {document_id} (compression={method})")
        return len(rows)

    def search(self, query_vector: List[float], owner_id: str, top_k: int, threshold: float) -> List[SimilarityMatch]:
        stmt = (
            select(ChunkEmbeddingRow)
            .where(ChunkEmbeddingRow.owner_id == owner_id)
            .order_by(ChunkEmbeddingRow.id)
        )
        with self.session_factory() as session:
            rows = session.execute(stmt).scalars().all()

        if not rows:
            return []

        stored_dims = rows[0].dimensions
        if len(query_vector) != stored_dims:
            raise DimensionMismatchError(expected=stored_dims, actual=len(query_vector), owner_id=owner_id)

        matrix = np.array([self._decode(r) for r in rows], dtype=np.float64)
        scores = cosine_similarities(query_vector, matrix)
        ranked = rank(scores, [r.id for r in rows], top_k, threshold)

        return [
            SimilarityMatch(
                id=rows[i].id,
                document_id=rows[i].document_id,
                chunk_text=rows[i].chunk_text,
                chunk_index=rows[i].chunk_index,
                similarity=score,
            )
            for i, score in ranked
        ]

    @staticmethod
    def _decode(row: ChunkEmbeddingRow) -> List[float]:
        if row.compression_method == "none":
            return row.embedding
        return compression.decompress(row.embedding, row.compression_method,
                                      row.compression_min, row.compression_max)

    def delete_document(self, document_id: str) -> int:
        with self.session_factory() as session:
            result = session.execute(
                delete(ChunkEmbeddingRow).where(ChunkEmbeddingRow.document_id == document_id)
            )
            session.commit()
            return result.rowcount or 0

    def count_for_document(self, document_id: str) -> int:
        stmt = select(func.count()).select_from(ChunkEmbeddingRow).where(
            ChunkEmbeddingRow.document_id == document_id
        )
        with self.session_factory() as session:
            return session.execute(stmt).scalar_one()

    def owner_stats(self, owner_id: str) -> OwnerEmbeddingStats:
        stmt = select(
            func.count(ChunkEmbeddingRow.id),
            func.count(func.distinct(ChunkEmbeddingRow.document_id)),
        ).where(ChunkEmbeddingRow.owner_id == owner_id)

        with self.session_factory() as session:
            embedding_count, document_count = session.execute(stmt).one()
            profile = self._owner_profile(session, owner_id)

        return OwnerEmbeddingStats(
            owner_id=owner_id,
            embedding_count=embedding_count,
            document_count=document_count,
            dimensions=profile[0] if profile else None,
            embedding_model=profile[1] if profile else None,
        )

    def clear_owner(self, owner_id: str) -> int:
        with self.session_factory() as session:
            result = session.execute(
                delete(ChunkEmbeddingRow).where(ChunkEmbeddingRow.owner_id == owner_id)
            )
            session.commit()
        removed = result.rowcount or 0
        logger.info(f"Cleared {removed} embeddings for owner {owner_id}")
        return removed
