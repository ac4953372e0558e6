"""
Document record operations.

Lifecycle writes for the documents table plus the status report the UI polls.
Status transitions are driven by the ingestion pipeline only.

Dependencies: sqlalchemy, ragcore.storage.db
"""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ragcore.models.document import DocumentRecord, DocumentStatus, DocumentStatusReport
from ragcore.storage.db import DocumentRow, new_id, utcnow

logger = logging.getLogger(__name__)


class DocumentStore:
    """SQLAlchemy-backed store for Document records."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create(self,
               owner_id: str,
               file_name: str,
               file_location: str,
               file_type: str = "",
               file_size: int = 0,
               document_id: Optional[str] = None) -> DocumentRecord:
        row = DocumentRow(
            id=document_id or new_id(),
            owner_id=owner_id,
            file_name=file_name,
            file_type=file_type or "",
            file_size=file_size,
            file_location=file_location,
            status=DocumentStatus.uploaded.value,
        )
        with self.session_factory() as session:
            session.add(row)
            session.commit()
            return DocumentRecord.model_validate(row)

    def get(self, document_id: str) -> Optional[DocumentRecord]:
        with self.session_factory() as session:
            row = session.get(DocumentRow, document_id)
            return DocumentRecord.model_validate(row) if row else None

    def list_for_owner(self, owner_id: str) -> List[DocumentRecord]:
        stmt = (
            select(DocumentRow)
            .where(DocumentRow.owner_id == owner_id)
            .order_by(DocumentRow.created_at.desc())
        )
        with self.session_factory() as session:
            return [DocumentRecord.model_validate(r) for r in session.execute(stmt).scalars()]

    def _update(self, document_id: str, **fields) -> Optional[DocumentRecord]:
        with self.session_factory() as session:
            row = session.get(DocumentRow, document_id)
            if row is None:
                logger.warning(f"Document {document_id} not found for update")
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            session.commit()
            return DocumentRecord.model_validate(row)

    def mark_processing(self, document_id: str) -> Optional[DocumentRecord]:
        """
        Enters processing from uploaded, failed (retry) or processed (reprocess).
        Clears the previous outcome so processed_at is only ever set while processed.
        """
        return self._update(
            document_id,
            status=DocumentStatus.processing.value,
            processing_started_at=utcnow(),
            processed_at=None,
            error_message=None,
            total_chunks=0,
            processed_chunks=0,
        )

    def update_progress(self, document_id: str, processed_chunks: int, total_chunks: int) -> None:
        self._update(document_id, processed_chunks=processed_chunks, total_chunks=total_chunks)

    def mark_processed(self, document_id: str, total_chunks: int) -> Optional[DocumentRecord]:
        return self._update(
            document_id,
            status=DocumentStatus.processed.value,
            processed_at=utcnow(),
            total_chunks=total_chunks,
            processed_chunks=total_chunks,
            error_message=None,
        )

    def mark_failed(self, document_id: str, error_message: str) -> Optional[DocumentRecord]:
        return self._update(
            document_id,
            status=DocumentStatus.failed.value,
            processed_at=None,
            error_message=error_message or "Processing failed",
        )

    def delete(self, document_id: str) -> bool:
        with self.session_factory() as session:
            row = session.get(DocumentRow, document_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def status_report(self, document_id: str, embedding_count: int) -> Optional[DocumentStatusReport]:
        doc = self.get(document_id)
        if doc is None:
            return None

        if doc.status == DocumentStatus.uploaded:
            progress, message = 0, "Waiting to process..."
        elif doc.status == DocumentStatus.processing:
            # Capped below 100 until the document is actually marked processed
            progress = min(int(doc.processed_chunks / doc.total_chunks * 90), 90) if doc.total_chunks else 0
            message = f"Processing... ({doc.processed_chunks}/{doc.total_chunks} chunks embedded)"
        elif doc.status == DocumentStatus.processed:
            progress, message = 100, f"Complete! ({embedding_count} embeddings)"
        else:
            progress, message = 0, doc.error_message or "Processing failed"

        return DocumentStatusReport(
            document_id=doc.id,
            file_name=doc.file_name,
            status=doc.status,
            progress_percentage=progress,
            progress_message=message,
            processed_chunks=doc.processed_chunks,
            total_chunks=doc.total_chunks,
            embedding_count=embedding_count,
            error_message=doc.error_message,
            created_at=doc.created_at,
            processing_started_at=doc.processing_started_at,
            processed_at=doc.processed_at,
        )
