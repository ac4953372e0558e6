import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from ragcore.api.routes.ingest import get_documents, get_file_store, get_jobs, get_worker, intake
from ragcore.core.cache import TTLCache
from ragcore.core.pipeline.worker import IngestionWorker
from ragcore.models.document import DocumentRecord, DocumentStatusReport, IngestResponse
from ragcore.models.query import IngestRequest, OwnerEmbeddingStats
from ragcore.storage.base import FileStore, VectorStore
from ragcore.storage.document_store import DocumentStore
from ragcore.storage.job_queue import JobQueue

router = APIRouter()
logger = logging.getLogger(__name__)


def get_vector_store(request: Request) -> VectorStore:
    return request.app.state.vector_store

def get_context_cache(request: Request) -> TTLCache:
    return request.app.state.context_cache


@router.get("/documents", response_model=List[DocumentRecord], summary="List an owner's documents")
def list_documents(owner_id: str, documents: DocumentStore = Depends(get_documents)):
    return documents.list_for_owner(owner_id)


@router.get("/documents/{document_id}/status", response_model=DocumentStatusReport, summary="Processing status for UI polling")
def get_document_status(
    document_id: str,
    documents: DocumentStore = Depends(get_documents),
    vector_store: VectorStore = Depends(get_vector_store)
):
    report = documents.status_report(document_id, vector_store.count_for_document(document_id))
    if report is None:
        raise HTTPException(status_code=404, detail="Document not found.")
    return report


@router.post("/documents/{document_id}/reprocess", response_model=IngestResponse, summary="Retry or reprocess a document")
def reprocess_document(
    document_id: str,
    background_tasks: BackgroundTasks,
    documents: DocumentStore = Depends(get_documents),
    jobs: JobQueue = Depends(get_jobs),
    worker: IngestionWorker = Depends(get_worker)
):
    """Existing embeddings are replaced, never appended to."""
    doc = documents.get(document_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Document not found.")

    logger.info(f"Reprocess requested for {document_id} (status={doc.status.value})")
    ingest = IngestRequest(
        owner_id=doc.owner_id,
        document_id=doc.id,
        file_location=doc.file_location,
        file_name=doc.file_name,
        file_type=doc.file_type,
        file_size=doc.file_size,
    )
    return intake(ingest, documents, jobs, worker, background_tasks)


@router.delete("/documents/{document_id}", summary="Delete a document, its embeddings and jobs")
def delete_document(
    document_id: str,
    documents: DocumentStore = Depends(get_documents),
    jobs: JobQueue = Depends(get_jobs),
    vector_store: VectorStore = Depends(get_vector_store),
    file_store: FileStore = Depends(get_file_store),
    context_cache: TTLCache = Depends(get_context_cache)
):
    doc = documents.get(document_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Document not found.")

    logger.info(f"Deleting document {document_id}")
    try:
        removed = vector_store.delete_document(document_id)
        jobs.delete_for_document(document_id)
        file_store.delete(doc.file_location)
        documents.delete(document_id)
        context_cache.clear_owner(doc.owner_id)
    except Exception as e:
        logger.exception(f"Deletion failed for {document_id}")
        raise HTTPException(status_code=500, detail=f"Deletion failed for {document_id}: {e}")

    return {"document_id": document_id, "success": True, "embeddings_removed": removed}


@router.get("/owners/{owner_id}/stats", response_model=OwnerEmbeddingStats, summary="Embedding statistics for an owner")
def owner_stats(owner_id: str, vector_store: VectorStore = Depends(get_vector_store)):
    return vector_store.owner_stats(owner_id)


@router.delete("/owners/{owner_id}/embeddings", summary="Remove all of an owner's embeddings (before switching models)")
def clear_owner_embeddings(
    owner_id: str,
    vector_store: VectorStore = Depends(get_vector_store),
    context_cache: TTLCache = Depends(get_context_cache)
):
    removed = vector_store.clear_owner(owner_id)
    context_cache.clear_owner(owner_id)
    return {"owner_id": owner_id, "embeddings_removed": removed}
