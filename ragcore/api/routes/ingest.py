import logging
import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile

from ragcore.core.errors import UnsupportedFormatError
from ragcore.core.parse.text_extractor import detect_format
from ragcore.core.pipeline.worker import IngestionWorker
from ragcore.models.document import IngestResponse, ProcessDocumentPayload
from ragcore.models.query import IngestRequest
from ragcore.storage.base import FileStore
from ragcore.storage.document_store import DocumentStore
from ragcore.storage.job_queue import JobQueue

router = APIRouter()
logger = logging.getLogger(__name__)


# Dependencies to get components from app state
def get_documents(request: Request) -> DocumentStore:
    return request.app.state.documents

def get_jobs(request: Request) -> JobQueue:
    return request.app.state.jobs

def get_worker(request: Request) -> IngestionWorker:
    return request.app.state.worker

def get_file_store(request: Request) -> FileStore:
    return request.app.state.file_store


def intake(ingest: IngestRequest,
           documents: DocumentStore,
           jobs: JobQueue,
           worker: IngestionWorker,
           background_tasks: BackgroundTasks) -> IngestResponse:
    """
    Registers the document (if new) and enqueues its processing job.
    The background fast path is only a latency optimisation: the polling
    workers pick the job up regardless.
    """
    try:
        file_format = detect_format(ingest.file_name, ingest.file_type)
    except UnsupportedFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))

    doc = documents.get(ingest.document_id) if ingest.document_id else None
    if doc is None:
        doc = documents.create(
            owner_id=ingest.owner_id,
            file_name=ingest.file_name,
            file_location=ingest.file_location,
            file_type=ingest.file_type or file_format.value,
            file_size=ingest.file_size,
            document_id=ingest.document_id,
        )
    elif doc.owner_id != ingest.owner_id:
        raise HTTPException(status_code=400, detail="Document belongs to a different owner.")

    payload = ProcessDocumentPayload(
        document_id=doc.id,
        owner_id=doc.owner_id,
        file_location=doc.file_location,
        file_name=doc.file_name,
        file_type=doc.file_type,
    )
    job, created = jobs.enqueue_document(payload)
    if created:
        background_tasks.add_task(worker.process_job_now, job.id)

    return IngestResponse(document_id=doc.id, job=job, created=created)


@router.post("/documents/ingest", response_model=IngestResponse, summary="Register an uploaded file and queue it for processing")
def ingest_document(
    ingest: IngestRequest,
    background_tasks: BackgroundTasks,
    documents: DocumentStore = Depends(get_documents),
    jobs: JobQueue = Depends(get_jobs),
    worker: IngestionWorker = Depends(get_worker)
):
    logger.info(f"Ingest request for '{ingest.file_name}' (owner={ingest.owner_id})")
    return intake(ingest, documents, jobs, worker, background_tasks)


@router.post("/documents/upload", response_model=IngestResponse, summary="Upload a file and queue it for processing")
async def upload_document(
    background_tasks: BackgroundTasks,
    owner_id: str = Form(...),
    file: UploadFile = File(...),
    document_id: Optional[str] = Form(None),
    documents: DocumentStore = Depends(get_documents),
    jobs: JobQueue = Depends(get_jobs),
    worker: IngestionWorker = Depends(get_worker),
    file_store: FileStore = Depends(get_file_store)
):
    """
    1. Validates the file type before storing anything.
    2. Saves the bytes via FileStore.
    3. Hands the stored location to the regular intake path.
    """
    try:
        try:
            detect_format(file.filename or "", file.content_type)
        except UnsupportedFormatError as e:
            raise HTTPException(status_code=400, detail=str(e))

        file_bytes = await file.read()
        doc_id = document_id or str(uuid.uuid4())
        location = file_store.save_upload(doc_id, file.filename or "upload", file_bytes)
        logger.info(f"Stored upload '{file.filename}' ({len(file_bytes)} bytes) as {doc_id}")

        ingest = IngestRequest(
            owner_id=owner_id,
            document_id=doc_id,
            file_location=location,
            file_name=file.filename or "upload",
            file_type=file.content_type,
            file_size=len(file_bytes),
        )
        return intake(ingest, documents, jobs, worker, background_tasks)
    finally:
        await file.close()
