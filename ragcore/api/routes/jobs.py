import logging
import secrets
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from ragcore.api.routes.ingest import get_jobs, get_worker
from ragcore.core.pipeline.worker import IngestionWorker
from ragcore.models.document import JobRecord, QueueStats, RecoveredJob
from ragcore.storage.job_queue import JobQueue

router = APIRouter()
logger = logging.getLogger(__name__)


def require_worker_secret(request: Request, x_worker_secret: Optional[str] = Header(None)):
    """Queue maintenance endpoints are open unless a worker secret is configured."""
    expected = request.app.state.settings.worker_secret
    if expected and not secrets.compare_digest(x_worker_secret or "", expected):
        raise HTTPException(status_code=401, detail="Invalid worker secret.")


@router.get("/jobs/stats", response_model=QueueStats, summary="Queue counts by status")
def job_stats(jobs: JobQueue = Depends(get_jobs)):
    return jobs.stats()


@router.get("/jobs/document/{document_id}", response_model=List[JobRecord], summary="Jobs recorded for a document")
def jobs_for_document(document_id: str, jobs: JobQueue = Depends(get_jobs)):
    return jobs.list_for_document(document_id)


@router.post("/jobs/drain", dependencies=[Depends(require_worker_secret)], summary="Process pending jobs now")
def drain_queue(max_jobs: Optional[int] = None, worker: IngestionWorker = Depends(get_worker)):
    """Periodic sweep entry point for deployments without a long-running worker."""
    recovered = worker.recover_stuck()
    processed = worker.drain(max_jobs)
    return {"processed": processed, "recovered": len(recovered)}


@router.post("/jobs/recover", response_model=List[RecoveredJob], dependencies=[Depends(require_worker_secret)],
             summary="Reset or fail jobs stuck in processing")
def recover_jobs(worker: IngestionWorker = Depends(get_worker)):
    return worker.recover_stuck()


@router.post("/jobs/cleanup", dependencies=[Depends(require_worker_secret)], summary="Delete old completed jobs")
def cleanup_jobs(retention_days: Optional[int] = None, jobs: JobQueue = Depends(get_jobs)):
    return {"removed": jobs.cleanup(retention_days)}
