"""
Queue workers for document processing.

A worker claims one job at a time, runs the ingestion pipeline under a
wall-clock budget and heartbeat, and turns the outcome into queue state:
completed, requeued (retryable error with attempts left) or failed.
The periodic loop also sweeps stuck jobs so no document stays in processing
after its worker died.
"""
import logging
import os
import socket
import threading
import time
import uuid
from datetime import timedelta
from typing import Callable, List, Optional

from ragcore.config.settings import JobsConfig, settings
from ragcore.core.errors import JobStaleError, RagError
from ragcore.core.pipeline.ingestion import IngestionPipeline
from ragcore.models.document import (
    HealthIssue,
    HealthReport,
    JobLease,
    JobRecord,
    JobStatus,
    ProcessDocumentPayload,
    RecoveredJob,
    WorkerHeartbeat,
)
from ragcore.storage.db import utcnow
from ragcore.storage.document_store import DocumentStore
from ragcore.storage.job_queue import JobQueue

logger = logging.getLogger(__name__)

BACKLOG_WARNING_THRESHOLD = 50
PROCESSING_WARNING_THRESHOLD = 10
WORKER_STALE_SECONDS = 120


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


class IngestionWorker:
    def __init__(self,
                 queue: JobQueue,
                 documents: DocumentStore,
                 pipeline: IngestionPipeline,
                 config: Optional[JobsConfig] = None,
                 worker_id: Optional[str] = None):
        self.queue = queue
        self.documents = documents
        self.pipeline = pipeline
        self.config = config or settings.jobs
        self.worker_id = worker_id or default_worker_id()
        self.heartbeat = WorkerHeartbeat(worker_id=self.worker_id)

    def run_job(self, job: JobRecord) -> bool:
        """Processes a claimed job. Returns True when it completed."""
        deadline = time.monotonic() + self.config.max_job_seconds
        payload = None
        try:
            payload = ProcessDocumentPayload(**job.payload)
            result = self.pipeline.process(
                payload,
                heartbeat=lambda: self.queue.heartbeat(job.id, self.worker_id),
                deadline=deadline,
                lease=JobLease(job_id=job.id, worker_id=self.worker_id),
            )
        except JobStaleError as e:
            # The recovery sweep already moved the job on; its state is not ours to touch
            logger.warning(f"Job {job.id} abandoned: {e}")
            self.heartbeat.jobs_failed += 1
            return False
        except RagError as e:
            self.queue.fail(job.id, str(e), retryable=e.retryable, worker_id=self.worker_id)
            self.heartbeat.jobs_failed += 1
            return False
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            if payload is None and job.document_id:
                # Failed before the pipeline could record it
                self.documents.mark_failed(job.document_id, message)
            self.queue.fail(job.id, message, retryable=False, worker_id=self.worker_id)
            self.heartbeat.jobs_failed += 1
            return False

        self.queue.complete(job.id, result.model_dump(), worker_id=self.worker_id)
        self.heartbeat.jobs_processed += 1
        logger.info(
            f"Job {job.id} completed: {result.embeddings} embeddings "
            f"in {result.processing_seconds:.1f}s"
        )
        return True

    def run_once(self) -> Optional[bool]:
        """Claims and runs the next job. None when the queue is empty."""
        self.heartbeat.last_run = utcnow()
        job = self.queue.claim_next(self.worker_id)
        if job is None:
            return None
        return self.run_job(job)

    def drain(self, max_jobs: Optional[int] = None) -> int:
        """Processes pending jobs until the queue is empty or max_jobs were run."""
        limit = self.config.drain_batch_size if max_jobs is None else max_jobs
        processed = 0
        while processed < limit:
            outcome = self.run_once()
            if outcome is None:
                break
            processed += 1
        if processed:
            logger.info(f"Drain processed {processed} job(s)")
        return processed

    def process_job_now(self, job_id: str) -> Optional[bool]:
        """
        Fast path right after enqueue. Goes through the same claim as the
        polling loop, so it is a no-op if another worker already has the job.
        """
        job = self.queue.claim(job_id, self.worker_id)
        if job is None:
            logger.info(f"Job {job_id} already claimed or not pending; leaving it to the queue")
            return None
        return self.run_job(job)

    def recover_stuck(self) -> List[RecoveredJob]:
        recovered = self.queue.recover_stuck()
        for item in recovered:
            if not item.document_id:
                continue
            # A hung worker may still have rows in flight; never leave them behind
            if item.owner_id:
                self.pipeline.discard_embeddings(item.document_id, item.owner_id)
            else:
                self.pipeline.vector_store.delete_document(item.document_id)
            if item.new_status == JobStatus.pending:
                message = f"Processing stalled; retry scheduled (attempt {item.attempts})"
            else:
                message = f"Processing stalled and was abandoned after {item.attempts} attempts"
            self.documents.mark_failed(item.document_id, message)
        return recovered

    def run_forever(self, stop_event: threading.Event) -> None:
        """
        Polls until stop_event is set. Sleeps poll_interval when idle and
        backs off after max_consecutive_errors infrastructure failures in a row.
        """
        logger.info(f"Worker {self.worker_id} started")
        consecutive_errors = 0
        last_recovery = 0.0

        while not stop_event.is_set():
            try:
                if time.monotonic() - last_recovery >= self.config.recovery_interval_seconds:
                    self.recover_stuck()
                    self.queue.cleanup()
                    last_recovery = time.monotonic()

                outcome = self.run_once()
                consecutive_errors = 0
                if outcome is None:
                    stop_event.wait(self.config.poll_interval_seconds)
            except Exception:
                consecutive_errors += 1
                self.heartbeat.errors += 1
                logger.exception(f"Worker loop error ({consecutive_errors} consecutive)")
                if consecutive_errors >= self.config.max_consecutive_errors:
                    logger.error(
                        f"Too many consecutive errors, backing off for {self.config.error_backoff_seconds}s"
                    )
                    stop_event.wait(self.config.error_backoff_seconds)
                    consecutive_errors = 0
                else:
                    stop_event.wait(self.config.poll_interval_seconds)

        logger.info(f"Worker {self.worker_id} stopped")

    def health(self) -> HealthReport:
        stats = self.queue.stats()
        stuck = self.queue.find_stuck()
        issues, warnings = [], []

        if stuck:
            issues.append(HealthIssue(
                type="stuck_jobs", severity="high",
                message=f"{len(stuck)} jobs stuck in processing", count=len(stuck)
            ))
        if stats.pending_jobs > BACKLOG_WARNING_THRESHOLD:
            warnings.append(HealthIssue(
                type="queue_backlog", severity="medium",
                message=f"High queue backlog: {stats.pending_jobs} pending jobs", count=stats.pending_jobs
            ))
        if stats.processing_jobs > PROCESSING_WARNING_THRESHOLD:
            warnings.append(HealthIssue(
                type="too_many_processing", severity="medium",
                message=f"Too many processing jobs: {stats.processing_jobs}", count=stats.processing_jobs
            ))

        last_run = self.heartbeat.last_run
        self.heartbeat.is_stale = (
            last_run is not None and last_run < utcnow() - timedelta(seconds=WORKER_STALE_SECONDS)
        )
        if self.heartbeat.is_stale:
            issues.append(HealthIssue(
                type="worker_stale", severity="high",
                message=f"Worker hasn't run in over {WORKER_STALE_SECONDS // 60} minutes"
            ))

        if issues:
            status = "unhealthy"
        elif warnings:
            status = "degraded"
        else:
            status = "healthy"

        return HealthReport(
            status=status,
            timestamp=utcnow(),
            worker=self.heartbeat.model_copy(),
            queue=stats,
            stuck_jobs=len(stuck),
            issues=issues,
            warnings=warnings,
        )


def start_workers(worker_factory: Callable[[int], IngestionWorker],
                  count: int,
                  stop_event: threading.Event) -> List[threading.Thread]:
    """Runs `count` workers on daemon threads sharing one stop event."""
    threads = []
    for i in range(count):
        worker = worker_factory(i)
        thread = threading.Thread(
            target=worker.run_forever, args=(stop_event,),
            name=f"ingestion-worker-{i}", daemon=True
        )
        thread.start()
        threads.append(thread)
    return threads
