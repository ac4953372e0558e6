"""
Database-backed job queue.

Claiming is a single conditional UPDATE (`... WHERE id = ? AND status = 'pending'`);
the row count tells a worker whether it won the job, so two workers can never
both move the same job to processing.

Dependencies: sqlalchemy, ragcore.storage.db
"""
import logging
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from ragcore.config.settings import JobsConfig, settings
from ragcore.models.document import (
    JobLease,
    JobRecord,
    JobStatus,
    JobType,
    ProcessDocumentPayload,
    QueueStats,
    RecoveredJob,
)
from ragcore.storage.db import JobRow, utcnow

logger = logging.getLogger(__name__)

PROCESS_DOCUMENT_PRIORITY = 10
ACTIVE_STATUSES = (JobStatus.pending.value, JobStatus.processing.value)


class JobQueue:
    """Queue operations over the jobs table."""

    def __init__(self, session_factory: sessionmaker, config: Optional[JobsConfig] = None):
        self.session_factory = session_factory
        self.config = config or settings.jobs

    def enqueue(self,
                job_type: JobType,
                payload: dict,
                priority: int = 0,
                document_id: Optional[str] = None) -> JobRecord:
        row = JobRow(
            job_type=job_type.value,
            status=JobStatus.pending.value,
            priority=priority,
            document_id=document_id,
            payload=payload,
            max_attempts=self.config.max_attempts,
        )
        with self.session_factory() as session:
            session.add(row)
            session.commit()
            logger.info(f"Enqueued {job_type.value} job {row.id} (priority={priority})")
            return JobRecord.model_validate(row)

    def enqueue_document(self, payload: ProcessDocumentPayload) -> Tuple[JobRecord, bool]:
        """
        Enqueues processing for a document unless it already has an active job.
        Returns (job, created).
        """
        existing = self.active_job_for_document(payload.document_id)
        if existing is not None:
            logger.info(f"Document {payload.document_id} already has active job {existing.id}")
            return existing, False

        try:
            job = self.enqueue(
                JobType.process_document,
                payload.model_dump(),
                priority=PROCESS_DOCUMENT_PRIORITY,
                document_id=payload.document_id,
            )
        except IntegrityError:
            # Lost a race against a concurrent enqueue for the same document
            existing = self.active_job_for_document(payload.document_id)
            if existing is None:
                raise
            return existing, False
        return job, True

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self.session_factory() as session:
            row = session.get(JobRow, job_id)
            return JobRecord.model_validate(row) if row else None

    def active_job_for_document(self, document_id: str) -> Optional[JobRecord]:
        stmt = select(JobRow).where(
            JobRow.document_id == document_id,
            JobRow.status.in_(ACTIVE_STATUSES),
        )
        with self.session_factory() as session:
            row = session.execute(stmt).scalars().first()
            return JobRecord.model_validate(row) if row else None

    def list_for_document(self, document_id: str) -> List[JobRecord]:
        stmt = select(JobRow).where(JobRow.document_id == document_id).order_by(JobRow.created_at.desc())
        with self.session_factory() as session:
            return [JobRecord.model_validate(r) for r in session.execute(stmt).scalars()]

    def delete_for_document(self, document_id: str) -> int:
        with self.session_factory() as session:
            result = session.execute(delete(JobRow).where(JobRow.document_id == document_id))
            session.commit()
            return result.rowcount or 0

    def _try_claim(self, session, job_id: str, worker_id: str) -> bool:
        now = utcnow()
        result = session.execute(
            update(JobRow)
            .where(JobRow.id == job_id, JobRow.status == JobStatus.pending.value)
            .values(
                status=JobStatus.processing.value,
                worker_id=worker_id,
                started_at=now,
                heartbeat_at=now,
                next_run_at=None,
            )
        )
        session.commit()
        return result.rowcount == 1

    def claim(self, job_id: str, worker_id: str) -> Optional[JobRecord]:
        """Claims a specific pending job. None if another worker got there first."""
        with self.session_factory() as session:
            if not self._try_claim(session, job_id, worker_id):
                return None
            return JobRecord.model_validate(session.get(JobRow, job_id))

    def claim_next(self, worker_id: str) -> Optional[JobRecord]:
        """
        Claims the highest-priority, oldest runnable pending job.
        A lost race moves on to the next candidate.
        """
        for _ in range(self.config.drain_batch_size + 1):
            now = utcnow()
            stmt = (
                select(JobRow.id)
                .where(
                    JobRow.status == JobStatus.pending.value,
                    (JobRow.next_run_at.is_(None)) | (JobRow.next_run_at <= now),
                )
                .order_by(JobRow.priority.desc(), JobRow.created_at.asc())
                .limit(1)
            )
            with self.session_factory() as session:
                job_id = session.execute(stmt).scalar_one_or_none()
                if job_id is None:
                    return None
                if self._try_claim(session, job_id, worker_id):
                    row = session.get(JobRow, job_id)
                    logger.info(f"Worker {worker_id} claimed job {job_id} (attempt {row.attempts + 1}/{row.max_attempts})")
                    return JobRecord.model_validate(row)
        return None

    def _owned(self, job_id: str, worker_id: Optional[str]):
        criteria = [JobRow.id == job_id, JobRow.status == JobStatus.processing.value]
        if worker_id is not None:
            criteria.append(JobRow.worker_id == worker_id)
        return criteria

    def holds(self, lease: JobLease) -> bool:
        """True while the lease holder still owns the job in processing."""
        with self.session_factory() as session:
            stmt = select(JobRow.id).where(*self._owned(lease.job_id, lease.worker_id))
            return session.execute(stmt).first() is not None

    def heartbeat(self, job_id: str, worker_id: Optional[str] = None) -> bool:
        """Refreshes the heartbeat. False means the job is no longer ours (recovered or finished)."""
        with self.session_factory() as session:
            result = session.execute(
                update(JobRow)
                .where(*self._owned(job_id, worker_id))
                .values(heartbeat_at=utcnow())
            )
            session.commit()
            return result.rowcount == 1

    def complete(self, job_id: str, result: Optional[dict] = None, worker_id: Optional[str] = None) -> bool:
        with self.session_factory() as session:
            updated = session.execute(
                update(JobRow)
                .where(*self._owned(job_id, worker_id))
                .values(
                    status=JobStatus.completed.value,
                    completed_at=utcnow(),
                    result=result,
                    error=None,
                )
            )
            session.commit()
        if updated.rowcount != 1:
            logger.warning(f"Job {job_id} was not in processing when completing")
            return False
        return True

    def fail(self, job_id: str, error: str, retryable: bool = True,
             worker_id: Optional[str] = None) -> Optional[JobRecord]:
        """
        Records a failed attempt. The job goes back to pending while it is
        retryable and has attempts left, otherwise it fails for good.
        """
        with self.session_factory() as session:
            row = session.get(JobRow, job_id)
            if row is None or row.status != JobStatus.processing.value or (
                    worker_id is not None and row.worker_id != worker_id):
                logger.warning(f"Job {job_id} was not in processing when failing; ignoring")
                return None

            row.attempts += 1
            row.error = error
            row.worker_id = None
            if retryable and row.attempts < row.max_attempts:
                row.status = JobStatus.pending.value
                delay = self.config.retry_delay_seconds
                row.next_run_at = utcnow() + timedelta(seconds=delay) if delay > 0 else None
                logger.info(f"Job {job_id} requeued ({row.attempts}/{row.max_attempts}): {error}")
            else:
                row.status = JobStatus.failed.value
                row.failed_at = utcnow()
                logger.error(f"Job {job_id} failed permanently after {row.attempts} attempt(s): {error}")
            session.commit()
            return JobRecord.model_validate(row)

    def find_stuck(self, stale_after_seconds: Optional[float] = None) -> List[JobRecord]:
        stale_after = self.config.stale_after_seconds if stale_after_seconds is None else stale_after_seconds
        cutoff = utcnow() - timedelta(seconds=stale_after)
        stmt = select(JobRow).where(
            JobRow.status == JobStatus.processing.value,
            func.coalesce(JobRow.heartbeat_at, JobRow.started_at) < cutoff,
        )
        with self.session_factory() as session:
            return [JobRecord.model_validate(r) for r in session.execute(stmt).scalars()]

    def recover_stuck(self, stale_after_seconds: Optional[float] = None) -> List[RecoveredJob]:
        """
        Counts a stalled run as a failed attempt and resets the job to pending,
        or fails it when no attempts remain.
        """
        stale_after = self.config.stale_after_seconds if stale_after_seconds is None else stale_after_seconds
        recovered = []

        for job in self.find_stuck(stale_after):
            attempts = job.attempts + 1
            if attempts < job.max_attempts:
                values = {"status": JobStatus.pending.value, "worker_id": None}
                new_status = JobStatus.pending
            else:
                values = {"status": JobStatus.failed.value, "failed_at": utcnow()}
                new_status = JobStatus.failed

            with self.session_factory() as session:
                # Conditional on the heartbeat we saw, so a worker that just
                # reported progress keeps its job
                result = session.execute(
                    update(JobRow)
                    .where(
                        JobRow.id == job.id,
                        JobRow.status == JobStatus.processing.value,
                        JobRow.attempts == job.attempts,
                        func.coalesce(JobRow.heartbeat_at, JobRow.started_at) < utcnow() - timedelta(seconds=stale_after),
                    )
                    .values(
                        attempts=attempts,
                        error=f"Job stalled: no heartbeat for over {int(stale_after)}s",
                        **values,
                    )
                )
                session.commit()

            if result.rowcount == 1:
                logger.warning(f"Recovered stuck job {job.id} -> {new_status.value} ({attempts}/{job.max_attempts})")
                recovered.append(RecoveredJob(
                    job_id=job.id,
                    document_id=job.document_id,
                    owner_id=job.payload.get("owner_id"),
                    new_status=new_status,
                    attempts=attempts,
                ))
        return recovered

    def stats(self) -> QueueStats:
        stmt = select(JobRow.status, func.count()).group_by(JobRow.status)
        with self.session_factory() as session:
            counts = dict(session.execute(stmt).all())
        return QueueStats(
            total_jobs=sum(counts.values()),
            pending_jobs=counts.get(JobStatus.pending.value, 0),
            processing_jobs=counts.get(JobStatus.processing.value, 0),
            completed_jobs=counts.get(JobStatus.completed.value, 0),
            failed_jobs=counts.get(JobStatus.failed.value, 0),
        )

    def cleanup(self, retention_days: Optional[int] = None) -> int:
        """Deletes completed jobs older than the retention window."""
        days = self.config.completed_retention_days if retention_days is None else retention_days
        cutoff = utcnow() - timedelta(days=days)
        with self.session_factory() as session:
            result = session.execute(
                delete(JobRow).where(
                    JobRow.status == JobStatus.completed.value,
                    JobRow.completed_at < cutoff,
                )
            )
            session.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Cleaned up {removed} completed jobs older than {days} days")
        return removed
