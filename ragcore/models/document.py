from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

class DocumentStatus(str, Enum):
    uploaded = "uploaded"
    processing = "processing"
    processed = "processed"
    failed = "failed"

class JobType(str, Enum):
    process_document = "process_document"

class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"

class DocumentRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    file_name: str
    file_type: str
    file_size: int
    file_location: str
    status: DocumentStatus
    total_chunks: int = 0
    processed_chunks: int = 0
    error_message: str | None = None
    created_at: datetime
    processing_started_at: datetime | None = None
    processed_at: datetime | None = None

class DocumentStatusReport(BaseModel):
    document_id: str
    file_name: str
    status: DocumentStatus
    progress_percentage: int         # 0–100
    progress_message: str
    processed_chunks: int
    total_chunks: int
    embedding_count: int
    error_message: str | None = None
    created_at: datetime
    processing_started_at: datetime | None = None
    processed_at: datetime | None = None

class ProcessDocumentPayload(BaseModel):
    document_id: str
    owner_id: str
    file_location: str
    file_name: str
    file_type: str

class JobLease(BaseModel):
    job_id: str
    worker_id: str

class JobRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    job_type: JobType
    status: JobStatus
    priority: int
    document_id: str | None = None
    payload: dict[str, Any]
    result: dict[str, Any] | None = None
    error: str | None = None
    attempts: int
    max_attempts: int
    worker_id: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    heartbeat_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None

class QueueStats(BaseModel):
    total_jobs: int
    pending_jobs: int
    processing_jobs: int
    completed_jobs: int
    failed_jobs: int

class RecoveredJob(BaseModel):
    job_id: str
    document_id: str | None
    owner_id: str | None = None
    new_status: JobStatus
    attempts: int

class ProcessingResult(BaseModel):
    document_id: str
    extracted_chars: int
    chunks: int
    embeddings: int
    truncated: bool
    processing_seconds: float

class HealthIssue(BaseModel):
    type: str
    severity: str                    # "high" | "medium"
    message: str
    count: int | None = None

class WorkerHeartbeat(BaseModel):
    worker_id: str
    last_run: datetime | None = None
    jobs_processed: int = 0
    jobs_failed: int = 0
    errors: int = 0
    is_stale: bool = False

class HealthReport(BaseModel):
    status: str                      # "healthy" | "degraded" | "unhealthy"
    timestamp: datetime
    worker: WorkerHeartbeat
    queue: QueueStats
    stuck_jobs: int
    issues: list[HealthIssue]
    warnings: list[HealthIssue]

class IngestResponse(BaseModel):
    document_id: str
    job: JobRecord
    created: bool                    # False when an active job already existed
