from datetime import timedelta

import pytest
from sqlalchemy import update

from ragcore.config.settings import JobsConfig
from ragcore.core.errors import EmbeddingProviderError, ExtractionError, JobStaleError
from ragcore.core.pipeline.worker import IngestionWorker
from ragcore.models.document import DocumentStatus, JobStatus, ProcessDocumentPayload
from ragcore.storage.db import JobRow, utcnow

OWNER = "owner-1"


def register(services, path: str, file_name: str, file_type: str = "text/plain"):
    doc = services.documents.create(OWNER, file_name, path, file_type=file_type)
    payload = ProcessDocumentPayload(
        document_id=doc.id, owner_id=OWNER, file_location=path, file_name=file_name, file_type=file_type
    )
    return doc, payload


def backdate_heartbeat(services, job_id, seconds=600):
    stale = utcnow() - timedelta(seconds=seconds)
    with services.session_factory() as session:
        session.execute(update(JobRow).where(JobRow.id == job_id).values(started_at=stale, heartbeat_at=stale))
        session.commit()


def stored_texts(services, document_id):
    matches = services.vector_store.search(
        services.provider.embed("probe"), OWNER, top_k=100, threshold=-1.0
    )
    return sorted((m.chunk_index, m.chunk_text) for m in matches if m.document_id == document_id)


def test_text_document_is_processed(services, write_file, sample_text):
    doc, payload = register(services, write_file("guide.txt", sample_text(40)), "guide.txt")

    result = services.pipeline.process(payload)
    print(f"Result: {result}")

    assert result.chunks > 1
    assert result.embeddings == result.chunks
    assert services.vector_store.count_for_document(doc.id) == result.chunks

    report = services.documents.status_report(doc.id, result.embeddings)
    assert report.status == DocumentStatus.processed
    assert report.progress_percentage == 100
    assert report.progress_message == f"Complete! ({result.embeddings} embeddings)"
    assert report.processed_at is not None
    assert report.error_message is None


def test_reprocessing_replaces_embeddings(services, write_file, sample_text):
    doc, payload = register(services, write_file("guide.txt", sample_text(40)), "guide.txt")

    services.pipeline.process(payload)
    first = stored_texts(services, doc.id)
    services.pipeline.process(payload)
    second = stored_texts(services, doc.id)

    assert first == second
    assert services.vector_store.count_for_document(doc.id) == len(first)


def test_short_document_processes_with_no_embeddings(services, write_file):
    doc, payload = register(services, write_file("tiny.md", "# Title\n\nToo short."), "tiny.md", "md")

    result = services.pipeline.process(payload)
    assert result.chunks == 0
    report = services.documents.status_report(doc.id, 0)
    assert report.status == DocumentStatus.processed
    assert report.progress_message == "Complete! (0 embeddings)"


def test_corrupt_pdf_fails_document(services, write_file):
    doc, payload = register(services, write_file("broken.pdf", b"this is not a pdf document"),
                            "broken.pdf", "application/pdf")

    with pytest.raises(ExtractionError):
        services.pipeline.process(payload)

    stored = services.documents.get(doc.id)
    assert stored.status == DocumentStatus.failed
    assert "Failed to extract PDF" in stored.error_message
    assert stored.processed_at is None
    assert services.vector_store.count_for_document(doc.id) == 0


def test_context_cache_cleared_after_processing(services, write_file, sample_text):
    doc, payload = register(services, write_file("guide.txt", sample_text(20)), "guide.txt")
    services.context_cache.set("old question", OWNER, "stale context")

    services.pipeline.process(payload)
    assert services.context_cache.get("old question", OWNER) is None


def test_reclaimed_job_leaves_document_alone(services, write_file, sample_text):
    doc, payload = register(services, write_file("guide.txt", sample_text(20)), "guide.txt")

    with pytest.raises(JobStaleError):
        services.pipeline.process(payload, heartbeat=lambda: False)
    assert services.documents.get(doc.id).status == DocumentStatus.processing


def test_failed_processing_drops_cached_context(services, write_file, sample_text, provider):
    doc, payload = register(services, write_file("guide.txt", sample_text(40)), "guide.txt")
    services.context_cache.set("earlier question", OWNER, "stale context")
    provider.fail_after = provider.calls

    with pytest.raises(EmbeddingProviderError):
        services.pipeline.process(payload)
    assert services.context_cache.get("earlier question", OWNER) is None


def test_failed_reprocess_stops_serving_old_chunks(services, write_file, sample_text, provider):
    doc, payload = register(services, write_file("guide.txt", sample_text(40)), "guide.txt")
    services.pipeline.process(payload)

    before = services.context_builder.build("Retrieval section 0", OWNER, threshold=-1.0)
    print(f"Sources before reprocess: {len(before.sources_used)}")
    assert before.sources_used

    provider.fail_after = provider.calls + 1
    with pytest.raises(EmbeddingProviderError):
        services.pipeline.process(payload)
    assert services.vector_store.count_for_document(doc.id) == 0

    after = services.context_builder.build("Retrieval section 0", OWNER, threshold=-1.0)
    assert after.sources_used == []


def test_recovery_during_store_discards_the_write(services, write_file, sample_text, monkeypatch):
    doc, payload = register(services, write_file("guide.txt", sample_text(40)), "guide.txt")
    job, _ = services.jobs.enqueue_document(payload)
    claimed = services.jobs.claim(job.id, "slow-worker")
    slow_worker = services.new_worker("slow-worker")

    real_store = services.vector_store.store

    def store_after_recovery(*args, **kwargs):
        # The sweep takes the job back between the last heartbeat and the write
        backdate_heartbeat(services, job.id)
        assert [r.job_id for r in services.worker.recover_stuck()] == [job.id]
        return real_store(*args, **kwargs)

    monkeypatch.setattr(services.vector_store, "store", store_after_recovery)

    assert slow_worker.run_job(claimed) is False
    assert services.vector_store.count_for_document(doc.id) == 0
    assert services.documents.get(doc.id).status == DocumentStatus.failed
    state = services.jobs.get(job.id)
    assert state.status == JobStatus.pending
    assert state.attempts == 1
    assert state.worker_id is None


def test_embedding_outage_is_retried_then_recovers(services, write_file, sample_text, provider):
    doc, payload = register(services, write_file("guide.txt", sample_text(40)), "guide.txt")
    job, _ = services.jobs.enqueue_document(payload)
    provider.fail_after = provider.calls + 2

    assert services.worker.run_once() is False
    job_state = services.jobs.get(job.id)
    assert job_state.status == JobStatus.pending
    assert job_state.attempts == 1
    assert "timed out" in job_state.error

    doc_state = services.documents.get(doc.id)
    assert doc_state.status == DocumentStatus.failed
    assert services.vector_store.count_for_document(doc.id) == 0

    provider.fail_after = None
    assert services.worker.run_once() is True
    assert services.jobs.get(job.id).status == JobStatus.completed
    assert services.documents.get(doc.id).status == DocumentStatus.processed
    assert services.vector_store.count_for_document(doc.id) > 0
    assert services.worker.run_once() is None


def test_unsupported_file_fails_without_retry(services, write_file):
    doc, payload = register(services, write_file("photo.png", b"\x89PNG\r\n"), "photo.png", "image/png")
    job, _ = services.jobs.enqueue_document(payload)

    assert services.worker.run_once() is False
    assert services.jobs.get(job.id).status == JobStatus.failed
    assert services.jobs.get(job.id).attempts == 1
    assert "Unsupported file type" in services.documents.get(doc.id).error_message


def test_missing_file_is_retryable(services):
    doc, payload = register(services, "/nonexistent/path/guide.txt", "guide.txt")
    job, _ = services.jobs.enqueue_document(payload)

    services.worker.run_once()
    assert services.jobs.get(job.id).status == JobStatus.pending
    assert services.documents.get(doc.id).status == DocumentStatus.failed


def test_job_over_time_budget_is_requeued(services, write_file, sample_text):
    doc, payload = register(services, write_file("guide.txt", sample_text(20)), "guide.txt")
    job, _ = services.jobs.enqueue_document(payload)
    worker = IngestionWorker(services.jobs, services.documents, services.pipeline,
                             JobsConfig(max_job_seconds=-1), worker_id="slow-worker")

    assert worker.run_once() is False
    state = services.jobs.get(job.id)
    assert state.status == JobStatus.pending
    assert "time budget" in state.error
    assert services.documents.get(doc.id).status == DocumentStatus.failed


def test_recovery_sweep_fails_stalled_document(services, write_file, sample_text):
    doc, payload = register(services, write_file("guide.txt", sample_text(20)), "guide.txt")
    job, _ = services.jobs.enqueue_document(payload)
    services.jobs.claim(job.id, "dead-worker")
    services.documents.mark_processing(doc.id)

    backdate_heartbeat(services, job.id)
    services.context_cache.set("earlier question", OWNER, "stale context")

    assert services.worker.health().status == "unhealthy"

    recovered = services.worker.recover_stuck()
    assert services.context_cache.get("earlier question", OWNER) is None
    assert [r.job_id for r in recovered] == [job.id]
    stored = services.documents.get(doc.id)
    assert stored.status == DocumentStatus.failed
    assert "stalled" in stored.error_message

    # Picked up again by a live worker
    assert services.worker.run_once() is True
    assert services.documents.get(doc.id).status == DocumentStatus.processed
    assert services.worker.health().status == "healthy"


def test_processing_status_report(services, write_file):
    doc, _ = register(services, write_file("guide.txt", "text"), "guide.txt")
    assert services.documents.status_report(doc.id, 0).progress_message == "Waiting to process..."

    services.documents.mark_processing(doc.id)
    services.documents.update_progress(doc.id, 3, 10)
    report = services.documents.status_report(doc.id, 0)
    assert report.progress_percentage == 27
    assert report.progress_message == "Processing... (3/10 chunks embedded)"

    services.documents.update_progress(doc.id, 10, 10)
    assert services.documents.status_report(doc.id, 0).progress_percentage == 90
