import logging
import time
from typing import Callable, Optional

from ragcore.config.settings import ChunkingConfig
from ragcore.core.cache import TTLCache
from ragcore.core.chunk.chunker import TextChunker
from ragcore.core.embed.embedder import Embedder
from ragcore.core.errors import EmbeddingProviderError, JobStaleError, JobTimeoutError
from ragcore.core.parse.text_extractor import TextExtractor, detect_format
from ragcore.models.document import JobLease, ProcessDocumentPayload, ProcessingResult
from ragcore.storage.base import FileStore, VectorStore
from ragcore.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)

HeartbeatFn = Callable[[], bool]


class IngestionPipeline:
    """
    Orchestrates processing of one document:
    mark processing -> clear old embeddings -> fetch -> extract -> chunk -> embed -> store -> mark processed

    Any failure deletes whatever was written for the document, marks it failed
    with the error message and re-raises so the worker can apply retry policy.
    """

    def __init__(self,
                 documents: DocumentStore,
                 vector_store: VectorStore,
                 file_store: FileStore,
                 embedder: Embedder,
                 chunking: Optional[ChunkingConfig] = None,
                 context_cache: Optional[TTLCache] = None,
                 check_provider: bool = True):
        self.documents = documents
        self.vector_store = vector_store
        self.file_store = file_store
        self.embedder = embedder
        self.context_cache = context_cache
        self.check_provider = check_provider

        self.extractor = TextExtractor()
        self.chunker = TextChunker(chunking)

    def process(self,
                payload: ProcessDocumentPayload,
                heartbeat: Optional[HeartbeatFn] = None,
                deadline: Optional[float] = None,
                lease: Optional[JobLease] = None) -> ProcessingResult:
        """
        Runs the full pipeline for a document. `deadline` is a time.monotonic()
        value; `heartbeat` returns False once the job has been taken away from us.
        With a `lease` the final write only lands while the job is still ours.
        """
        doc_id = payload.document_id
        started = time.monotonic()

        def update_progress(progress: int, message: str):
            logger.info(f"[{doc_id}] {progress}%: {message}")
            if deadline is not None and time.monotonic() > deadline:
                raise JobTimeoutError(f"Processing exceeded its time budget at: {message}")
            if heartbeat is not None and not heartbeat():
                raise JobStaleError("Job was reclaimed by the recovery sweep")

        try:
            self.documents.mark_processing(doc_id)
            update_progress(5, "Starting processing")

            if self.check_provider:
                availability = self.embedder.provider.check_availability()
                if not availability.get("available") or not availability.get("has_model"):
                    raise EmbeddingProviderError(
                        f"Embedding provider unavailable for model {self.embedder.model_name}: "
                        f"{availability.get('error') or 'model not installed'}"
                    )

            # Reprocessing starts from a clean slate
            removed = self.vector_store.delete_document(doc_id)
            if removed:
                self._clear_context(payload.owner_id)
                update_progress(8, f"Removed {removed} existing embeddings")

            # 1. Fetch
            file_bytes = self.file_store.fetch(payload.file_location)
            update_progress(10, f"Fetched {len(file_bytes)} bytes")

            # 2. Extraction
            file_format = detect_format(payload.file_name, payload.file_type)
            extracted = self.extractor.extract(file_bytes, file_format)
            update_progress(25, f"Extracted {extracted.char_count} characters ({file_format.value})")

            # 3. Chunking
            chunk_result = self.chunker.chunk(extracted.text)
            chunks = chunk_result.chunks
            if chunk_result.truncated:
                logger.warning(f"[{doc_id}] Chunk limit reached, document truncated to {len(chunks)} chunks")
            self.documents.update_progress(doc_id, 0, len(chunks))
            update_progress(35, f"Created {len(chunks)} chunks")

            # 4. Embedding
            def on_embedded(done: int, total: int):
                self.documents.update_progress(doc_id, done, total)
                update_progress(35 + int(done / total * 50), f"Embedded {done}/{total} chunks")

            vectors = self.embedder.embed_chunks(chunks, on_progress=on_embedded)
            update_progress(88, "Storing embeddings")

            # 5. Storage
            stored = self.vector_store.store(
                owner_id=payload.owner_id,
                document_id=doc_id,
                chunks=chunks,
                vectors=vectors,
                embedding_model=self.embedder.model_name,
                metadata={"file_name": payload.file_name, "file_format": file_format.value},
                lease=lease,
            )
            update_progress(95, f"Stored {stored} embeddings")

            self.documents.mark_processed(doc_id, stored)
            self._clear_context(payload.owner_id)
            logger.info(f"[{doc_id}] 100%: Processing complete")

            return ProcessingResult(
                document_id=doc_id,
                extracted_chars=extracted.char_count,
                chunks=len(chunks),
                embeddings=stored,
                truncated=chunk_result.truncated,
                processing_seconds=round(time.monotonic() - started, 3),
            )

        except JobStaleError:
            # Another worker owns the document now; leave its state alone
            logger.warning(f"[{doc_id}] Stopped: job was reclaimed")
            raise
        except Exception as e:
            logger.exception(f"Processing failed for document {doc_id}")
            self.discard_embeddings(doc_id, payload.owner_id)
            self.documents.mark_failed(doc_id, str(e) or type(e).__name__)
            raise

    def discard_embeddings(self, doc_id: str, owner_id: str) -> None:
        """Removes a document's rows after a failure and drops the owner's cached contexts."""
        try:
            self.vector_store.delete_document(doc_id)
        except Exception:
            # The original failure is what gets surfaced
            logger.exception(f"[{doc_id}] Failed to remove partial embeddings")
        self._clear_context(owner_id)

    def _clear_context(self, owner_id: str) -> None:
        if self.context_cache is not None:
            self.context_cache.clear_owner(owner_id)
