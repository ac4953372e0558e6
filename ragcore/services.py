import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from ragcore.config.settings import AppSettings, settings
from ragcore.core.cache import TTLCache
from ragcore.core.embed.embedder import Embedder
from ragcore.core.embed.providers import EmbeddingProvider, create_provider
from ragcore.core.pipeline.ingestion import IngestionPipeline
from ragcore.core.pipeline.worker import IngestionWorker
from ragcore.core.retrieve.context_builder import ContextBuilder
from ragcore.storage.base import FileStore, VectorStore
from ragcore.storage.db import create_db_engine, get_session_factory
from ragcore.storage.document_store import DocumentStore
from ragcore.storage.file_store import LocalFileStore
from ragcore.storage.job_queue import JobQueue
from ragcore.storage.sql_vector_store import SQLVectorStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Process-wide components, built once and handed to the API or the worker."""
    settings: AppSettings
    engine: Engine
    session_factory: sessionmaker
    documents: DocumentStore
    jobs: JobQueue
    vector_store: VectorStore
    file_store: FileStore
    provider: EmbeddingProvider
    embedder: Embedder
    pipeline: IngestionPipeline
    worker: IngestionWorker
    context_builder: ContextBuilder
    query_cache: TTLCache
    context_cache: TTLCache

    def new_worker(self, worker_id: Optional[str] = None) -> IngestionWorker:
        return IngestionWorker(self.jobs, self.documents, self.pipeline, self.settings.jobs, worker_id)

    def close(self) -> None:
        self.provider.close()
        self.engine.dispose()


def create_vector_store(app_settings: AppSettings, session_factory: sessionmaker,
                        jobs: Optional[JobQueue] = None) -> VectorStore:
    backend = app_settings.vector_store.backend
    if backend == "sql":
        return SQLVectorStore(session_factory, app_settings.compression)
    if backend == "qdrant":
        from ragcore.storage.qdrant_store import QdrantVectorStore
        return QdrantVectorStore(
            app_settings.qdrant,
            vector_dim=app_settings.embedding.vector_dim,
            lease_check=jobs.holds if jobs is not None else None,
        )
    raise ValueError(f"Unknown vector store backend: {backend}")


def build_services(app_settings: Optional[AppSettings] = None,
                   provider: Optional[EmbeddingProvider] = None,
                   check_provider: bool = True) -> Services:
    app_settings = app_settings or settings

    engine = create_db_engine(app_settings.database)
    session_factory = get_session_factory(engine)
    documents = DocumentStore(session_factory)
    jobs = JobQueue(session_factory, app_settings.jobs)
    vector_store = create_vector_store(app_settings, session_factory, jobs)
    file_store = LocalFileStore(app_settings.storage)

    retrieval = app_settings.retrieval
    query_cache = TTLCache(retrieval.query_cache_size, retrieval.query_cache_ttl_seconds)
    context_cache = TTLCache(retrieval.query_cache_size, retrieval.query_cache_ttl_seconds)

    provider = provider or create_provider(app_settings.embedding)
    embedder = Embedder(provider, app_settings.embedding, query_cache=query_cache)

    pipeline = IngestionPipeline(
        documents=documents,
        vector_store=vector_store,
        file_store=file_store,
        embedder=embedder,
        chunking=app_settings.chunking,
        context_cache=context_cache,
        check_provider=check_provider,
    )
    worker = IngestionWorker(jobs, documents, pipeline, app_settings.jobs)
    context_builder = ContextBuilder(embedder, vector_store, retrieval, cache=context_cache)

    logger.info(
        f"Services ready: db={engine.url.get_backend_name()}, vectors={app_settings.vector_store.backend}, "
        f"embeddings={app_settings.embedding.provider}/{app_settings.embedding.model_name}"
    )
    return Services(
        settings=app_settings,
        engine=engine,
        session_factory=session_factory,
        documents=documents,
        jobs=jobs,
        vector_store=vector_store,
        file_store=file_store,
        provider=provider,
        embedder=embedder,
        pipeline=pipeline,
        worker=worker,
        context_builder=context_builder,
        query_cache=query_cache,
        context_cache=context_cache,
    )
