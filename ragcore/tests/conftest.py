import hashlib
from typing import List, Optional

import pytest

from ragcore.config.settings import (
    AppSettings,
    ChunkingConfig,
    DatabaseConfig,
    EmbeddingConfig,
    JobsConfig,
    RetrievalConfig,
    StorageConfig,
)
from ragcore.core.embed.providers import EmbeddingProvider
from ragcore.core.errors import EmbeddingProviderError
from ragcore.services import build_services
from ragcore.storage.db import create_db_engine, get_session_factory
from ragcore.storage.document_store import DocumentStore
from ragcore.storage.job_queue import JobQueue
from ragcore.storage.sql_vector_store import SQLVectorStore

DIMS = 8


def fake_vector(text: str, dims: int = DIMS) -> List[float]:
    """Deterministic pseudo-embedding: same text, same vector."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    while len(digest) < dims:
        digest += hashlib.sha256(digest).digest()
    return [b / 255.0 - 0.5 for b in digest[:dims]]


class FakeEmbeddingProvider(EmbeddingProvider):
    """Hash-based provider; can be told to fail after a number of calls."""

    def __init__(self, dims: int = DIMS, model_name: str = "fake-embed", fail_after: Optional[int] = None):
        self.dims = dims
        self.model_name = model_name
        self.fail_after = fail_after
        self.calls = 0

    def embed(self, text: str) -> List[float]:
        if self.fail_after is not None and self.calls >= self.fail_after:
            raise EmbeddingProviderError("Ollama embedding request timed out after 30.0s")
        self.calls += 1
        return fake_vector(text, self.dims)


@pytest.fixture
def app_settings(tmp_path):
    return AppSettings(
        chunking=ChunkingConfig(),
        embedding=EmbeddingConfig(provider="fake", model_name="fake-embed", vector_dim=DIMS,
                                  request_delay_seconds=0),
        database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'ragcore-test.db'}"),
        retrieval=RetrievalConfig(),
        jobs=JobsConfig(max_attempts=3, retry_delay_seconds=0),
        storage=StorageConfig(uploads_path=str(tmp_path / "uploads")),
    )


@pytest.fixture
def session_factory(app_settings):
    engine = create_db_engine(app_settings.database)
    yield get_session_factory(engine)
    engine.dispose()


@pytest.fixture
def documents(session_factory):
    return DocumentStore(session_factory)


@pytest.fixture
def jobs(session_factory, app_settings):
    return JobQueue(session_factory, app_settings.jobs)


@pytest.fixture
def vector_store(session_factory, app_settings):
    return SQLVectorStore(session_factory, app_settings.compression)


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def services(app_settings, provider):
    built = build_services(app_settings, provider=provider)
    yield built
    built.close()


@pytest.fixture
def write_file(tmp_path):
    def _write(name: str, content) -> str:
        path = tmp_path / name
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_bytes(content)
        return str(path)
    return _write


@pytest.fixture
def sample_text():
    def _text(sentences: int = 40) -> str:
        """Readable prose long enough to produce several chunks."""
        topics = ["Retrieval", "Embeddings", "Chunking", "Queues", "Workers", "Storage", "Search", "Context"]
        return " ".join(
            f"{topics[i % len(topics)]} section {i} explains how documents move through the pipeline in order."
            for i in range(sentences)
        )
    return _text


@pytest.fixture
def make_provider():
    return FakeEmbeddingProvider
