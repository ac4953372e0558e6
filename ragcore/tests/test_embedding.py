import json
from typing import List
from unittest.mock import MagicMock

import httpx
import pytest

from ragcore.config.settings import EmbeddingConfig
from ragcore.core.cache import TTLCache
from ragcore.core.embed.embedder import Embedder
from ragcore.core.embed.providers import OllamaEmbeddingProvider, create_provider
from ragcore.core.errors import DimensionMismatchError, EmbeddingBatchError, EmbeddingProviderError


def make_config(**overrides) -> EmbeddingConfig:
    params = {"model_name": "fake-embed", "vector_dim": 8, "request_delay_seconds": 0}
    params.update(overrides)
    return EmbeddingConfig(**params)


def test_batch_failure_reports_partial_progress(make_provider):
    provider = make_provider(fail_after=2)
    embedder = Embedder(provider, make_config())

    with pytest.raises(EmbeddingBatchError) as exc_info:
        embedder.embed_texts([f"chunk {i}" for i in range(5)])

    err = exc_info.value
    print(f"Batch error: {err}")
    assert err.succeeded == 2
    assert err.total == 5
    assert isinstance(err.__cause__, EmbeddingProviderError)
    assert err.retryable


def test_wrong_dimensions_are_rejected(make_provider):
    embedder = Embedder(make_provider(dims=4), make_config(vector_dim=8))
    with pytest.raises(DimensionMismatchError):
        embedder.embed_texts(["some text"])
    with pytest.raises(DimensionMismatchError):
        embedder.embed_query("some text")


def test_progress_callback_and_delay(make_provider):
    sleep = MagicMock()
    progress = []
    embedder = Embedder(make_provider(), make_config(request_delay_seconds=0.5), sleep=sleep)

    vectors = embedder.embed_texts(["a", "b", "c", "d"], on_progress=lambda done, total: progress.append((done, total)))

    assert len(vectors) == 4
    assert progress == [(1, 4), (2, 4), (3, 4), (4, 4)]
    assert sleep.call_count == 3
    sleep.assert_called_with(0.5)


def test_query_embeddings_are_cached(make_provider):
    provider = make_provider()
    embedder = Embedder(provider, make_config(), query_cache=TTLCache())

    first = embedder.embed_query("How are documents chunked?")
    second = embedder.embed_query("how are documents   chunked?")
    assert first == second
    assert provider.calls == 1


def test_batch_capable_provider_gets_grouped_requests(make_provider):
    class BatchProvider(make_provider):
        def __init__(self):
            super().__init__()
            self.batches: List[int] = []

        @property
        def supports_batch(self) -> bool:
            return True

        def embed_many(self, texts):
            self.batches.append(len(texts))
            return [self.embed(t) for t in texts]

    provider = BatchProvider()
    embedder = Embedder(provider, make_config(batch_size=3))
    vectors = embedder.embed_texts([f"text {i}" for i in range(7)])

    assert len(vectors) == 7
    assert provider.batches == [3, 3, 1]


def test_empty_input_makes_no_calls(make_provider):
    provider = make_provider()
    assert Embedder(provider, make_config()).embed_texts([]) == []
    assert provider.calls == 0


def ollama(handler) -> OllamaEmbeddingProvider:
    config = make_config(model_name="nomic-embed-text", base_url="http://ollama.test/", timeout_seconds=2.0)
    return OllamaEmbeddingProvider(config, client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_ollama_embed_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"embedding": [0.1, 0.2, 0.3]})

    vector = ollama(handler).embed("hello")
    assert vector == [0.1, 0.2, 0.3]
    assert seen["url"] == "http://ollama.test/api/embeddings"
    assert seen["body"] == {"model": "nomic-embed-text", "prompt": "hello"}


def test_ollama_errors_become_provider_errors():
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(EmbeddingProviderError, match="timed out after 2.0s"):
        ollama(timeout).embed("hello")

    with pytest.raises(EmbeddingProviderError, match="500"):
        ollama(lambda request: httpx.Response(500, text="boom")).embed("hello")

    with pytest.raises(EmbeddingProviderError, match="missing embedding"):
        ollama(lambda request: httpx.Response(200, json={"embedding": []})).embed("hello")


def test_ollama_availability():
    tags = {"models": [{"name": "nomic-embed-text:latest"}, {"name": "llama3:8b"}]}
    status = ollama(lambda request: httpx.Response(200, json=tags)).check_availability()
    assert status == {"available": True, "has_model": True, "error": None}

    status = ollama(lambda request: httpx.Response(200, json={"models": []})).check_availability()
    assert status["available"] and not status["has_model"]

    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    status = ollama(refuse).check_availability()
    assert status["available"] is False
    assert "connection refused" in status["error"]


def test_unknown_provider_is_rejected():
    with pytest.raises(ValueError):
        create_provider(make_config(provider="word2vec"))
