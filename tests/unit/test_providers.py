import http.client
import io
import json
from types import SimpleNamespace
from urllib import error as urlerror

import numpy as np
import pytest

from tin.config import RerankSettings
from tin.errors import ConfigError, ProviderError
from tin.providers import rerank as rerank_module
from tin.providers import retry
from tin.providers.gemini import GeminiEmbeddingBackend
from tin.providers.openai import OpenAIEmbeddingBackend, _order_vectors
from tin.providers.rerank import RemoteReranker, _extract_remote_rerank_items


def _rerank_settings(api_key: str | None = "rr-key") -> RerankSettings:
    return RerankSettings(
        api_key=api_key,
        api_key_source="env var: TIN_RERANK_API_KEY" if api_key else "unset",
        base_url="https://rerank.example.com/v1/rerank",
        base_url_source="default",
        model="rerank-v1",
        model_source="default",
    )


def _item(index, embedding):
    return SimpleNamespace(index=index, embedding=embedding)


def test_order_vectors_places_items_by_index() -> None:
    data = [_item(1, [0.0, 1.0]), _item(0, [1.0, 0.0])]

    vectors = _order_vectors(data, 2)

    assert [vector.tolist() for vector in vectors] == [[1.0, 0.0], [0.0, 1.0]]


def test_order_vectors_rejects_missing_or_empty_entries() -> None:
    with pytest.raises(ProviderError):
        _order_vectors([_item(0, [1.0])], 2)
    with pytest.raises(ProviderError):
        _order_vectors([_item(0, [1.0]), _item(1, [])], 2)


class _FakeEmbeddings:
    def __init__(self, failures=()):
        self.failures = list(failures)
        self.calls = []

    def create(self, *, model, input):
        self.calls.append(list(input))
        if self.failures:
            raise self.failures.pop(0)
        data = [_item(idx, [float(len(text)), 1.0]) for idx, text in enumerate(input)]
        return SimpleNamespace(data=list(reversed(data)))


class _StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


def _backend(fake) -> OpenAIEmbeddingBackend:
    backend = OpenAIEmbeddingBackend(model_name="m", api_key="k", chunk_size=2)
    backend._client = SimpleNamespace(embeddings=fake)
    return backend


def test_openai_backend_batches_and_orders() -> None:
    fake = _FakeEmbeddings()

    vectors = _backend(fake).embed(["a", "bb", "ccc"])

    assert fake.calls == [["a", "bb"], ["ccc"]]
    assert vectors.shape == (3, 2)
    assert vectors[:, 0].tolist() == [1.0, 2.0, 3.0]


def test_openai_backend_retries_transient_errors(monkeypatch) -> None:
    delays = []
    monkeypatch.setattr(retry, "sleep", delays.append)
    fake = _FakeEmbeddings(failures=[_StatusError("slow down", 429)])

    vectors = _backend(fake).embed(["a"])

    assert vectors.tolist() == [[1.0, 1.0]]
    assert delays == [retry.RETRY_BASE_DELAY]


def test_openai_backend_gives_up_on_permanent_errors(monkeypatch) -> None:
    monkeypatch.setattr(retry, "sleep", lambda _delay: None)
    fake = _FakeEmbeddings(failures=[_StatusError("bad key", 401)])

    with pytest.raises(ProviderError) as excinfo:
        _backend(fake).embed(["a"])

    assert "bad key" in str(excinfo.value)
    assert len(fake.calls) == 1


def test_openai_backend_requires_api_key() -> None:
    with pytest.raises(ConfigError):
        OpenAIEmbeddingBackend(model_name="m", api_key=None)


def test_retry_helpers() -> None:
    assert retry.is_transient(_StatusError("x", 503)) is True
    assert retry.is_transient(_StatusError("x", 400)) is False
    assert retry.is_transient(TimeoutError("read timed out")) is True
    assert retry.is_transient(ValueError("Rate limit reached")) is True
    assert retry.is_transient(ValueError("invalid input")) is False
    assert retry.backoff_delay(0) == retry.RETRY_BASE_DELAY
    assert retry.backoff_delay(10) == retry.RETRY_MAX_DELAY


def test_extract_rerank_items_reads_results_or_data() -> None:
    payload = {"results": [{"index": 1, "relevance_score": 0.9}, {"index": "0", "score": 0.2}]}

    assert _extract_remote_rerank_items(payload) == [(1, 0.9), (0, 0.2)]
    assert _extract_remote_rerank_items({"data": [{"index": 0}, "junk", {"score": 1}]}) == [
        (0, None)
    ]


def test_extract_rerank_items_requires_a_list() -> None:
    with pytest.raises(ProviderError):
        _extract_remote_rerank_items({"results": "nope"})
    with pytest.raises(ProviderError):
        _extract_remote_rerank_items([])


def test_remote_reranker_filters_out_of_range_indices(monkeypatch) -> None:
    captured = {}

    def fake_request(**kwargs):
        captured.update(kwargs)
        return {"results": [{"index": 0, "relevance_score": 0.1}, {"index": 5, "relevance_score": 1}]}

    monkeypatch.setattr(rerank_module, "_remote_rerank_request", fake_request)

    items = RemoteReranker(_rerank_settings()).rerank("q", ["doc a", "doc b"])

    assert items == [(0, 0.1)]
    assert captured["top_n"] == 2
    assert captured["documents"] == ["doc a", "doc b"]


def test_remote_reranker_requires_api_key() -> None:
    with pytest.raises(ConfigError):
        RemoteReranker(_rerank_settings(api_key=None))


class _FakeResponse:
    def __init__(self, body: bytes):
        self._body = body

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_remote_rerank_request_posts_json(monkeypatch) -> None:
    seen = {}

    def fake_urlopen(request, timeout):
        seen["url"] = request.full_url
        seen["auth"] = request.get_header("Authorization")
        seen["body"] = json.loads(request.data.decode("utf-8"))
        seen["timeout"] = timeout
        return _FakeResponse(b'{"results": [{"index": 0, "relevance_score": 0.5}]}')

    monkeypatch.setattr(rerank_module.urlrequest, "urlopen", fake_urlopen)

    items = RemoteReranker(_rerank_settings(), timeout=5).rerank("query", ["only doc"], top_n=1)

    assert items == [(0, 0.5)]
    assert seen["url"] == "https://rerank.example.com/v1/rerank"
    assert seen["auth"] == "Bearer rr-key"
    assert seen["body"] == {
        "model": "rerank-v1",
        "query": "query",
        "documents": ["only doc"],
        "top_n": 1,
    }
    assert seen["timeout"] == 5


def test_remote_rerank_request_wraps_http_errors(monkeypatch) -> None:
    def fake_urlopen(request, timeout):
        raise urlerror.HTTPError(request.full_url, 503, "Unavailable", None, io.BytesIO(b"busy"))

    monkeypatch.setattr(rerank_module.urlrequest, "urlopen", fake_urlopen)

    with pytest.raises(ProviderError) as excinfo:
        RemoteReranker(_rerank_settings()).rerank("q", ["d"])

    assert "HTTP 503: busy" in str(excinfo.value)


def test_remote_rerank_request_rejects_invalid_json(monkeypatch) -> None:
    monkeypatch.setattr(
        rerank_module.urlrequest, "urlopen", lambda request, timeout: _FakeResponse(b"<html>")
    )

    with pytest.raises(ProviderError) as excinfo:
        RemoteReranker(_rerank_settings()).rerank("q", ["d"])

    assert "Invalid JSON" in str(excinfo.value)


def test_empty_document_list_skips_the_request(monkeypatch) -> None:
    def fail_request(**kwargs):
        raise AssertionError("no request expected")

    monkeypatch.setattr(rerank_module, "_remote_rerank_request", fail_request)

    assert RemoteReranker(_rerank_settings()).rerank("q", []) == []


def test_order_vectors_returns_float32() -> None:
    vectors = _order_vectors([_item(0, [1, 2])], 1)

    assert vectors[0].dtype == np.float32


def test_remote_rerank_request_rejects_url_without_scheme() -> None:
    settings = RerankSettings(
        api_key="rr-key",
        api_key_source="env var: TIN_RERANK_API_KEY",
        base_url="api.example.com/v1/rerank",
        base_url_source="env var: TIN_RERANK_BASE_URL",
        model="rerank-v1",
        model_source="default",
    )

    with pytest.raises(ProviderError) as excinfo:
        RemoteReranker(settings).rerank("q", ["d"])

    assert "unknown url type" in str(excinfo.value)


def test_remote_rerank_request_wraps_truncated_responses(monkeypatch) -> None:
    def fake_urlopen(request, timeout):
        raise http.client.IncompleteRead(b"partial")

    monkeypatch.setattr(rerank_module.urlrequest, "urlopen", fake_urlopen)

    with pytest.raises(ProviderError):
        RemoteReranker(_rerank_settings()).rerank("q", ["d"])


class _FakeGeminiModels:
    def __init__(self, failures=(), drop_last=False, empty_values=False):
        self.failures = list(failures)
        self.drop_last = drop_last
        self.empty_values = empty_values
        self.calls = []

    def embed_content(self, *, model, contents):
        self.calls.append(list(contents))
        if self.failures:
            raise self.failures.pop(0)
        embeddings = [
            SimpleNamespace(values=[] if self.empty_values else [float(len(text)), 0.5])
            for text in contents
        ]
        if self.drop_last:
            embeddings = embeddings[:-1]
        return SimpleNamespace(embeddings=embeddings)


class _TransportError(Exception):
    pass


class _GeminiStatusError(Exception):
    def __init__(self, message, code):
        super().__init__(message)
        self.code = code


def _gemini(models) -> GeminiEmbeddingBackend:
    backend = GeminiEmbeddingBackend(model_name="gemini-embedding-001", api_key="g", chunk_size=2)
    backend._client = SimpleNamespace(models=models)
    return backend


def test_gemini_backend_batches_in_input_order() -> None:
    models = _FakeGeminiModels()

    vectors = _gemini(models).embed(["a", "bb", "ccc"])

    assert models.calls == [["a", "bb"], ["ccc"]]
    assert vectors.dtype == np.float32
    assert vectors[:, 0].tolist() == [1.0, 2.0, 3.0]


def test_gemini_backend_rejects_incomplete_responses() -> None:
    with pytest.raises(ProviderError):
        _gemini(_FakeGeminiModels(drop_last=True)).embed(["a", "bb"])
    with pytest.raises(ProviderError):
        _gemini(_FakeGeminiModels(empty_values=True)).embed(["a"])


def test_gemini_backend_retries_transient_api_errors(monkeypatch) -> None:
    delays = []
    monkeypatch.setattr(retry, "sleep", delays.append)
    models = _FakeGeminiModels(failures=[_GeminiStatusError("unavailable", 503)])

    vectors = _gemini(models).embed(["a"])

    assert vectors.tolist() == [[1.0, 0.5]]
    assert delays == [retry.RETRY_BASE_DELAY]


def test_gemini_backend_wraps_transport_errors(monkeypatch) -> None:
    monkeypatch.setattr(retry, "sleep", lambda _delay: None)
    models = _FakeGeminiModels(failures=[_TransportError("peer reset the stream")])

    with pytest.raises(ProviderError) as excinfo:
        _gemini(models).embed(["a"])

    assert "peer reset the stream" in str(excinfo.value)
    assert len(models.calls) == 1


def test_gemini_backend_requires_api_key() -> None:
    with pytest.raises(ConfigError):
        GeminiEmbeddingBackend(api_key=None)
