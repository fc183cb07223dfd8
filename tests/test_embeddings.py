"""Tests for the embedder, retry policy and providers."""

import json

import httpx
import pytest

from devkb.embeddings.embedder import Embedder, normalize_text
from devkb.embeddings.providers import (
    EmbeddingProvider,
    HashingProvider,
    OpenAICompatibleProvider,
    SentenceTransformerProvider,
    get_embedding_provider,
)
from devkb.errors import (
    EmbeddingGenerationFailed,
    EmptyInputError,
    InvalidConfigurationError,
    NoValidInputError,
)
from devkb.retry import RetryPolicy, with_retry


class FlakyProvider(EmbeddingProvider):
    """Fails the first ``failures`` calls, then returns constant vectors."""

    name = "flaky"

    def __init__(self, failures=0, dimensions=4, returned_dimensions=None):
        super().__init__("flaky-model", dimensions)
        self.failures = failures
        self.returned_dimensions = returned_dimensions or dimensions
        self.calls = []

    def embed_batch(self, texts):
        self.calls.append(list(texts))
        if len(self.calls) <= self.failures:
            raise ConnectionError("service unavailable")
        return [[0.5] * self.returned_dimensions for _ in texts]


def _embedder(provider, max_retries=3):
    delays = []
    embedder = Embedder(provider, RetryPolicy(max_retries=max_retries, base_delay=1.0), sleep=delays.append)
    return embedder, delays


# ---- retry ----

def test_retry_policy_delays():
    policy = RetryPolicy(max_retries=3, base_delay=1.0)
    assert policy.max_attempts == 4
    assert [policy.delay(i) for i in range(3)] == [1.0, 2.0, 4.0]
    assert RetryPolicy(base_delay=1.0, max_delay=3.0).delay(5) == 3.0


def test_with_retry_returns_first_success():
    calls = []

    def operation():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("boom")
        return "ok"

    slept = []
    assert with_retry(operation, RetryPolicy(max_retries=3), sleep=slept.append) == "ok"
    assert len(calls) == 3
    assert slept == [1.0, 2.0]


def test_with_retry_reraises_last_error():
    def operation():
        raise RuntimeError("always")

    slept = []
    with pytest.raises(RuntimeError, match="always"):
        with_retry(operation, RetryPolicy(max_retries=2, base_delay=0.5), sleep=slept.append)
    assert slept == [0.5, 1.0]


def test_with_retry_skips_unlisted_errors():
    calls = []

    def operation():
        calls.append(1)
        raise KeyError("nope")

    with pytest.raises(KeyError):
        with_retry(operation, RetryPolicy(), sleep=lambda _: None, retry_on=(ConnectionError,))
    assert len(calls) == 1


# ---- normalisation ----

def test_normalize_text():
    assert normalize_text("  hello\n\tworld  ") == "hello world"
    assert normalize_text("a@b#c, ok!") == "abc, ok!"
    assert normalize_text("   \n ") == ""


# ---- single embed ----

def test_embed_returns_vector():
    embedder, delays = _embedder(FlakyProvider())
    assert embedder.embed("hello") == [0.5] * 4
    assert delays == []


def test_embed_empty_text_never_calls_provider():
    provider = FlakyProvider()
    embedder, _ = _embedder(provider)
    with pytest.raises(EmptyInputError):
        embedder.embed("  \n\t ")
    with pytest.raises(EmptyInputError):
        embedder.embed("@#$%")
    assert provider.calls == []


def test_embed_retries_with_backoff():
    provider = FlakyProvider(failures=2)
    embedder, delays = _embedder(provider)
    assert embedder.embed("hello") == [0.5] * 4
    assert len(provider.calls) == 3
    assert delays == [1.0, 2.0]


def test_embed_gives_up_after_retries():
    provider = FlakyProvider(failures=100)
    embedder, delays = _embedder(provider, max_retries=3)
    with pytest.raises(EmbeddingGenerationFailed) as excinfo:
        embedder.embed("hello")
    assert len(provider.calls) == 4
    assert delays == [1.0, 2.0, 4.0]
    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert excinfo.value.code == "EMBEDDING_GENERATION_FAILED"


def test_embed_rejects_wrong_dimensions():
    embedder, _ = _embedder(FlakyProvider(dimensions=4, returned_dimensions=3))
    with pytest.raises(EmbeddingGenerationFailed):
        embedder.embed("hello")


# ---- batch ----

def test_embed_batch_empty_list():
    provider = FlakyProvider()
    embedder, _ = _embedder(provider)
    assert embedder.embed_batch([]) == []
    assert provider.calls == []


def test_embed_batch_drops_empty_texts():
    provider = FlakyProvider()
    embedder, _ = _embedder(provider)
    vectors = embedder.embed_batch(["valid", "", "also valid"])
    assert len(vectors) == 2
    assert provider.calls == [["valid", "also valid"]]


def test_embed_batch_all_empty():
    embedder, _ = _embedder(FlakyProvider())
    with pytest.raises(NoValidInputError):
        embedder.embed_batch(["", "   ", "\n"])


def test_embed_batch_single_item_uses_embed():
    embedder, _ = _embedder(FlakyProvider())
    with pytest.raises(EmptyInputError):
        embedder.embed_batch([" "])


def test_embed_batch_failure_code():
    embedder, _ = _embedder(FlakyProvider(failures=100), max_retries=1)
    with pytest.raises(EmbeddingGenerationFailed) as excinfo:
        embedder.embed_batch(["a", "b"])
    assert excinfo.value.code == "BATCH_EMBEDDING_GENERATION_FAILED"


def test_validate_dimensions():
    embedder, _ = _embedder(FlakyProvider(dimensions=3))
    assert embedder.validate_dimensions([0.1, 0.2, 0.3])
    assert not embedder.validate_dimensions([0.1, 0.2])
    assert not embedder.validate_dimensions(None)
    assert not embedder.validate_dimensions("abc")


def test_test_connection():
    ok, _ = _embedder(FlakyProvider())
    broken, _ = _embedder(FlakyProvider(failures=100), max_retries=0)
    assert ok.test_connection() is True
    assert broken.test_connection() is False


# ---- providers ----

def test_hashing_provider_is_deterministic():
    provider = HashingProvider(dimensions=64)
    a, b = provider.embed_batch(["alpha beta", "alpha beta"])
    assert a == b
    assert len(a) == 64
    assert abs(sum(x * x for x in a) - 1.0) < 1e-9


def test_openai_provider_posts_embeddings_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [
            {"index": 1, "embedding": [0.0, 1.0]},
            {"index": 0, "embedding": [1.0, 0.0]},
        ]})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    provider = OpenAICompatibleProvider(
        "text-embedding-3-small", 2, base_url="http://embed.local/v1/", api_key="sk-test", client=client,
    )
    vectors = provider.embed_batch(["first", "second"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert seen["url"] == "http://embed.local/v1/embeddings"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"] == {"model": "text-embedding-3-small", "input": ["first", "second"]}


def test_openai_provider_http_error_is_retried_then_wrapped():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, json={"error": "overloaded"})

    provider = OpenAICompatibleProvider(
        "m", 2, base_url="http://embed.local/v1", client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    embedder, delays = _embedder(provider, max_retries=2)
    with pytest.raises(EmbeddingGenerationFailed) as excinfo:
        embedder.embed("hello")
    assert len(calls) == 3
    assert isinstance(excinfo.value.__cause__, httpx.HTTPStatusError)


def test_extract_embeddings_without_data():
    with pytest.raises(ValueError):
        OpenAICompatibleProvider.extract_embeddings({"object": "list"})


def test_provider_factory():
    assert isinstance(get_embedding_provider({"embeddings": {"provider": "hash", "dimensions": 8}}), HashingProvider)
    assert isinstance(get_embedding_provider({"embeddings": {"provider": "local"}}), SentenceTransformerProvider)
    openai = get_embedding_provider({"embeddings": {"provider": "openai", "model": "m", "dimensions": 2}})
    assert isinstance(openai, OpenAICompatibleProvider)
    openai.close()
    with pytest.raises(InvalidConfigurationError):
        get_embedding_provider({"embeddings": {"provider": "nope"}})
