"""Embedding client: normalisation, retries and dimension checks around a provider."""

import logging
import re
import time
from collections.abc import Callable
from typing import Any

from ..errors import (
    EmbeddingGenerationFailed,
    EmptyInputError,
    NoValidInputError,
)
from ..retry import RetryPolicy, with_retry
from .providers import EmbeddingProvider, get_embedding_provider

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_DISALLOWED_RE = re.compile(r"[^\w\s.,!?-]")

CONNECTION_TEST_TEXT = "test"


def normalize_text(text: str) -> str:
    """Collapse whitespace and strip characters other than words and basic punctuation."""
    text = _WHITESPACE_RE.sub(" ", text)
    text = _DISALLOWED_RE.sub("", text)
    return text.strip()


class Embedder:
    """Embeds text through a provider with bounded exponential backoff."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "Embedder":
        emb_cfg = config.get("embeddings", {})
        policy = RetryPolicy(
            max_retries=int(emb_cfg.get("max_retries", 3)),
            base_delay=float(emb_cfg.get("base_delay", 1.0)),
        )
        return cls(get_embedding_provider(config), retry_policy=policy)

    @property
    def dimensions(self) -> int:
        return self.provider.dimensions

    def provider_info(self) -> dict[str, Any]:
        return self.provider.info()

    def validate_dimensions(self, vector: Any) -> bool:
        """True only for a list/tuple with exactly ``dimensions`` entries."""
        if vector is None or not isinstance(vector, (list, tuple)):
            return False
        return len(vector) == self.dimensions

    def is_embeddable(self, text: str) -> bool:
        return bool(normalize_text(text))

    def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmptyInputError: If nothing remains after normalisation.
            EmbeddingGenerationFailed: If the provider kept failing or returned a malformed vector.
        """
        normalized = normalize_text(text)
        if not normalized:
            raise EmptyInputError("Text cannot be empty")

        try:
            vector = with_retry(lambda: self.provider.embed(normalized), self.retry_policy, sleep=self._sleep)
        except Exception as e:
            logger.error("Embedding generation failed after %d attempt(s): %s", self.retry_policy.max_attempts, e)
            raise EmbeddingGenerationFailed(
                "Failed to generate embedding",
                details={"original_error": repr(e)},
            ) from e

        vector = list(vector)
        if not self.validate_dimensions(vector):
            raise EmbeddingGenerationFailed(
                f"Provider returned {len(vector)} dimensions, expected {self.dimensions}",
                details={"provider": self.provider.name},
            )
        return vector

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts in one provider call, preserving input order.

        Inputs that normalise to nothing are dropped, so the result may be
        shorter than ``texts``.

        Raises:
            NoValidInputError: If every input was dropped.
            EmbeddingGenerationFailed: If the provider kept failing or returned malformed vectors.
        """
        if not texts:
            return []
        if len(texts) == 1:
            return [self.embed(texts[0])]

        normalized = [n for n in (normalize_text(t) for t in texts) if n]
        if not normalized:
            raise NoValidInputError("No valid texts provided")
        dropped = len(texts) - len(normalized)
        if dropped:
            logger.debug("Dropped %d empty text(s) from embedding batch", dropped)

        try:
            vectors = with_retry(lambda: self.provider.embed_batch(normalized), self.retry_policy, sleep=self._sleep)
        except Exception as e:
            logger.error("Batch embedding failed after %d attempt(s): %s", self.retry_policy.max_attempts, e)
            raise EmbeddingGenerationFailed(
                "Failed to generate embeddings",
                code="BATCH_EMBEDDING_GENERATION_FAILED",
                details={"original_error": repr(e), "batch_size": len(normalized)},
            ) from e

        vectors = [list(v) for v in vectors]
        if len(vectors) != len(normalized) or not all(self.validate_dimensions(v) for v in vectors):
            raise EmbeddingGenerationFailed(
                "Provider returned malformed batch embeddings",
                code="BATCH_EMBEDDING_GENERATION_FAILED",
                details={"expected": len(normalized), "received": len(vectors)},
            )
        return vectors

    def test_connection(self) -> bool:
        """Embed a fixed string; report success without raising."""
        try:
            self.embed(CONNECTION_TEST_TEXT)
            return True
        except Exception as e:
            logger.error("Embedding service connection test failed: %s", e)
            return False
