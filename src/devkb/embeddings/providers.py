"""Pluggable embedding providers."""

import hashlib
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
import numpy as np

from ..errors import InvalidConfigurationError

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Turns text into vectors. Implementations may raise on any I/O failure."""

    name: str = "provider"

    def __init__(self, model: str, dimensions: int):
        self.model = model
        self.dimensions = dimensions

    @abstractmethod
    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts, returning one vector per input in input order."""

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def info(self) -> dict[str, Any]:
        return {"provider": self.name, "model": self.model}


class SentenceTransformerProvider(EmbeddingProvider):
    """Local sentence-transformers model."""

    name = "sentence-transformers"

    def __init__(self, model: str, dimensions: int):
        super().__init__(model, dimensions)
        self._model = None

    @property
    def st_model(self):
        """Lazy-load the embedding model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            logger.info("Loading sentence-transformers model %s", self.model)
            self._model = SentenceTransformer(self.model)
        return self._model

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return self.st_model.encode(texts).tolist()


class OpenAICompatibleProvider(EmbeddingProvider):
    """Any endpoint speaking the OpenAI ``/embeddings`` protocol."""

    name = "openai"

    def __init__(
        self,
        model: str,
        dimensions: int,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        super().__init__(model, dimensions)
        self.base_url = (base_url or "https://api.openai.com/v1").rstrip("/")
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def _auth_header(self) -> dict[str, str]:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        response = self._client.post(
            f"{self.base_url}/embeddings",
            json={"model": self.model, "input": texts},
            headers=self._auth_header(),
        )
        response.raise_for_status()
        return self.extract_embeddings(response.json())

    @staticmethod
    def extract_embeddings(response_data: dict[str, Any]) -> list[list[float]]:
        """Pull vectors out of ``{"data": [{"embedding": [...], "index": 0}]}``, ordered by index."""
        data = response_data.get("data")
        if not data:
            raise ValueError(f"Embedding response has no data. Response keys: {list(response_data.keys())}")
        return [item["embedding"] for item in sorted(data, key=lambda item: item.get("index", 0))]

    def info(self) -> dict[str, Any]:
        return {"provider": self.name, "model": self.model, "base_url": self.base_url}

    def close(self) -> None:
        self._client.close()


_TOKEN_RE = re.compile(r"\w+")


class HashingProvider(EmbeddingProvider):
    """Deterministic feature-hashing embeddings for tests and offline runs.

    Each lowercase word is hashed into a signed bucket; the result is
    L2-normalised. Texts sharing words get positive cosine similarity.
    """

    name = "hash"

    def __init__(self, model: str = "feature-hash", dimensions: int = 384):
        super().__init__(model, dimensions)

    def _vector(self, text: str) -> list[float]:
        vec = np.zeros(self.dimensions, dtype=np.float64)
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimensions
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            vec[bucket] += sign
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec.tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self._vector(t) for t in texts]


def get_embedding_provider(config: dict[str, Any]) -> EmbeddingProvider:
    """Factory: return the provider named by ``embeddings.provider``."""
    emb_cfg = config.get("embeddings", {})
    provider = emb_cfg.get("provider", "sentence-transformers")
    model = emb_cfg.get("model", "all-MiniLM-L6-v2")
    dimensions = int(emb_cfg.get("dimensions", 384))

    if provider in ("sentence-transformers", "local"):
        return SentenceTransformerProvider(model, dimensions)
    elif provider in ("openai", "custom"):
        return OpenAICompatibleProvider(
            model,
            dimensions,
            base_url=emb_cfg.get("base_url"),
            api_key=emb_cfg.get("api_key"),
            timeout=float(emb_cfg.get("timeout", 30.0)),
        )
    elif provider == "hash":
        return HashingProvider(model, dimensions)
    else:
        raise InvalidConfigurationError(f"Unknown embeddings.provider: {provider}")
