"""Abstract base class for vector stores and factory function."""

from abc import ABC, abstractmethod
from typing import Any

from ..errors import InvalidConfigurationError
from ..models import Document, SearchResult, StoreStats
from ..schemas import SearchQuery


class VectorStoreBase(ABC):
    """Persistence and retrieval contract the processor relies on.

    All methods are fallible I/O. Writes are upserts keyed by document id;
    no atomicity is assumed across a document and its chunks.
    """

    supports_vector_search: bool = True

    @abstractmethod
    def put(self, document: Document) -> None:
        """Insert or replace a document together with its chunks."""

    @abstractmethod
    def get(self, document_id: str) -> Document | None:
        """Fetch a document, or None if absent."""

    @abstractmethod
    def update(self, document_id: str, changes: dict[str, Any]) -> None:
        """Apply a partial update (title, content, metadata, embedding, updated_at, version)."""

    @abstractmethod
    def delete(self, document_id: str) -> None:
        """Remove a document and its chunks. Deleting a missing id is a no-op."""

    @abstractmethod
    def query(self, query: SearchQuery, embedding: list[float] | None) -> list[SearchResult]:
        """Return completed documents ordered by descending score.

        With ``embedding`` None the store falls back to lexical scoring.
        """

    @abstractmethod
    def stats(self) -> StoreStats:
        """Document count and collection name."""

    @abstractmethod
    def ping(self) -> bool:
        """Connectivity check; never raises."""


def get_vector_store(config: dict[str, Any]) -> VectorStoreBase:
    """Factory: return the right vector store based on config."""
    backend = config.get("storage_backend", "chromadb")
    collection = config.get("collection_name", "documents")

    if backend == "chromadb":
        from .chromadb import ChromaVectorStore
        return ChromaVectorStore(config["chroma_path"], collection_name=collection)
    elif backend == "memory":
        from .memory import MemoryVectorStore
        return MemoryVectorStore(collection_name=collection)
    else:
        raise InvalidConfigurationError(f"Unknown storage_backend: {backend}")
