"""Storage abstraction for vector backends."""

from .base import VectorStoreBase, get_vector_store
from .memory import MemoryVectorStore

__all__ = ["VectorStoreBase", "get_vector_store", "MemoryVectorStore"]
