"""In-process vector store with brute-force cosine search.

Suited to tests and short-lived runs; nothing is persisted.
"""

import copy
import threading
from typing import Any

from ..models import Document, DocumentMetadata, MatchedChunk, ScoringMode, SearchResult, StoreStats
from ..query.scoring import cosine_similarity, lexical_score, matches_filters
from ..schemas import SearchQuery
from .base import VectorStoreBase

MAX_MATCHED_CHUNKS = 3


class MemoryVectorStore(VectorStoreBase):
    """Keeps documents in a dict; search scans every completed document."""

    def __init__(self, collection_name: str = "documents", vector_search: bool = True):
        self.collection_name = collection_name
        self.supports_vector_search = vector_search
        self._docs: dict[str, Document] = {}
        self._lock = threading.Lock()

    def put(self, document: Document) -> None:
        with self._lock:
            self._docs[document.id] = copy.deepcopy(document)

    def get(self, document_id: str) -> Document | None:
        with self._lock:
            doc = self._docs.get(document_id)
            return copy.deepcopy(doc) if doc else None

    def update(self, document_id: str, changes: dict[str, Any]) -> None:
        with self._lock:
            doc = self._docs.get(document_id)
            if doc is None:
                raise KeyError(document_id)
            changes = dict(changes)
            if isinstance(changes.get("metadata"), dict):
                changes["metadata"] = DocumentMetadata.from_dict(changes["metadata"])
            self._docs[document_id] = doc.with_updates(**copy.deepcopy(changes))

    def delete(self, document_id: str) -> None:
        with self._lock:
            self._docs.pop(document_id, None)

    def query(self, query: SearchQuery, embedding: list[float] | None) -> list[SearchResult]:
        with self._lock:
            candidates = [
                copy.deepcopy(d) for d in self._docs.values()
                if d.searchable and matches_filters(d, query.filters)
            ]

        results = [self._score(doc, query, embedding) for doc in candidates]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[query.offset:query.offset + query.limit]

    def _score(self, doc: Document, query: SearchQuery, embedding: list[float] | None) -> SearchResult:
        if embedding is not None and doc.embedding is not None and len(doc.embedding) == len(embedding):
            matched = []
            if query.include_chunks:
                matched = [
                    MatchedChunk(chunk=c, score=s, relevance=s)
                    for c, s in ((c, cosine_similarity(embedding, c.embedding)) for c in doc.chunks)
                ]
                matched.sort(key=lambda m: m.score, reverse=True)
                matched = matched[:MAX_MATCHED_CHUNKS]
            return SearchResult(
                document=doc,
                score=cosine_similarity(embedding, doc.embedding),
                matched_chunks=matched,
                scoring=ScoringMode.SEMANTIC,
            )
        return SearchResult(
            document=doc,
            score=lexical_score(query.query, doc.title, doc.content),
            scoring=ScoringMode.LEXICAL,
        )

    def stats(self) -> StoreStats:
        with self._lock:
            return StoreStats(count=len(self._docs), collection_name=self.collection_name)

    def ping(self) -> bool:
        return True
