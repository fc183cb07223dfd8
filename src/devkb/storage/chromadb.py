"""ChromaDB vector store backend."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import chromadb
import numpy as np

from ..models import (
    Document,
    DocumentChunk,
    DocumentMetadata,
    DocumentStatus,
    MatchedChunk,
    ScoringMode,
    SearchResult,
    StoreStats,
)
from ..query.scoring import lexical_score, matches_filters, score_from_distance
from ..schemas import SearchFilters, SearchQuery
from .base import VectorStoreBase

logger = logging.getLogger(__name__)

MAX_MATCHED_CHUNKS = 3
# Extra candidates fetched when some filters can only be applied after the query
OVERFETCH_FACTOR = 5


def _to_list(embedding: Any) -> list[float] | None:
    """Convert numpy arrays to plain lists."""
    if embedding is None:
        return None
    return embedding.tolist() if isinstance(embedding, np.ndarray) else list(embedding)


def _column(result: dict[str, Any], key: str, size: int) -> list:
    values = result.get(key)
    if values is None or len(values) == 0:
        return [None] * size
    return list(values)


class ChromaVectorStore(VectorStoreBase):
    """ChromaDB-backed persistent vector store.

    Documents live in ``collection_name``; their chunks in
    ``<collection_name>_chunks`` keyed back by ``document_id``.
    """

    def __init__(
        self,
        chroma_path: str | None = None,
        collection_name: str = "documents",
        client: Any = None,
    ):
        if client is None:
            if chroma_path is None:
                raise ValueError("chroma_path is required when no client is given")
            self.chroma_path = Path(chroma_path)
            self.chroma_path.mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(path=str(self.chroma_path))
        self.client = client
        self.collection_name = collection_name

    def _collection(self, name: str | None = None) -> chromadb.Collection:
        return self.client.get_or_create_collection(
            name=name or self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def _chunk_collection(self) -> chromadb.Collection:
        return self._collection(f"{self.collection_name}_chunks")

    # ---- serialisation ----

    @staticmethod
    def _document_row(doc: Document) -> dict[str, Any]:
        meta = doc.metadata
        return {
            "title": doc.title,
            "source": meta.source,
            "type": meta.type.value,
            "author": meta.author or "",
            "tags": json.dumps(meta.tags),
            "language": meta.language,
            "size": meta.size,
            "mime_type": meta.mime_type,
            "file_path": meta.file_path or "",
            "custom_fields": json.dumps(meta.custom_fields, default=str),
            "status": doc.status.value,
            "version": doc.version,
            "created_at": doc.created_at.isoformat(),
            "updated_at": doc.updated_at.isoformat(),
        }

    @staticmethod
    def _document_from_row(doc_id: str, content: str | None, row: dict[str, Any], embedding: Any = None) -> Document:
        metadata = DocumentMetadata.from_dict({
            "source": row.get("source", ""),
            "type": row.get("type", "txt"),
            "author": row.get("author") or None,
            "tags": json.loads(row.get("tags") or "[]"),
            "language": row.get("language", "en"),
            "size": int(row.get("size", 0)),
            "mime_type": row.get("mime_type", "text/plain"),
            "file_path": row.get("file_path") or None,
            "custom_fields": json.loads(row.get("custom_fields") or "{}"),
        })
        return Document(
            id=doc_id,
            title=row.get("title", ""),
            content=content or "",
            metadata=metadata,
            embedding=_to_list(embedding),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            version=int(row.get("version", 1)),
            status=DocumentStatus(row.get("status", DocumentStatus.COMPLETED.value)),
        )

    @staticmethod
    def _chunk_row(chunk: DocumentChunk) -> dict[str, Any]:
        row = {
            "document_id": chunk.document_id,
            "chunk_index": chunk.chunk_index,
            "start_position": chunk.start_position,
            "end_position": chunk.end_position,
            "overlap_with_previous": chunk.overlap_with_previous,
            "overlap_with_next": chunk.overlap_with_next,
            "token_count": chunk.token_count,
            "created_at": chunk.created_at.isoformat(),
        }
        if chunk.importance_score is not None:
            row["importance_score"] = chunk.importance_score
        return row

    @staticmethod
    def _chunk_from_row(chunk_id: str, content: str | None, row: dict[str, Any], embedding: Any = None) -> DocumentChunk:
        return DocumentChunk(
            id=chunk_id,
            document_id=row["document_id"],
            content=content or "",
            embedding=_to_list(embedding) or [],
            chunk_index=int(row["chunk_index"]),
            start_position=int(row["start_position"]),
            end_position=int(row["end_position"]),
            overlap_with_previous=int(row.get("overlap_with_previous", 0)),
            overlap_with_next=int(row.get("overlap_with_next", 0)),
            token_count=int(row.get("token_count", 0)),
            importance_score=row.get("importance_score"),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # ---- writes ----

    def _upsert_document_row(self, doc: Document) -> None:
        if doc.embedding is None:
            raise ValueError(f"Document {doc.id} has no embedding")
        self._collection().upsert(
            ids=[doc.id],
            embeddings=[doc.embedding],
            documents=[doc.content],
            metadatas=[self._document_row(doc)],
        )

    def put(self, document: Document) -> None:
        self._upsert_document_row(document)
        chunks = self._chunk_collection()
        chunks.delete(where={"document_id": document.id})
        if document.chunks:
            chunks.upsert(
                ids=[c.id for c in document.chunks],
                embeddings=[c.embedding for c in document.chunks],
                documents=[c.content for c in document.chunks],
                metadatas=[self._chunk_row(c) for c in document.chunks],
            )

    def update(self, document_id: str, changes: dict[str, Any]) -> None:
        current = self._get_document_row(document_id)
        if current is None:
            raise KeyError(document_id)
        changes = dict(changes)
        if isinstance(changes.get("metadata"), dict):
            changes["metadata"] = DocumentMetadata.from_dict(changes["metadata"])
        self._upsert_document_row(current.with_updates(**changes))

    def delete(self, document_id: str) -> None:
        self._collection().delete(ids=[document_id])
        self._chunk_collection().delete(where={"document_id": document_id})

    # ---- reads ----

    def _get_document_row(self, document_id: str) -> Document | None:
        result = self._collection().get(ids=[document_id], include=["documents", "metadatas", "embeddings"])
        if not result["ids"]:
            return None
        size = len(result["ids"])
        return self._document_from_row(
            result["ids"][0],
            _column(result, "documents", size)[0],
            _column(result, "metadatas", size)[0] or {},
            _column(result, "embeddings", size)[0],
        )

    def _get_chunks(self, document_id: str) -> list[DocumentChunk]:
        result = self._chunk_collection().get(
            where={"document_id": document_id},
            include=["documents", "metadatas", "embeddings"],
        )
        size = len(result["ids"])
        chunks = [
            self._chunk_from_row(cid, content, row or {}, emb)
            for cid, content, row, emb in zip(
                result["ids"],
                _column(result, "documents", size),
                _column(result, "metadatas", size),
                _column(result, "embeddings", size),
            )
        ]
        chunks.sort(key=lambda c: c.chunk_index)
        return chunks

    def get(self, document_id: str) -> Document | None:
        doc = self._get_document_row(document_id)
        if doc is not None:
            doc.chunks = self._get_chunks(document_id)
        return doc

    @staticmethod
    def _where(filters: SearchFilters | None) -> dict[str, Any]:
        conditions: list[dict[str, Any]] = [{"status": DocumentStatus.COMPLETED.value}]
        if filters is not None:
            if filters.document_types:
                conditions.append({"type": {"$in": [t.value for t in filters.document_types]}})
            if filters.sources:
                conditions.append({"source": {"$in": list(filters.sources)}})
            if filters.authors:
                conditions.append({"author": {"$in": list(filters.authors)}})
        if len(conditions) == 1:
            return conditions[0]
        return {"$and": conditions}

    @staticmethod
    def _needs_post_filter(filters: SearchFilters | None) -> bool:
        return filters is not None and bool(filters.tags or filters.date_range or filters.custom_fields)

    def query(self, query: SearchQuery, embedding: list[float] | None) -> list[SearchResult]:
        collection = self._collection()
        total = collection.count()
        if total == 0:
            return []
        where = self._where(query.filters)

        if embedding is None:
            results = self._lexical_candidates(collection, query, where)
        else:
            wanted = query.offset + query.limit
            if self._needs_post_filter(query.filters):
                wanted *= OVERFETCH_FACTOR
            raw = collection.query(
                query_embeddings=[embedding],
                n_results=min(total, wanted),
                where=where,
                include=["documents", "metadatas", "distances"],
            )
            ids = raw["ids"][0] if raw["ids"] else []
            size = len(ids)
            documents = _column(raw, "documents", 1)[0] or [None] * size
            metadatas = _column(raw, "metadatas", 1)[0] or [{}] * size
            distances = _column(raw, "distances", 1)[0] or [None] * size

            results = []
            for doc_id, content, row, distance in zip(ids, documents, metadatas, distances):
                doc = self._document_from_row(doc_id, content, row or {})
                if not matches_filters(doc, query.filters):
                    continue
                results.append(SearchResult(document=doc, score=score_from_distance(distance)))

        results.sort(key=lambda r: r.score, reverse=True)
        page = results[query.offset:query.offset + query.limit]
        if embedding is not None and query.include_chunks:
            for result in page:
                result.matched_chunks = self._matched_chunks(result.document.id, embedding)
        return page

    def _lexical_candidates(self, collection, query: SearchQuery, where: dict[str, Any]) -> list[SearchResult]:
        raw = collection.get(where=where, include=["documents", "metadatas"])
        size = len(raw["ids"])
        results = []
        for doc_id, content, row in zip(raw["ids"], _column(raw, "documents", size), _column(raw, "metadatas", size)):
            doc = self._document_from_row(doc_id, content, row or {})
            if not matches_filters(doc, query.filters):
                continue
            results.append(SearchResult(
                document=doc,
                score=lexical_score(query.query, doc.title, doc.content),
                scoring=ScoringMode.LEXICAL,
            ))
        return results

    def _matched_chunks(self, document_id: str, embedding: list[float]) -> list[MatchedChunk]:
        chunks = self._chunk_collection()
        available = len(chunks.get(where={"document_id": document_id}, include=[])["ids"])
        if available == 0:
            return []
        raw = chunks.query(
            query_embeddings=[embedding],
            n_results=min(MAX_MATCHED_CHUNKS, available),
            where={"document_id": document_id},
            include=["documents", "metadatas", "distances"],
        )
        matched = []
        for cid, content, row, distance in zip(
            raw["ids"][0], raw["documents"][0], raw["metadatas"][0], raw["distances"][0]
        ):
            score = score_from_distance(distance)
            matched.append(MatchedChunk(chunk=self._chunk_from_row(cid, content, row or {}), score=score, relevance=score))
        return matched

    def stats(self) -> StoreStats:
        return StoreStats(count=self._collection().count(), collection_name=self.collection_name)

    def ping(self) -> bool:
        try:
            self.client.heartbeat()
            return True
        except Exception as e:
            logger.error("ChromaDB connection test failed: %s", e)
            return False
