"""Document processor - the heart of ingestion.

Turns create/update requests into fully embedded documents, hands them to
the vector store, and runs searches. A document is written only once every
embedding it needs exists, so a failure never leaves a partial document
behind.
"""

import hashlib
import logging
import uuid
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from ..embeddings.embedder import Embedder
from ..errors import (
    DocumentAdditionFailed,
    DocumentDeletionFailed,
    DocumentNotFoundError,
    DocumentRetrievalFailed,
    DocumentSearchFailed,
    DocumentUpdateFailed,
    InvalidConfigurationError,
    InvalidInputError,
    StatsRetrievalFailed,
)
from ..models import (
    Document,
    DocumentChunk,
    DocumentMetadata,
    DocumentStatus,
    ScoringMode,
    SearchResult,
    utcnow,
)
from ..query.scoring import find_highlights, passes_threshold
from ..schemas import (
    CreateDocumentRequest,
    SearchQuery,
    UpdateDocumentRequest,
    parse_request,
)
from ..storage import VectorStoreBase, get_vector_store
from .chunker import split_spans

logger = logging.getLogger(__name__)


def compute_hash(content: str) -> str:
    """SHA256 hash of content for dedup."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def generate_id(prefix: str | None = None) -> str:
    return f"{prefix}_{uuid.uuid4()}" if prefix else str(uuid.uuid4())


class DocumentProcessor:
    """Coordinates chunking, embedding and storage of documents."""

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStoreBase,
        chunk_size: int = 1000,
        overlap: int = 200,
    ):
        self.embedder = embedder
        self.store = store
        self.chunk_size = chunk_size
        self.overlap = overlap

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "DocumentProcessor":
        chunk_cfg = config.get("chunking", {})
        return cls(
            Embedder.from_config(config),
            get_vector_store(config),
            chunk_size=chunk_cfg.get("chunk_size", 1000),
            overlap=chunk_cfg.get("overlap", 200),
        )

    def _new_document(self, request: CreateDocumentRequest) -> Document:
        now = utcnow()
        metadata = request.metadata.to_metadata(request.content)
        metadata.custom_fields.setdefault("content_hash", compute_hash(request.content))
        doc = Document(
            id=request.document_id or generate_id(),
            title=request.title,
            content=request.content,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        return doc.transition(DocumentStatus.PROCESSING)

    def _persist(self, doc: Document) -> Document:
        stored = replace(doc, status=DocumentStatus.COMPLETED)
        self.store.put(stored)
        return stored

    def add_document(self, request: CreateDocumentRequest | Mapping[str, Any]) -> Document:
        """Embed the full content as one vector and store the document.

        Raises:
            InvalidInputError: For malformed requests or empty content.
            DocumentAdditionFailed: If embedding or storage failed.
        """
        request = parse_request(CreateDocumentRequest, request)
        doc = self._new_document(request)
        try:
            doc.embedding = self.embedder.embed(request.content)
            stored = self._persist(doc)
        except InvalidInputError:
            doc.transition(DocumentStatus.FAILED)
            raise
        except Exception as e:
            doc.transition(DocumentStatus.FAILED)
            logger.error("Failed to add document %s: %s", doc.id, e)
            raise DocumentAdditionFailed(
                "Failed to add document to knowledge base",
                details={"id": doc.id, "original_error": repr(e)},
            ) from e

        logger.debug("Added document %s (%s)", stored.id, stored.title)
        return stored

    def add_document_with_chunks(
        self,
        request: CreateDocumentRequest | Mapping[str, Any],
        chunk_size: int | None = None,
        overlap: int | None = None,
    ) -> Document:
        """Chunk, embed every chunk in one batch, embed the whole, then store.

        All or nothing: if any chunk cannot be embedded nothing is stored.
        """
        request = parse_request(CreateDocumentRequest, request)
        chunk_size = self.chunk_size if chunk_size is None else chunk_size
        overlap = self.overlap if overlap is None else overlap
        spans = split_spans(request.content, chunk_size, overlap)

        doc = self._new_document(request)
        try:
            unembeddable = [s.index for s in spans if not self.embedder.is_embeddable(s.text)]
            if unembeddable and len(unembeddable) < len(spans):
                raise ValueError(f"Chunks {unembeddable} contain no embeddable text")

            vectors = self.embedder.embed_batch([s.text for s in spans])
            doc.chunks = [
                DocumentChunk(
                    id=generate_id("chunk"),
                    document_id=doc.id,
                    content=span.text,
                    embedding=vector,
                    chunk_index=span.index,
                    start_position=span.start_position,
                    end_position=span.end_position,
                    overlap_with_previous=span.overlap_with_previous,
                    overlap_with_next=span.overlap_with_next,
                    token_count=span.token_count,
                    created_at=doc.created_at,
                )
                for span, vector in zip(spans, vectors)
            ]
            doc.embedding = self.embedder.embed(request.content)
            stored = self._persist(doc)
        except (InvalidInputError, InvalidConfigurationError):
            doc.transition(DocumentStatus.FAILED)
            raise
        except Exception as e:
            doc.transition(DocumentStatus.FAILED)
            logger.error("Failed to add chunked document %s: %s", doc.id, e)
            raise DocumentAdditionFailed(
                "Failed to add document to knowledge base",
                details={"id": doc.id, "original_error": repr(e)},
            ) from e

        logger.debug("Added document %s with %d chunk(s)", stored.id, len(stored.chunks))
        return stored

    def get_document(self, document_id: str) -> Document | None:
        try:
            return self.store.get(document_id)
        except Exception as e:
            raise DocumentRetrievalFailed(
                "Failed to get document", details={"id": document_id, "original_error": repr(e)}
            ) from e

    def update_document(
        self,
        document_id: str,
        updates: UpdateDocumentRequest | Mapping[str, Any],
    ) -> Document:
        """Merge title/content/metadata into the stored document.

        A content change regenerates the whole-document embedding; existing
        chunks are left as they are.

        Raises:
            DocumentNotFoundError: If no document has ``document_id``.
            DocumentUpdateFailed: If embedding or storage failed.
        """
        updates = parse_request(UpdateDocumentRequest, updates)
        try:
            existing = self.store.get(document_id)
            if existing is None:
                raise DocumentNotFoundError(document_id)

            changes: dict[str, Any] = {
                "updated_at": utcnow(),
                "version": existing.version + 1,
            }
            if updates.title is not None:
                changes["title"] = updates.title
            if updates.content is not None:
                changes["content"] = updates.content
                changes["embedding"] = self.embedder.embed(updates.content)
            if updates.metadata is not None or updates.content is not None:
                meta = existing.metadata.to_dict()
                if updates.metadata is not None:
                    meta.update(updates.metadata.model_dump(exclude_unset=True))
                if updates.content is not None:
                    meta["custom_fields"] = {
                        **meta["custom_fields"],
                        "content_hash": compute_hash(updates.content),
                    }
                    meta["size"] = len(updates.content.encode("utf-8"))
                changes["metadata"] = meta

            self.store.update(document_id, changes)
            updated = self.store.get(document_id)
            if updated is None:
                # removed between the write and the read back
                raise DocumentNotFoundError(document_id)
        except (InvalidInputError, DocumentNotFoundError):
            raise
        except Exception as e:
            logger.error("Failed to update document %s: %s", document_id, e)
            raise DocumentUpdateFailed(
                "Failed to update document",
                details={"id": document_id, "original_error": repr(e)},
            ) from e

        return updated

    def delete_document(self, document_id: str) -> None:
        """Remove a document. Deleting an unknown id succeeds silently."""
        try:
            self.store.delete(document_id)
        except Exception as e:
            logger.error("Failed to delete document %s: %s", document_id, e)
            raise DocumentDeletionFailed(
                "Failed to delete document",
                details={"id": document_id, "original_error": repr(e)},
            ) from e

    def search(self, query: SearchQuery | Mapping[str, Any]) -> list[SearchResult]:
        """Semantic search; only results scoring at or above the threshold are returned.

        When the store cannot compare vectors, scores come from the lexical
        fallback and each result is labelled ``ScoringMode.LEXICAL``.
        """
        query = parse_request(SearchQuery, query)
        try:
            embedding = None
            if self.store.supports_vector_search:
                embedding = self.embedder.embed(query.query)
            else:
                logger.warning("Vector store has no vector search; using lexical scoring for %r", query.query)
            results = self.store.query(query, embedding)
        except InvalidInputError:
            raise
        except Exception as e:
            logger.error("Failed to search documents: %s", e)
            raise DocumentSearchFailed(
                "Failed to search documents",
                details={"query": query.query, "original_error": repr(e)},
            ) from e

        kept = []
        for result in results:
            if not passes_threshold(result.score, query.similarity_threshold):
                continue
            result.highlights = find_highlights(result.document, query.query)
            if not query.include_chunks:
                result.matched_chunks = []
                result.document.chunks = []
            if not query.include_metadata:
                meta = result.document.metadata
                result.document.metadata = DocumentMetadata(source=meta.source, type=meta.type)
            kept.append(result)

        lexical = sum(1 for r in kept if r.scoring == ScoringMode.LEXICAL)
        if lexical:
            logger.info("%d of %d result(s) scored lexically (degraded mode)", lexical, len(kept))
        return kept

    def get_stats(self) -> dict[str, Any]:
        try:
            stats = self.store.stats()
        except Exception as e:
            raise StatsRetrievalFailed("Failed to get statistics", details={"original_error": repr(e)}) from e
        return {"total_documents": stats.count, "collection_name": stats.collection_name}

    def test_connections(self) -> dict[str, bool]:
        return {
            "embedding": self.embedder.test_connection(),
            "store": self.store.ping(),
        }
