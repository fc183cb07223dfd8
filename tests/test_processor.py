"""Tests for the document processor against the in-memory store."""

import pytest

from devkb.embeddings.embedder import Embedder
from devkb.embeddings.providers import HashingProvider
from devkb.errors import (
    DocumentAdditionFailed,
    DocumentNotFoundError,
    DocumentSearchFailed,
    DocumentUpdateFailed,
    EmptyInputError,
    InvalidRequestError,
)
from devkb.ingest.processor import DocumentProcessor, compute_hash
from devkb.models import DocumentStatus, DocumentType, ScoringMode
from devkb.retry import RetryPolicy
from devkb.storage import MemoryVectorStore


class SpyStore(MemoryVectorStore):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.puts = 0

    def put(self, document):
        self.puts += 1
        super().put(document)


class BrokenStore(MemoryVectorStore):
    def put(self, document):
        raise ConnectionError("store offline")

    def query(self, query, embedding):
        raise ConnectionError("store offline")


def _processor(store=None, chunk_size=1000, overlap=200):
    embedder = Embedder(HashingProvider(dimensions=128), RetryPolicy(max_retries=0), sleep=lambda _: None)
    return DocumentProcessor(embedder, store or SpyStore(), chunk_size=chunk_size, overlap=overlap)


def _request(content="Retry with exponential backoff", title="Retry notes", **meta):
    return {"title": title, "content": content, "metadata": {"source": "notes.md", **meta}}


def test_add_document():
    processor = _processor()
    doc = processor.add_document(_request(tags=["python"]))

    assert doc.status == DocumentStatus.COMPLETED
    assert len(doc.embedding) == 128
    assert doc.version == 1
    assert doc.metadata.size == len("Retry with exponential backoff")
    assert doc.metadata.custom_fields["content_hash"] == compute_hash("Retry with exponential backoff")
    stored = processor.get_document(doc.id)
    assert stored.title == "Retry notes"
    assert stored.metadata.tags == ["python"]


def test_add_document_uses_given_id():
    processor = _processor()
    doc = processor.add_document({**_request(), "document_id": "fixed-id"})
    assert doc.id == "fixed-id"
    assert processor.get_document("fixed-id") is not None


def test_add_empty_document_stores_nothing():
    store = SpyStore()
    processor = _processor(store)
    with pytest.raises(EmptyInputError):
        processor.add_document(_request(content="   \n  "))
    assert store.puts == 0
    assert processor.get_stats()["total_documents"] == 0


def test_add_invalid_request():
    processor = _processor()
    with pytest.raises(InvalidRequestError) as excinfo:
        processor.add_document({"content": "no title", "metadata": {"source": "x"}})
    assert any(err["loc"] == ["title"] for err in excinfo.value.details["errors"])


def test_add_document_store_failure_is_wrapped():
    processor = _processor(BrokenStore())
    with pytest.raises(DocumentAdditionFailed) as excinfo:
        processor.add_document(_request())
    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_add_document_with_chunks():
    processor = _processor()
    content = "word " * 500
    doc = processor.add_document_with_chunks(_request(content=content))

    assert len(doc.chunks) == 3
    assert [c.start_position for c in doc.chunks] == [0, 800, 1600]
    assert doc.chunks[-1].end_position == 2500
    assert all(c.document_id == doc.id for c in doc.chunks)
    assert all(len(c.embedding) == 128 for c in doc.chunks)
    assert doc.embedding is not None

    stored = processor.get_document(doc.id)
    assert [c.chunk_index for c in stored.chunks] == [0, 1, 2]


def test_add_document_with_chunks_overrides_window():
    processor = _processor()
    doc = processor.add_document_with_chunks(_request(content="abcde " * 20), chunk_size=50, overlap=10)
    assert all(len(c.content) <= 50 for c in doc.chunks)
    assert doc.chunks[1].start_position == 40


def test_chunked_add_is_all_or_nothing():
    store = SpyStore()
    processor = _processor(store, chunk_size=10, overlap=0)
    content = "hello wor!" + "@@@@@@@@@@" + "ld again x"
    with pytest.raises(DocumentAdditionFailed):
        processor.add_document_with_chunks(_request(content=content))
    assert store.puts == 0


def test_update_missing_document():
    processor = _processor()
    with pytest.raises(DocumentNotFoundError) as excinfo:
        processor.update_document("nope", {"title": "New"})
    assert excinfo.value.details == {"id": "nope"}


def test_update_requires_a_change():
    processor = _processor()
    doc = processor.add_document(_request())
    with pytest.raises(InvalidRequestError):
        processor.update_document(doc.id, {})


def test_update_title_bumps_version():
    processor = _processor()
    doc = processor.add_document(_request())
    updated = processor.update_document(doc.id, {"title": "Renamed"})

    assert updated.title == "Renamed"
    assert updated.version == 2
    assert updated.updated_at >= doc.updated_at
    assert updated.embedding == doc.embedding
    assert updated.created_at == doc.created_at


def test_update_content_re_embeds():
    processor = _processor()
    doc = processor.add_document(_request())
    updated = processor.update_document(doc.id, {"content": "Circuit breakers trip after repeated failures"})

    assert updated.embedding != doc.embedding
    assert updated.metadata.custom_fields["content_hash"] == compute_hash(
        "Circuit breakers trip after repeated failures"
    )
    assert updated.metadata.size == len("Circuit breakers trip after repeated failures")


def test_update_merges_metadata():
    processor = _processor()
    doc = processor.add_document(_request(tags=["old"], author="sam"))
    updated = processor.update_document(doc.id, {"metadata": {"tags": ["new"]}})

    assert updated.metadata.tags == ["new"]
    assert updated.metadata.author == "sam"
    assert updated.metadata.source == "notes.md"


def test_update_metadata_type_change():
    processor = _processor()
    doc = processor.add_document(_request())
    updated = processor.update_document(doc.id, {"metadata": {"type": "code"}})
    assert updated.metadata.type == DocumentType.CODE
    assert updated.metadata.source == "notes.md"


@pytest.mark.parametrize("metadata", [
    {"tags": "python"},
    {"bogus_key": 1},
    {"type": "spreadsheet"},
    {"source": None},
    {"tags": None},
])
def test_update_rejects_invalid_metadata(metadata):
    processor = _processor()
    doc = processor.add_document(_request(tags=["python"]))
    with pytest.raises(InvalidRequestError):
        processor.update_document(doc.id, {"metadata": metadata})
    assert processor.get_document(doc.id).metadata.tags == ["python"]


def test_update_can_clear_author():
    processor = _processor()
    doc = processor.add_document(_request(author="sam"))
    updated = processor.update_document(doc.id, {"metadata": {"author": None}})
    assert updated.metadata.author is None


class FailingReadBackStore(MemoryVectorStore):
    """Reads succeed until an update has been written."""

    def __init__(self):
        super().__init__()
        self.updated = False

    def update(self, document_id, changes):
        super().update(document_id, changes)
        self.updated = True

    def get(self, document_id):
        if self.updated:
            raise ConnectionError("store offline")
        return super().get(document_id)


def test_update_read_back_failure_is_wrapped():
    processor = _processor(FailingReadBackStore())
    doc = processor.add_document(_request())
    with pytest.raises(DocumentUpdateFailed) as excinfo:
        processor.update_document(doc.id, {"title": "Renamed"})
    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_delete_document():
    processor = _processor()
    doc = processor.add_document(_request())
    processor.delete_document(doc.id)
    assert processor.get_document(doc.id) is None
    processor.delete_document(doc.id)
    processor.delete_document("never-existed")


def test_search_finds_matching_document():
    processor = _processor()
    doc = processor.add_document(_request(content="retry backoff policy"))
    processor.add_document(_request(content="kubernetes pod scheduling", title="k8s"))

    results = processor.search({"query": "retry backoff policy", "similarity_threshold": 0.9})
    assert [r.document.id for r in results] == [doc.id]
    assert results[0].score == pytest.approx(1.0)
    assert results[0].scoring == ScoringMode.SEMANTIC
    assert results[0].highlights[0].field == "content"


def test_search_high_threshold_returns_nothing():
    processor = _processor()
    processor.add_document(_request(content="retry backoff policy"))
    assert processor.search({"query": "quarterly budget spreadsheet", "similarity_threshold": 0.95}) == []


def test_search_results_are_sorted_and_limited():
    processor = _processor()
    for i in range(5):
        processor.add_document(_request(content=f"retry backoff policy variant{i}", title=f"doc {i}"))
    results = processor.search({"query": "retry backoff policy", "similarity_threshold": 0.0, "limit": 3})
    assert len(results) == 3
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)


def test_search_without_metadata_or_chunks():
    processor = _processor()
    processor.add_document_with_chunks(_request(content="retry backoff policy", tags=["python"]))

    results = processor.search({
        "query": "retry backoff policy",
        "include_metadata": False,
        "include_chunks": False,
    })
    assert results[0].document.metadata.tags == []
    assert results[0].document.metadata.source == "notes.md"
    assert results[0].document.chunks == []
    assert results[0].matched_chunks == []


def test_search_with_chunks():
    processor = _processor(chunk_size=50, overlap=10)
    processor.add_document_with_chunks(_request(content="retry backoff policy " * 10))
    results = processor.search({"query": "retry backoff policy", "include_chunks": True, "similarity_threshold": 0.5})
    assert 0 < len(results[0].matched_chunks) <= 3


def test_search_filters():
    processor = _processor()
    processor.add_document(_request(content="retry backoff policy", tags=["python"]))
    processor.add_document(_request(content="retry backoff policy", tags=["go"]))
    results = processor.search({
        "query": "retry backoff policy",
        "filters": {"tags": ["go"]},
    })
    assert len(results) == 1
    assert results[0].document.metadata.tags == ["go"]


def test_search_invalid_limit():
    processor = _processor()
    with pytest.raises(InvalidRequestError):
        processor.search({"query": "x", "limit": 0})
    with pytest.raises(InvalidRequestError):
        processor.search({"query": "x", "limit": 101})


def test_search_lexical_fallback():
    processor = _processor(SpyStore(vector_search=False))
    processor.add_document(_request(content="Exponential backoff doubles the wait", title="Retry notes"))
    processor.add_document(_request(content="Nothing relevant", title="Other"))

    results = processor.search({"query": "backoff", "similarity_threshold": 0.5})
    assert len(results) == 1
    assert results[0].scoring == ScoringMode.LEXICAL
    assert results[0].score == pytest.approx(0.7)

    results = processor.search({"query": "retry", "similarity_threshold": 0.5})
    assert results[0].score == pytest.approx(0.9)


def test_search_store_failure_is_wrapped():
    processor = _processor(BrokenStore())
    with pytest.raises(DocumentSearchFailed):
        processor.search({"query": "anything"})


def test_stats_and_connections():
    processor = _processor(SpyStore(collection_name="kb"))
    processor.add_document(_request())
    assert processor.get_stats() == {"total_documents": 1, "collection_name": "kb"}
    assert processor.test_connections() == {"embedding": True, "store": True}
