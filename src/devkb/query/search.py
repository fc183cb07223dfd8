"""Semantic search over the knowledge base."""

from typing import Any

from ..ingest.processor import DocumentProcessor
from ..models import SearchResult


def semantic_search(
    query: str,
    config: dict[str, Any],
    n_results: int | None = None,
    similarity_threshold: float | None = None,
    filters: dict[str, Any] | None = None,
    include_chunks: bool = False,
    processor: DocumentProcessor | None = None,
) -> list[SearchResult]:
    """Run a semantic search query.

    Args:
        query: Natural language search query.
        config: Application config; supplies defaults for limit and threshold.
        n_results: Number of results to return.
        similarity_threshold: Minimum score in [0, 1].
        filters: Structured filters (document_types, sources, tags, ...).
        include_chunks: Attach the best matching chunks to each result.
        processor: Reuse an existing processor instead of building one from config.

    Returns:
        Results at or above the threshold, best first.
    """
    search_cfg = config.get("search", {})
    processor = processor or DocumentProcessor.from_config(config)
    return processor.search({
        "query": query,
        "filters": filters,
        "limit": n_results if n_results is not None else search_cfg.get("limit", 10),
        "similarity_threshold": (
            similarity_threshold if similarity_threshold is not None
            else search_cfg.get("similarity_threshold", 0.7)
        ),
        "include_chunks": include_chunks,
    })
