"""Relevance scoring for search results.

Semantic scores are cosine similarities clamped into [0, 1]. When the store
cannot compare vectors, a lexical heuristic stands in; results scored that
way are labelled :attr:`ScoringMode.LEXICAL` so callers can tell them apart.
"""

import re
from collections.abc import Sequence

import numpy as np

from ..models import Document, Highlight
from ..schemas import SearchFilters

# Lexical fallback scores
TITLE_MATCH_SCORE = 0.9
CONTENT_MATCH_SCORE = 0.7
NO_MATCH_SCORE = 0.3

HIGHLIGHT_CONTEXT = 40
MAX_HIGHLIGHT_POSITIONS = 20


def clamp_score(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return float(min(1.0, max(0.0, value)))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity clamped into [0, 1]; zero-magnitude input scores 0.

    Raises:
        ValueError: If the vectors differ in length.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors must have the same length ({va.size} != {vb.size})")
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return clamp_score(float(np.dot(va, vb) / norm))


def score_from_distance(distance: float | None) -> float:
    """Convert a cosine distance (1 - similarity) into a similarity score."""
    if distance is None:
        return 0.0
    return clamp_score(1.0 - float(distance))


def lexical_score(query: str, title: str, content: str) -> float:
    """Degraded-mode score: title substring > content substring > no match."""
    needle = query.strip().lower()
    if needle and needle in title.lower():
        return TITLE_MATCH_SCORE
    if needle and needle in content.lower():
        return CONTENT_MATCH_SCORE
    return NO_MATCH_SCORE


def passes_threshold(score: float, threshold: float) -> bool:
    return score >= threshold


def find_highlights(document: Document, query: str) -> list[Highlight]:
    """Case-insensitive occurrences of ``query`` in title and content."""
    needle = query.strip()
    if not needle:
        return []
    pattern = re.compile(re.escape(needle), re.IGNORECASE)
    highlights = []
    for field_name, text in (("title", document.title), ("content", document.content)):
        positions = [m.start() for m in pattern.finditer(text)][:MAX_HIGHLIGHT_POSITIONS]
        if not positions:
            continue
        first = positions[0]
        start = max(0, first - HIGHLIGHT_CONTEXT)
        end = min(len(text), first + len(needle) + HIGHLIGHT_CONTEXT)
        highlights.append(Highlight(field=field_name, content=text[start:end], positions=positions))
    return highlights


def matches_filters(document: Document, filters: SearchFilters | None) -> bool:
    """Apply structured search filters to a document."""
    if filters is None:
        return True
    meta = document.metadata
    if filters.document_types and meta.type not in filters.document_types:
        return False
    if filters.sources and meta.source not in filters.sources:
        return False
    if filters.authors and meta.author not in filters.authors:
        return False
    if filters.tags and not set(filters.tags) & set(meta.tags):
        return False
    if filters.date_range:
        created = document.created_at
        start, end = filters.date_range.start, filters.date_range.end
        # naive bounds are taken as UTC
        if start.tzinfo is None:
            start = start.replace(tzinfo=created.tzinfo)
        if end.tzinfo is None:
            end = end.replace(tzinfo=created.tzinfo)
        if not start <= created <= end:
            return False
    if filters.custom_fields:
        for key, value in filters.custom_fields.items():
            if meta.custom_fields.get(key) != value:
                return False
    return True
