"""Sliding-window text chunking with fixed overlap."""

import math
from dataclasses import dataclass

from ..errors import InvalidConfigurationError

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 chars per token)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class ChunkSpan:
    """A window of the source text and where it sits."""
    index: int
    text: str
    start_position: int
    end_position: int
    overlap_with_previous: int
    overlap_with_next: int
    token_count: int


def _check_window(chunk_size: int, overlap: int) -> None:
    if chunk_size <= 0:
        raise InvalidConfigurationError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0:
        raise InvalidConfigurationError(f"overlap must not be negative, got {overlap}")
    if overlap >= chunk_size:
        raise InvalidConfigurationError(
            f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
        )


def split_spans(text: str, chunk_size: int = 1000, overlap: int = 200) -> list[ChunkSpan]:
    """Split text into overlapping windows of ``chunk_size`` characters.

    Each window after the first starts ``overlap`` characters before the
    previous one ended, so ``spans[i].end_position - spans[i].overlap_with_next
    == spans[i + 1].start_position``. Text no longer than ``chunk_size``
    (including the empty string) yields exactly one span.

    Raises:
        InvalidConfigurationError: If the window would never advance.
    """
    _check_window(chunk_size, overlap)

    length = len(text)
    bounds: list[tuple[int, int]] = []
    start = 0
    while True:
        end = min(start + chunk_size, length)
        bounds.append((start, end))
        if end >= length:
            break
        start = end - overlap

    last = len(bounds) - 1
    return [
        ChunkSpan(
            index=i,
            text=text[s:e],
            start_position=s,
            end_position=e,
            overlap_with_previous=overlap if i > 0 else 0,
            overlap_with_next=overlap if i < last else 0,
            token_count=estimate_tokens(text[s:e]),
        )
        for i, (s, e) in enumerate(bounds)
    ]


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> list[str]:
    """Split text into overlapping chunk strings."""
    return [span.text for span in split_spans(text, chunk_size, overlap)]


def reassemble(spans: list[ChunkSpan]) -> str:
    """Rebuild the source text by dropping each span's leading overlap."""
    return "".join(span.text[span.overlap_with_previous:] for span in spans)
