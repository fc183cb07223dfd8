"""Data models used throughout devkb."""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import DocumentStateError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentType(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"
    MD = "md"
    HTML = "html"
    JSON = "json"
    CSV = "csv"
    CODE = "code"
    DOCUMENTATION = "documentation"
    CONFIGURATION = "configuration"
    DEVELOPMENT_HISTORY = "development-history"
    DEVELOPMENT_STATUS = "development-status"
    PROJECT_STRUCTURE = "project-structure"


class DevelopmentContext(str, Enum):
    CODE = "code"
    DOCUMENTATION = "documentation"
    CONFIGURATION = "configuration"
    ARCHITECTURE = "architecture"
    PERFORMANCE = "performance"
    BUG = "bug"
    FEATURE = "feature"
    GENERAL = "general"


CONTEXT_DOCUMENT_TYPES = {
    DevelopmentContext.CODE: DocumentType.CODE,
    DevelopmentContext.DOCUMENTATION: DocumentType.DOCUMENTATION,
    DevelopmentContext.CONFIGURATION: DocumentType.CONFIGURATION,
}


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ARCHIVED = "archived"


# Forward-only lifecycle; FAILED -> PENDING is the explicit retry.
_TRANSITIONS = {
    DocumentStatus.PENDING: {DocumentStatus.PROCESSING, DocumentStatus.FAILED},
    DocumentStatus.PROCESSING: {DocumentStatus.COMPLETED, DocumentStatus.FAILED},
    DocumentStatus.COMPLETED: {DocumentStatus.ARCHIVED},
    DocumentStatus.FAILED: {DocumentStatus.PENDING},
    DocumentStatus.ARCHIVED: set(),
}


class ScoringMode(str, Enum):
    """How a result score was produced."""
    SEMANTIC = "semantic"
    LEXICAL = "lexical"


@dataclass
class DocumentMetadata:
    """Descriptive metadata attached to a document."""
    source: str
    type: DocumentType = DocumentType.TXT
    author: str | None = None
    tags: list[str] = field(default_factory=list)
    language: str = "en"
    size: int = 0  # bytes
    mime_type: str = "text/plain"
    custom_fields: dict[str, Any] = field(default_factory=dict)
    file_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentMetadata":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["type"] = DocumentType(known.get("type", DocumentType.TXT))
        known["tags"] = list(known.get("tags") or [])
        known["custom_fields"] = dict(known.get("custom_fields") or {})
        return cls(**known)


@dataclass
class DocumentChunk:
    """A positioned, independently embedded slice of a document."""
    id: str
    document_id: str
    content: str
    embedding: list[float]
    chunk_index: int
    start_position: int
    end_position: int
    overlap_with_previous: int = 0
    overlap_with_next: int = 0
    token_count: int = 0
    importance_score: float | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Document:
    """A knowledge-base document with its chunks and embedding."""
    id: str
    title: str
    content: str
    metadata: DocumentMetadata
    chunks: list[DocumentChunk] = field(default_factory=list)
    embedding: list[float] | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 1
    status: DocumentStatus = DocumentStatus.PENDING

    def transition(self, status: DocumentStatus) -> "Document":
        """Move to ``status`` in place, rejecting backward moves."""
        if status not in _TRANSITIONS[self.status]:
            raise DocumentStateError(f"Cannot move document {self.id} from {self.status.value} to {status.value}")
        self.status = status
        return self

    @property
    def searchable(self) -> bool:
        return self.status == DocumentStatus.COMPLETED

    def with_updates(self, **changes: Any) -> "Document":
        return replace(self, **changes)


@dataclass
class MatchedChunk:
    chunk: DocumentChunk
    score: float
    relevance: float


@dataclass
class Highlight:
    field: str
    content: str
    positions: list[int] = field(default_factory=list)


@dataclass
class SearchResult:
    """A scored search hit."""
    document: Document
    score: float
    matched_chunks: list[MatchedChunk] = field(default_factory=list)
    highlights: list[Highlight] = field(default_factory=list)
    scoring: ScoringMode = ScoringMode.SEMANTIC


@dataclass
class StoreStats:
    count: int
    collection_name: str


@dataclass
class IndexingStatus:
    """Snapshot of the self-indexer's run state."""
    is_indexing: bool
    last_indexed: datetime | None = None
    passes: int = 0
