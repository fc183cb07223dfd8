"""Request schemas validated before anything reaches the processor."""

from collections.abc import Mapping
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidRequestError
from .models import DocumentMetadata, DocumentType

M = TypeVar("M", bound=BaseModel)


class DocumentMetadataIn(BaseModel):
    """Metadata supplied by a caller."""
    model_config = ConfigDict(extra="forbid")

    source: str = Field(min_length=1)
    type: DocumentType = DocumentType.TXT
    author: str | None = None
    tags: list[str] = Field(default_factory=list)
    language: str = "en"
    size: int | None = Field(default=None, ge=0)
    mime_type: str = "text/plain"
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    file_path: str | None = None

    def to_metadata(self, content: str) -> DocumentMetadata:
        size = self.size if self.size is not None else len(content.encode("utf-8"))
        return DocumentMetadata(
            source=self.source,
            type=self.type,
            author=self.author,
            tags=list(self.tags),
            language=self.language,
            size=size,
            mime_type=self.mime_type,
            custom_fields=dict(self.custom_fields),
            file_path=self.file_path,
        )


class CreateDocumentRequest(BaseModel):
    """Payload for adding a document."""
    title: str = Field(min_length=1)
    content: str
    metadata: DocumentMetadataIn
    document_id: str | None = Field(default=None, min_length=1)


class DocumentMetadataUpdate(BaseModel):
    """Metadata fields to overwrite; only the keys a caller sent are applied."""
    model_config = ConfigDict(extra="forbid")

    source: str | None = Field(default=None, min_length=1)
    type: DocumentType | None = None
    author: str | None = None
    tags: list[str] | None = None
    language: str | None = None
    size: int | None = Field(default=None, ge=0)
    mime_type: str | None = None
    custom_fields: dict[str, Any] | None = None
    file_path: str | None = None

    @model_validator(mode="after")
    def _no_null_required(self) -> "DocumentMetadataUpdate":
        # only author and file_path may be cleared
        nulls = [
            name for name in self.model_fields_set
            if name not in ("author", "file_path") and getattr(self, name) is None
        ]
        if nulls:
            raise ValueError(f"{', '.join(sorted(nulls))} cannot be null")
        return self


class UpdateDocumentRequest(BaseModel):
    """Partial update; ``metadata`` keys are merged over the stored metadata."""
    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1)
    content: str | None = None
    metadata: DocumentMetadataUpdate | None = None

    @model_validator(mode="after")
    def _not_empty(self) -> "UpdateDocumentRequest":
        if self.title is None and self.content is None and self.metadata is None:
            raise ValueError("update must change at least one of title, content, metadata")
        return self


class DateRange(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("date_range.end must not precede date_range.start")
        return self


class SearchFilters(BaseModel):
    document_types: list[DocumentType] | None = None
    sources: list[str] | None = None
    tags: list[str] | None = None
    date_range: DateRange | None = None
    authors: list[str] | None = None
    custom_fields: dict[str, Any] | None = None


class SearchQuery(BaseModel):
    """A semantic search request."""
    query: str
    filters: SearchFilters | None = None
    limit: int = Field(default=10, ge=1, le=100)
    offset: int = Field(default=0, ge=0)
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    include_metadata: bool = True
    include_chunks: bool = False


def parse_request(model: type[M], data: M | Mapping[str, Any]) -> M:
    """Validate ``data`` as ``model``, raising InvalidRequestError on failure."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidRequestError(
            f"Invalid {model.__name__}",
            details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]},
        ) from e
