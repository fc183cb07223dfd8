"""Error taxonomy for devkb.

Every failure surfaced to a caller is a :class:`KnowledgeBaseError` with a
stable ``code``. Wrapping errors keep the original exception as ``__cause__``.
"""

from typing import Any


class KnowledgeBaseError(Exception):
    """Base exception for all devkb errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "statusCode": self.status_code,
                "details": self.details,
            }
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class InvalidInputError(KnowledgeBaseError):
    """Caller-supplied input is unusable. Never retried."""

    code = "INVALID_INPUT"
    status_code = 400


class EmptyInputError(InvalidInputError):
    code = "EMPTY_TEXT"


class NoValidInputError(InvalidInputError):
    code = "NO_VALID_TEXTS"


class InvalidRequestError(InvalidInputError):
    code = "INVALID_REQUEST"


class InvalidConfigurationError(KnowledgeBaseError):
    code = "INVALID_CONFIGURATION"


class EmbeddingGenerationFailed(KnowledgeBaseError):
    code = "EMBEDDING_GENERATION_FAILED"


class DocumentNotFoundError(KnowledgeBaseError):
    code = "DOCUMENT_NOT_FOUND"
    status_code = 404

    def __init__(self, document_id: str):
        super().__init__("Document not found", details={"id": document_id})
        self.document_id = document_id


class DocumentAdditionFailed(KnowledgeBaseError):
    code = "DOCUMENT_ADDITION_FAILED"


class DocumentUpdateFailed(KnowledgeBaseError):
    code = "DOCUMENT_UPDATE_FAILED"


class DocumentDeletionFailed(KnowledgeBaseError):
    code = "DOCUMENT_DELETION_FAILED"


class DocumentSearchFailed(KnowledgeBaseError):
    code = "DOCUMENT_SEARCH_FAILED"


class DocumentRetrievalFailed(KnowledgeBaseError):
    code = "DOCUMENT_RETRIEVAL_FAILED"


class StatsRetrievalFailed(KnowledgeBaseError):
    code = "STATS_RETRIEVAL_FAILED"


class DocumentStateError(ValueError):
    """Raised on an illegal document status transition."""
