"""
Exception classes for ingestion, retrieval and generation failures.

Every error is fatal to the operation that raised it. Confidence gating is
not an error and never raises.
"""
from typing import Optional


class KortexError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class ConfigurationError(KortexError):
    """Raised when an external service is called without credentials."""

    def __init__(self, service: str, missing: str):
        super().__init__(
            message=f"{service} is not configured",
            detail=f"Set {missing} in the environment.",
        )


class NotFoundError(KortexError):
    """Raised when a subject or document does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(message=f"{entity} not found: {entity_id}")


# Ingestion


class IngestionError(KortexError):
    """Base class for failures while ingesting a document.

    ``document_id`` is set once the document record exists.
    """

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        document_id: Optional[str] = None,
    ):
        self.document_id = document_id
        super().__init__(message, detail)


class UnreadableDocumentError(IngestionError):
    """Raised when the uploaded file cannot be parsed."""

    def __init__(self, file_name: str, reason: str):
        super().__init__(
            message=f"Could not read document: {file_name}",
            detail=reason,
        )


class EmptyDocumentError(IngestionError):
    """Raised when a document contains no extractable text."""

    def __init__(self, file_name: str):
        super().__init__(
            message="Document contains no extractable text",
            detail=f"'{file_name}' may be scanned or image-only.",
        )


class NoChunksGeneratedError(IngestionError):
    """Raised when non-empty text produces zero chunks."""

    def __init__(self, document_id: str):
        super().__init__(
            message="No chunks generated from document",
            document_id=document_id,
        )


class EmbeddingDimensionMismatchError(IngestionError):
    """Raised when an embedding does not have the configured dimension."""

    def __init__(
        self,
        expected: int,
        actual: int,
        chunk_index: Optional[int] = None,
        document_id: Optional[str] = None,
    ):
        self.expected = expected
        self.actual = actual
        self.chunk_index = chunk_index
        where = f" for chunk {chunk_index}" if chunk_index is not None else ""
        super().__init__(
            message=f"Expected {expected}-dimensional vector{where}, got {actual}",
            document_id=document_id,
        )


class PersistenceError(IngestionError):
    """Raised when chunk records cannot be stored."""


# Shared by ingestion and query


class EmbeddingFailureError(KortexError):
    """Raised when the embedding service fails or returns an unusable vector."""

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        chunk_index: Optional[int] = None,
        document_id: Optional[str] = None,
    ):
        self.chunk_index = chunk_index
        self.document_id = document_id
        super().__init__(message, detail)


# Query


class SearchFailureError(KortexError):
    """Raised when the similarity search fails."""


class GenerationFailureError(KortexError):
    """Raised when the language model call fails."""
