"""Collaborator interfaces consumed by the RAG core.

The pipeline, retriever and orchestrator only depend on these protocols, so
each external service can be swapped (or faked in tests).
"""
from typing import Any, Dict, List, Optional, Protocol, Sequence

from kortex.rag.models import ChunkRecord, Document, GeneratedAnswer, RetrievedChunk


class TextExtractor(Protocol):
    def extract(self, file_bytes: bytes) -> str:
        """Return the raw text of a file. Raises UnreadableDocumentError."""
        ...


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        ...


class VectorSearch(Protocol):
    async def search(
        self,
        query_vector: Sequence[float],
        subject_id: str,
        threshold: float,
        limit: int,
    ) -> List[RetrievedChunk]:
        """Return chunks of ``subject_id`` only, highest similarity first."""
        ...


class AnswerGenerator(Protocol):
    async def generate(self, messages: List[Dict[str, str]]) -> GeneratedAnswer:
        ...


class ChunkRepository(Protocol):
    def create_document(self, subject_id: str, user_id: str, title: str) -> Document:
        ...

    def delete_document(self, document_id: str) -> bool:
        ...

    def insert_chunks(
        self,
        document_id: str,
        subject_id: str,
        user_id: str,
        chunks: Sequence[ChunkRecord],
    ) -> List[int]:
        """Store all chunks or none of them."""
        ...


class ActivityLog(Protocol):
    def log(
        self,
        user_id: str,
        action_type: str,
        entity_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record an entry in the background; never raises."""
        ...
