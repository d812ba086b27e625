"""Records passed between the RAG pipeline stages.

Persisted records (Subject, Document, ChunkRecord) mirror the database rows;
RetrievedChunk and RAGResult only live for the duration of one query.
"""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ChunkMetadata:
    """Position of a chunk within its document."""

    chunk_index: int  # 0-based
    total_chunks: int
    source_label: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkMetadata":
        return cls(
            chunk_index=int(data["chunk_index"]),
            total_chunks=int(data["total_chunks"]),
            source_label=str(data["source_label"]),
        )


@dataclass
class Subject:
    """A user-owned folder of documents; the isolation boundary for search."""

    id: str
    user_id: str
    name: str
    created_at: str


@dataclass
class Document:
    """One uploaded source file."""

    id: str
    subject_id: str
    user_id: str
    title: str
    created_at: str


@dataclass
class ChunkRecord:
    """A chunk ready to be persisted together with its embedding."""

    content: str
    embedding: List[float]
    metadata: ChunkMetadata


@dataclass
class RetrievedChunk:
    """A chunk returned by similarity search."""

    id: int
    content: str
    similarity: float  # 0-1, higher is closer
    metadata: ChunkMetadata
    document_id: Optional[str] = None
    subject_id: Optional[str] = None

    @property
    def source(self) -> str:
        """Get a formatted source string for display."""
        return self.metadata.source_label

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "similarity": round(self.similarity, 4),
            "source": self.source,
            "document_id": self.document_id,
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True)
class TokenUsage:
    """Token counters reported by the language model."""

    prompt: int
    completion: int
    total: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class GeneratedAnswer:
    """Output of an answer generator call."""

    text: str
    usage: Optional[TokenUsage] = None
    model: Optional[str] = None


class QueryOutcome(str, Enum):
    """How a query finished."""

    GENERATED = "generated"
    GATED_EMPTY = "gated_empty"
    GATED_LOW_CONFIDENCE = "gated_low_confidence"


@dataclass
class RAGResult:
    """Answer plus the X-Ray trace of the chunks behind it."""

    answer: str
    retrieved_chunks: List[RetrievedChunk] = field(default_factory=list)
    tokens_used: Optional[TokenUsage] = None
    outcome: QueryOutcome = QueryOutcome.GENERATED
    model: Optional[str] = None
    elapsed_seconds: Optional[float] = None

    @property
    def top_similarity(self) -> Optional[float]:
        if not self.retrieved_chunks:
            return None
        return max(chunk.similarity for chunk in self.retrieved_chunks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "outcome": self.outcome.value,
            "xray_context": {
                "retrieved_chunks": [c.to_dict() for c in self.retrieved_chunks],
                "chunk_count": len(self.retrieved_chunks),
                "model": self.model,
                "inference_seconds": (
                    round(self.elapsed_seconds, 3)
                    if self.elapsed_seconds is not None
                    else None
                ),
            },
            "tokens_used": self.tokens_used.to_dict() if self.tokens_used else None,
        }


@dataclass
class IngestResult:
    """Outcome of a successful document ingestion."""

    document_id: str
    chunk_count: int
    title: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
