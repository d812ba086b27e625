"""Sentence-based text chunking with overlap for the RAG pipeline.

Token counts are estimated as ceil(chars / 4) to avoid tokenizer
dependencies. The estimate decides chunk boundaries of already stored
documents, so it must not be swapped for a real tokenizer.
"""
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

import structlog

from kortex import config
from kortex.rag.models import ChunkMetadata

logger = structlog.get_logger()

_NEWLINE_RUNS = re.compile(r"\n{3,}")
_INLINE_WHITESPACE = re.compile(r"[ \t]+")
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def estimate_tokens(text: str) -> int:
    """Estimate token count (1 token ~ 4 characters, rounded up)."""
    return (len(text) + 3) // 4


def normalize_text(text: str) -> str:
    """Clean extracted text: unify newlines, squeeze whitespace, trim.

    Idempotent: ``normalize_text(normalize_text(x)) == normalize_text(x)``.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _NEWLINE_RUNS.sub("\n\n", text)
    text = _INLINE_WHITESPACE.sub(" ", text)
    return text.strip()


def split_sentences(text: str) -> List[str]:
    """Split text on ``.``, ``!`` or ``?`` followed by whitespace.

    The boundary whitespace is dropped. Text without sentence punctuation
    comes back as a single sentence.
    """
    text = text.strip()
    if not text:
        return []
    return [s for s in _SENTENCE_BOUNDARY.split(text) if s.strip()]


@dataclass
class TextChunk:
    """Represents a chunk of text with its position in the document."""

    content: str
    chunk_index: int
    overlap_text: str = ""  # prefix repeated from the previous chunk

    @property
    def token_estimate(self) -> int:
        return estimate_tokens(self.content)


class TextChunker:
    """Greedy sentence packer with trailing-sentence overlap."""

    def __init__(
        self,
        max_tokens: Optional[int] = None,
        overlap_tokens: Optional[int] = None,
    ):
        """Initialize the text chunker.

        Args:
            max_tokens: Token budget per chunk (default from config)
            overlap_tokens: Token budget carried into the next chunk (default from config)
        """
        self.max_tokens = max_tokens if max_tokens is not None else config.CHUNK_MAX_TOKENS
        self.overlap_tokens = (
            overlap_tokens if overlap_tokens is not None else config.CHUNK_OVERLAP_TOKENS
        )

        # Validate parameters
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        if self.overlap_tokens < 0:
            raise ValueError(
                f"overlap_tokens must not be negative, got {self.overlap_tokens}"
            )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Sentences are never cut: a sentence larger than ``max_tokens`` ends up
        whole in an oversized chunk.

        Args:
            text: Raw or normalized text

        Returns:
            List of TextChunk objects in document order
        """
        sentences = split_sentences(normalize_text(text))

        if not sentences:
            return []

        chunks: List[TextChunk] = []
        current: List[str] = []
        current_tokens = 0
        seeded_overlap = ""

        for sentence in sentences:
            sentence_tokens = estimate_tokens(sentence)

            if current and current_tokens + sentence_tokens > self.max_tokens:
                chunks.append(
                    TextChunk(
                        content=" ".join(current),
                        chunk_index=len(chunks),
                        overlap_text=seeded_overlap,
                    )
                )

                seeded_overlap, overlap_count = self._build_overlap(current)
                current = [seeded_overlap] if seeded_overlap else []
                current_tokens = overlap_count

            current.append(sentence)
            current_tokens += sentence_tokens

        if current:
            chunks.append(
                TextChunk(
                    content=" ".join(current),
                    chunk_index=len(chunks),
                    overlap_text=seeded_overlap,
                )
            )

        logger.debug(
            "text_chunked",
            sentence_count=len(sentences),
            chunk_count=len(chunks),
            max_tokens=self.max_tokens,
            overlap_tokens=self.overlap_tokens,
        )

        return chunks

    def _build_overlap(self, members: List[str]) -> Tuple[str, int]:
        """Collect trailing members that fit in the overlap budget.

        Walks backward and stops at the first member that does not fit.

        Returns:
            Tuple of (overlap_text, overlap_token_estimate)
        """
        kept: List[str] = []
        overlap_count = 0

        for member in reversed(members):
            member_tokens = estimate_tokens(member)
            if overlap_count + member_tokens > self.overlap_tokens:
                break
            kept.insert(0, member)
            overlap_count += member_tokens

        return " ".join(kept).strip(), overlap_count

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_tokens": 0,
                "avg_chunk_tokens": 0,
                "min_chunk_tokens": 0,
                "max_chunk_tokens": 0,
            }

        chunk_tokens = [c.token_estimate for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_tokens": sum(chunk_tokens),
            "avg_chunk_tokens": sum(chunk_tokens) // len(chunks),
            "min_chunk_tokens": min(chunk_tokens),
            "max_chunk_tokens": max(chunk_tokens),
            "oversized_chunks": sum(1 for t in chunk_tokens if t > self.max_tokens),
            "overlap_tokens": self.overlap_tokens,
        }


def get_chunk_metadata(chunk_index: int, total_chunks: int) -> ChunkMetadata:
    """Build the metadata stored with a chunk."""
    return ChunkMetadata(
        chunk_index=chunk_index,
        total_chunks=total_chunks,
        source_label=f"Chunk {chunk_index + 1}/{total_chunks}",
    )


def chunk_text(
    text: str,
    max_tokens: Optional[int] = None,
    overlap_tokens: Optional[int] = None,
) -> List[str]:
    """Chunk text and return only the chunk strings (convenience function)."""
    chunker = TextChunker(max_tokens=max_tokens, overlap_tokens=overlap_tokens)
    return [chunk.content for chunk in chunker.chunk_text(text)]
