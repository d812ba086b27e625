"""Retriever for subject-scoped semantic search.

Handles:
- Query embedding generation and dimension validation
- Similarity search restricted to a single subject
- Threshold and result-count limits

Confidence gating is left to the caller (see ``kortex.rag.orchestrator``).
"""
from typing import List, Optional, Sequence

import structlog

from kortex import config
from kortex.exceptions import EmbeddingDimensionMismatchError
from kortex.rag.interfaces import Embedder, VectorSearch
from kortex.rag.models import RetrievedChunk

logger = structlog.get_logger()


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(
        self,
        embedder: Embedder,
        vector_search: VectorSearch,
        embedding_dimension: int = None,
    ):
        """Initialize the retriever.

        Args:
            embedder: Embedding service used for questions
            vector_search: Subject-scoped similarity search
            embedding_dimension: Required vector length (default from config)
        """
        self.embedder = embedder
        self.vector_search = vector_search
        self.embedding_dimension = embedding_dimension or config.EMBEDDING_DIMENSION

    async def embed_question(self, question: str) -> List[float]:
        """Embed a question.

        Raises:
            EmbeddingDimensionMismatchError: If the vector has the wrong length
            Exception: Whatever the embedder raises
        """
        embedding = await self.embedder.embed(question)

        if len(embedding) != self.embedding_dimension:
            raise EmbeddingDimensionMismatchError(
                expected=self.embedding_dimension, actual=len(embedding)
            )

        logger.debug("query_embedded", dimension=len(embedding))
        return embedding

    async def search(
        self,
        query_embedding: Sequence[float],
        subject_id: str,
        similarity_threshold: Optional[float] = None,
        max_chunks: Optional[int] = None,
    ) -> List[RetrievedChunk]:
        """Search one subject for chunks similar to an embedded question.

        Results keep the order of the search collaborator (best first).
        """
        if similarity_threshold is None:
            similarity_threshold = config.SIMILARITY_THRESHOLD
        if max_chunks is None:
            max_chunks = config.MAX_RETRIEVED_CHUNKS

        results = await self.vector_search.search(
            query_embedding, subject_id, similarity_threshold, max_chunks
        )

        logger.info(
            "retrieval_completed",
            subject_id=subject_id,
            results_returned=len(results),
            top_similarity=results[0].similarity if results else None,
        )

        return list(results)

    async def retrieve(
        self,
        question: str,
        subject_id: str,
        similarity_threshold: Optional[float] = None,
        max_chunks: Optional[int] = None,
    ) -> List[RetrievedChunk]:
        """Retrieve relevant chunks for a question.

        Args:
            question: User question text
            subject_id: Only chunks of this subject are searched
            similarity_threshold: Minimum similarity (default from config, 0.5)
            max_chunks: Maximum number of chunks (default from config, 5)

        Returns:
            List of RetrievedChunk objects, highest similarity first
        """
        logger.info(
            "retrieval_started",
            subject_id=subject_id,
            query_length=len(question),
        )

        embedding = await self.embed_question(question)
        return await self.search(embedding, subject_id, similarity_threshold, max_chunks)
