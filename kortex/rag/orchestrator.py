"""RAG orchestrator: retrieval, confidence gating and answer generation.

A query moves through a fixed sequence of stages:

    EMBEDDING -> SEARCHING -> GATED_EMPTY | GATED_LOW_CONFIDENCE | GENERATING -> DONE

The two gated stages are normal, successful outcomes with a templated answer.
Failures in embedding, search or generation end the query with an error.
"""
import time
from enum import Enum
from typing import Optional

import structlog

from kortex import config
from kortex.activity import ACTION_CHAT_QUERY
from kortex.exceptions import (
    ConfigurationError,
    EmbeddingFailureError,
    GenerationFailureError,
    KortexError,
    SearchFailureError,
)
from kortex.rag.interfaces import ActivityLog, AnswerGenerator
from kortex.rag.models import QueryOutcome, RAGResult
from kortex.rag.prompts import LOW_CONFIDENCE_ANSWER, NO_RESULTS_ANSWER, assemble_prompt
from kortex.rag.retriever import Retriever

logger = structlog.get_logger()


class QueryStage(str, Enum):
    EMBEDDING = "embedding"
    SEARCHING = "searching"
    GATED_EMPTY = "gated_empty"
    GATED_LOW_CONFIDENCE = "gated_low_confidence"
    GENERATING = "generating"
    DONE = "done"


class RAGOrchestrator:
    """Answers questions from a subject's documents."""

    def __init__(
        self,
        retriever: Retriever,
        generator: AnswerGenerator,
        activity_log: Optional[ActivityLog] = None,
        similarity_threshold: Optional[float] = None,
        confidence_floor: Optional[float] = None,
        max_chunks: Optional[int] = None,
    ):
        """Initialize the orchestrator.

        Args:
            retriever: Subject-scoped retriever
            generator: Language model client
            activity_log: Optional best-effort activity log
            similarity_threshold: Search cutoff (default from config)
            confidence_floor: Minimum top similarity needed to generate
                (default from config)
            max_chunks: Maximum chunks passed to the model (default from config)
        """
        self.retriever = retriever
        self.generator = generator
        self.activity_log = activity_log
        self.similarity_threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else config.SIMILARITY_THRESHOLD
        )
        self.confidence_floor = (
            confidence_floor if confidence_floor is not None else config.CONFIDENCE_FLOOR
        )
        self.max_chunks = max_chunks if max_chunks is not None else config.MAX_RETRIEVED_CHUNKS

    async def query(
        self,
        question: str,
        subject_id: str,
        user_id: Optional[str] = None,
    ) -> RAGResult:
        """Answer a question using only chunks from ``subject_id``.

        Args:
            question: User question
            subject_id: Subject to search
            user_id: When given, a chat_query activity entry is recorded

        Returns:
            RAGResult with the answer and the chunks behind it

        Raises:
            ConfigurationError: If model credentials are missing
            EmbeddingFailureError: If the question can't be embedded
            SearchFailureError: If the similarity search fails
            GenerationFailureError: If the language model call fails
        """
        started = time.perf_counter()
        log = logger.bind(subject_id=subject_id)
        log.info("rag_query_started", question_preview=question[:100])

        log.debug("rag_stage", stage=QueryStage.EMBEDDING.value)
        try:
            embedding = await self.retriever.embed_question(question)
        except ConfigurationError:
            raise
        except Exception as e:
            log.error("rag_embedding_failed", error=str(e), error_type=type(e).__name__)
            raise EmbeddingFailureError(
                "Failed to embed question", detail=_describe(e)
            ) from e

        log.debug("rag_stage", stage=QueryStage.SEARCHING.value)
        try:
            chunks = await self.retriever.search(
                embedding,
                subject_id,
                similarity_threshold=self.similarity_threshold,
                max_chunks=self.max_chunks,
            )
        except Exception as e:
            log.error("rag_search_failed", error=str(e), error_type=type(e).__name__)
            raise SearchFailureError("Vector search failed", detail=_describe(e)) from e

        if not chunks:
            log.info("rag_stage", stage=QueryStage.GATED_EMPTY.value)
            result = RAGResult(answer=NO_RESULTS_ANSWER, outcome=QueryOutcome.GATED_EMPTY)

        elif max(c.similarity for c in chunks) < self.confidence_floor:
            log.info(
                "rag_stage",
                stage=QueryStage.GATED_LOW_CONFIDENCE.value,
                top_similarity=max(c.similarity for c in chunks),
                confidence_floor=self.confidence_floor,
            )
            result = RAGResult(
                answer=LOW_CONFIDENCE_ANSWER,
                retrieved_chunks=chunks,
                outcome=QueryOutcome.GATED_LOW_CONFIDENCE,
            )

        else:
            log.debug("rag_stage", stage=QueryStage.GENERATING.value, chunk_count=len(chunks))
            prompt = assemble_prompt(question, chunks)
            try:
                generated = await self.generator.generate(prompt.to_messages())
            except ConfigurationError:
                raise
            except Exception as e:
                log.error(
                    "rag_generation_failed", error=str(e), error_type=type(e).__name__
                )
                raise GenerationFailureError(
                    "Failed to generate answer", detail=_describe(e)
                ) from e

            result = RAGResult(
                answer=generated.text,
                retrieved_chunks=chunks,
                tokens_used=generated.usage,
                outcome=QueryOutcome.GENERATED,
                model=generated.model,
            )

        result.elapsed_seconds = time.perf_counter() - started

        log.info(
            "rag_stage",
            stage=QueryStage.DONE.value,
            outcome=result.outcome.value,
            chunk_count=len(result.retrieved_chunks),
            elapsed_seconds=round(result.elapsed_seconds, 3),
        )

        if user_id and self.activity_log is not None:
            self.activity_log.log(
                user_id,
                ACTION_CHAT_QUERY,
                subject_id,
                {
                    "outcome": result.outcome.value,
                    "chunk_count": len(result.retrieved_chunks),
                },
            )

        return result


def _describe(error: Exception) -> str:
    if isinstance(error, KortexError):
        return error.message
    return str(error) or type(error).__name__
