"""Ingest pipeline for uploaded study documents.

Orchestrates:
- Text extraction
- Document record creation
- Sentence-based chunking
- Sequential embedding generation with progress reporting
- Atomic chunk persistence
"""
from pathlib import Path
from typing import Callable, List, Optional
import structlog

from kortex import config
from kortex.activity import ACTION_UPLOAD_DOCUMENT
from kortex.exceptions import (
    EmbeddingDimensionMismatchError,
    EmbeddingFailureError,
    EmptyDocumentError,
    KortexError,
    NoChunksGeneratedError,
)
from kortex.rag.chunker import TextChunk, TextChunker, get_chunk_metadata
from kortex.rag.interfaces import ActivityLog, ChunkRepository, Embedder, TextExtractor
from kortex.rag.models import ChunkRecord, IngestResult

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int], None]


class IngestPipeline:
    """Pipeline for turning an uploaded file into searchable chunks."""

    def __init__(
        self,
        extractor: TextExtractor,
        embedder: Embedder,
        repository: ChunkRepository,
        activity_log: Optional[ActivityLog] = None,
        chunker: Optional[TextChunker] = None,
        embedding_dimension: int = None,
        progress_interval: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            extractor: Turns file bytes into raw text
            embedder: Embedding service
            repository: Document and chunk persistence
            activity_log: Optional best-effort activity log
            chunker: Text chunker (default: 600/100 tokens from config)
            embedding_dimension: Required vector length (default from config)
            progress_interval: Report progress every N embeddings (default from config)
        """
        self.extractor = extractor
        self.embedder = embedder
        self.repository = repository
        self.activity_log = activity_log
        self.chunker = chunker or TextChunker()
        self.embedding_dimension = embedding_dimension or config.EMBEDDING_DIMENSION
        self.progress_interval = progress_interval or config.EMBEDDING_PROGRESS_INTERVAL

    async def ingest(
        self,
        file_bytes: bytes,
        file_name: str,
        subject_id: str,
        user_id: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IngestResult:
        """Extract, chunk, embed and store one document.

        Args:
            file_bytes: Uploaded file content
            file_name: Original file name, used as the document title
            subject_id: Subject the document belongs to
            user_id: Owner of the document
            progress_callback: Optional callback(embedded_count, total_chunks)

        Returns:
            IngestResult with the new document id and chunk count

        Raises:
            UnreadableDocumentError: If the file can't be parsed
            EmptyDocumentError: If no text could be extracted
            NoChunksGeneratedError: If chunking produced nothing
            EmbeddingDimensionMismatchError: If a vector has the wrong length
            EmbeddingFailureError: If the embedding service fails
            PersistenceError: If the chunks can't be stored
        """
        logger.info("ingesting_document", file_name=file_name, subject_id=subject_id)

        # Step 1: extract text
        raw_text = self.extractor.extract(file_bytes)
        if not raw_text or not raw_text.strip():
            logger.warning("document_empty", file_name=file_name)
            raise EmptyDocumentError(file_name)

        logger.debug("text_extracted", file_name=file_name, characters=len(raw_text))

        # Step 2: create the document record before any further failure point
        document = self.repository.create_document(subject_id, user_id, file_name)

        try:
            # Step 3: chunk
            chunks = self.chunker.chunk_text(raw_text)
            if not chunks:
                logger.error(
                    "no_chunks_from_non_empty_text",
                    document_id=document.id,
                    characters=len(raw_text),
                )
                raise NoChunksGeneratedError(document.id)

            logger.info(
                "document_chunked",
                document_id=document.id,
                **self.chunker.get_chunk_stats(chunks),
            )

            # Step 4: embed, one chunk at a time
            embeddings = await self.embed_chunks(chunks, progress_callback)

            # Step 5: persist as one batch
            total = len(chunks)
            records = [
                ChunkRecord(
                    content=chunk.content,
                    embedding=embedding,
                    metadata=get_chunk_metadata(chunk.chunk_index, total),
                )
                for chunk, embedding in zip(chunks, embeddings)
            ]
            self.repository.insert_chunks(document.id, subject_id, user_id, records)

        except KortexError as e:
            if getattr(e, "document_id", None) is None:
                e.document_id = document.id
            logger.error(
                "document_ingestion_failed",
                document_id=document.id,
                file_name=file_name,
                error=e.message,
                error_type=type(e).__name__,
            )
            raise

        result = IngestResult(
            document_id=document.id,
            chunk_count=len(records),
            title=file_name,
        )

        if self.activity_log is not None:
            self.activity_log.log(
                user_id,
                ACTION_UPLOAD_DOCUMENT,
                document.id,
                {"title": file_name, "subject_id": subject_id, "chunk_count": len(records)},
            )

        logger.info(
            "document_ingested",
            document_id=document.id,
            file_name=file_name,
            chunk_count=len(records),
        )

        return result

    async def embed_chunks(
        self,
        chunks: List[TextChunk],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[List[float]]:
        """Embed chunks sequentially, validating every vector.

        Requests are deliberately not parallelized: it bounds load on the
        embedding service and pins a failure to a single chunk.

        Raises:
            EmbeddingDimensionMismatchError: If a vector has the wrong length
            EmbeddingFailureError: If the embedding service fails
        """
        embeddings = []
        total = len(chunks)

        for chunk in chunks:
            try:
                embedding = await self.embedder.embed(chunk.content)
            except KortexError:
                raise
            except Exception as e:
                logger.error(
                    "embedding_generation_failed",
                    chunk_index=chunk.chunk_index,
                    text_preview=chunk.content[:100],
                    error=str(e),
                )
                raise EmbeddingFailureError(
                    f"Failed to generate embedding for chunk {chunk.chunk_index}",
                    detail=str(e),
                    chunk_index=chunk.chunk_index,
                ) from e

            if len(embedding) != self.embedding_dimension:
                raise EmbeddingDimensionMismatchError(
                    expected=self.embedding_dimension,
                    actual=len(embedding),
                    chunk_index=chunk.chunk_index,
                )

            embeddings.append(embedding)

            done = len(embeddings)
            if done % self.progress_interval == 0 or done == total:
                logger.info("embedding_progress", embedded=done, total=total)
                if progress_callback:
                    progress_callback(done, total)

        return embeddings

    async def ingest_file(
        self,
        file_path: Path,
        subject_id: str,
        user_id: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IngestResult:
        """Ingest a file from disk (convenience for scripts).

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        return await self.ingest(
            file_path.read_bytes(),
            file_path.name,
            subject_id,
            user_id,
            progress_callback=progress_callback,
        )
