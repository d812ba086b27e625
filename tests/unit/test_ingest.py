"""Tests for the document ingest pipeline."""
import pytest

from kortex.activity import ActivityLogger
from kortex.exceptions import (
    ConfigurationError,
    EmbeddingDimensionMismatchError,
    EmbeddingFailureError,
    EmptyDocumentError,
    NoChunksGeneratedError,
    PersistenceError,
    UnreadableDocumentError,
)
from kortex.rag.chunker import TextChunker
from kortex.rag.ingest import IngestPipeline

# Ten 5-token sentences: three chunks at 20 tokens with 5 tokens of overlap
LONG_TEXT = " ".join(f"Sentence {i:02d} is here." for i in range(10))


def make_pipeline(extractor, embedder, repository, activity_log=None, chunker=None, **kwargs):
    return IngestPipeline(
        extractor=extractor,
        embedder=embedder,
        repository=repository,
        activity_log=activity_log,
        chunker=chunker or TextChunker(max_tokens=20, overlap_tokens=5),
        embedding_dimension=4,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_ingest_stores_every_chunk(extractor, embedder, repository, activity_log):
    extractor.text = LONG_TEXT
    pipeline = make_pipeline(extractor, embedder, repository, activity_log)

    result = await pipeline.ingest(b"%PDF", "bio.pdf", "subject-a", "alice")

    assert result.chunk_count == 3
    assert result.title == "bio.pdf"
    assert result.document_id in repository.documents

    records = repository.inserted[result.document_id]
    assert [r.metadata.chunk_index for r in records] == [0, 1, 2]
    assert all(r.metadata.total_chunks == 3 for r in records)
    assert records[0].metadata.source_label == "Chunk 1/3"
    assert all(len(r.embedding) == 4 for r in records)


@pytest.mark.asyncio
async def test_ingest_embeds_sequentially_in_order(extractor, embedder, repository):
    extractor.text = LONG_TEXT
    pipeline = make_pipeline(extractor, embedder, repository)

    result = await pipeline.ingest(b"%PDF", "bio.pdf", "subject-a", "alice")

    records = repository.inserted[result.document_id]
    assert embedder.calls == [r.content for r in records]


@pytest.mark.asyncio
async def test_ingest_logs_activity(extractor, embedder, repository, activity_log):
    pipeline = make_pipeline(extractor, embedder, repository, activity_log)

    result = await pipeline.ingest(b"%PDF", "bio.pdf", "subject-a", "alice")

    assert activity_log.entries == [(
        "alice",
        "upload_document",
        result.document_id,
        {"title": "bio.pdf", "subject_id": "subject-a", "chunk_count": result.chunk_count},
    )]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   \n\t  "])
async def test_empty_text_creates_no_document(text, extractor, embedder, repository):
    extractor.text = text
    pipeline = make_pipeline(extractor, embedder, repository)

    with pytest.raises(EmptyDocumentError) as exc_info:
        await pipeline.ingest(b"%PDF", "scan.pdf", "subject-a", "alice")

    assert exc_info.value.document_id is None
    assert repository.documents == {}
    assert embedder.calls == []


class SilentChunker(TextChunker):
    """Produces no chunks at all, whatever the text."""

    def chunk_text(self, text):
        return []


@pytest.mark.asyncio
async def test_no_chunks_from_non_empty_text(extractor, embedder, repository, activity_log):
    pipeline = make_pipeline(
        extractor, embedder, repository, activity_log, chunker=SilentChunker()
    )

    with pytest.raises(NoChunksGeneratedError) as exc_info:
        await pipeline.ingest(b"%PDF", "bio.pdf", "subject-a", "alice")

    assert exc_info.value.document_id == "doc-1"
    assert "doc-1" in repository.documents
    assert embedder.calls == []
    assert repository.inserted == {}
    assert activity_log.entries == []


@pytest.mark.asyncio
async def test_unreadable_file_propagates(extractor, embedder, repository):
    extractor.error = UnreadableDocumentError("bad.pdf", "not a PDF")
    pipeline = make_pipeline(extractor, embedder, repository)

    with pytest.raises(UnreadableDocumentError):
        await pipeline.ingest(b"garbage", "bad.pdf", "subject-a", "alice")

    assert repository.documents == {}


@pytest.mark.asyncio
async def test_dimension_mismatch_names_chunk(extractor, embedder, repository):
    extractor.text = LONG_TEXT
    embedder.bad_dimension_at = 1
    pipeline = make_pipeline(extractor, embedder, repository)

    with pytest.raises(EmbeddingDimensionMismatchError) as exc_info:
        await pipeline.ingest(b"%PDF", "bio.pdf", "subject-a", "alice")

    error = exc_info.value
    assert error.expected == 4
    assert error.actual == 3
    assert error.chunk_index == 1
    assert error.document_id in repository.documents
    assert repository.inserted == {}


@pytest.mark.asyncio
async def test_embedder_failure_is_wrapped(extractor, embedder, repository):
    embedder.error = RuntimeError("upstream 500")
    pipeline = make_pipeline(extractor, embedder, repository)

    with pytest.raises(EmbeddingFailureError) as exc_info:
        await pipeline.ingest(b"%PDF", "bio.pdf", "subject-a", "alice")

    assert exc_info.value.chunk_index == 0
    assert exc_info.value.detail == "upstream 500"
    assert exc_info.value.document_id == "doc-1"
    assert repository.inserted == {}


@pytest.mark.asyncio
async def test_configuration_error_passes_through(extractor, embedder, repository):
    embedder.error = ConfigurationError("Cloudflare Workers AI", "CLOUDFLARE_API_TOKEN")
    pipeline = make_pipeline(extractor, embedder, repository)

    with pytest.raises(ConfigurationError) as exc_info:
        await pipeline.ingest(b"%PDF", "bio.pdf", "subject-a", "alice")

    assert exc_info.value.document_id == "doc-1"


@pytest.mark.asyncio
async def test_persistence_failure_propagates(extractor, embedder, repository, activity_log):
    repository.error = PersistenceError("Failed to store chunks")
    pipeline = make_pipeline(extractor, embedder, repository, activity_log)

    with pytest.raises(PersistenceError) as exc_info:
        await pipeline.ingest(b"%PDF", "bio.pdf", "subject-a", "alice")

    assert exc_info.value.document_id == "doc-1"
    assert activity_log.entries == []


@pytest.mark.asyncio
async def test_progress_reported_at_completion(extractor, embedder, repository):
    extractor.text = LONG_TEXT
    calls = []
    pipeline = make_pipeline(extractor, embedder, repository)

    await pipeline.ingest(
        b"%PDF", "bio.pdf", "subject-a", "alice",
        progress_callback=lambda done, total: calls.append((done, total)),
    )

    # Fewer chunks than the interval: only the final report
    assert calls == [(3, 3)]


@pytest.mark.asyncio
async def test_progress_reported_every_interval(extractor, embedder, repository):
    extractor.text = LONG_TEXT
    calls = []
    pipeline = make_pipeline(extractor, embedder, repository, progress_interval=2)

    await pipeline.ingest(
        b"%PDF", "bio.pdf", "subject-a", "alice",
        progress_callback=lambda done, total: calls.append((done, total)),
    )

    assert calls == [(2, 3), (3, 3)]


@pytest.mark.asyncio
async def test_failing_activity_log_does_not_fail_ingest(extractor, embedder, repository):
    def broken_writer(*args):
        raise OSError("disk full")

    activity = ActivityLogger(writer=broken_writer)
    pipeline = make_pipeline(extractor, embedder, repository, activity)

    result = await pipeline.ingest(b"%PDF", "bio.pdf", "subject-a", "alice")
    await activity.drain()

    assert result.chunk_count == 2


@pytest.mark.asyncio
async def test_ingest_file_reads_from_disk(tmp_path, extractor, embedder, repository):
    path = tmp_path / "notes.pdf"
    path.write_bytes(b"%PDF-1.4")
    pipeline = make_pipeline(extractor, embedder, repository)

    result = await pipeline.ingest_file(path, "subject-a", "alice")

    assert result.title == "notes.pdf"

    with pytest.raises(FileNotFoundError):
        await pipeline.ingest_file(tmp_path / "missing.pdf", "subject-a", "alice")
