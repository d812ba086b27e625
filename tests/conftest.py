"""Pytest configuration and shared fixtures."""
import os
import tempfile

# Keep the default database and indexes out of the working tree
os.environ.setdefault("KORTEX_DATA_DIR", tempfile.mkdtemp(prefix="kortex-tests-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Dict, List, Optional

import pytest

from kortex import db
from kortex.library import LibraryManager
from kortex.rag.models import (
    ChunkMetadata,
    Document,
    GeneratedAnswer,
    RetrievedChunk,
    TokenUsage,
)
from kortex.rag.store_faiss import FAISSVectorStore

# Small vectors keep the fixtures readable
TEST_DIMENSION = 4


class FakeExtractor:
    def __init__(self, text: str = ""):
        self.text = text
        self.error: Optional[Exception] = None

    def extract(self, file_bytes: bytes) -> str:
        if self.error:
            raise self.error
        return self.text


class FakeEmbedder:
    """Returns a fixed vector per call, or one registered for the text."""

    def __init__(self, dimension: int = TEST_DIMENSION):
        self.dimension = dimension
        self.vectors: Dict[str, List[float]] = {}
        self.calls: List[str] = []
        self.error: Optional[Exception] = None
        self.bad_dimension_at: Optional[int] = None

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.error:
            raise self.error
        if self.bad_dimension_at == len(self.calls) - 1:
            return [0.1] * (self.dimension - 1)
        return self.vectors.get(text, [1.0] + [0.0] * (self.dimension - 1))

    async def embed_batch(self, texts):
        return [await self.embed(t) for t in texts]


class FakeRepository:
    def __init__(self):
        self.documents: Dict[str, Document] = {}
        self.inserted: Dict[str, list] = {}
        self.error: Optional[Exception] = None

    def create_document(self, subject_id: str, user_id: str, title: str) -> Document:
        document = Document(
            id=f"doc-{len(self.documents) + 1}",
            subject_id=subject_id,
            user_id=user_id,
            title=title,
            created_at="2024-01-01T00:00:00+00:00",
        )
        self.documents[document.id] = document
        return document

    def delete_document(self, document_id: str) -> bool:
        return self.documents.pop(document_id, None) is not None

    def insert_chunks(self, document_id, subject_id, user_id, chunks) -> List[int]:
        if self.error:
            raise self.error
        self.inserted[document_id] = list(chunks)
        return list(range(1, len(chunks) + 1))


class FakeSearch:
    """Returns canned results and records the arguments it was called with."""

    def __init__(self):
        self.results: List[RetrievedChunk] = []
        self.calls: list = []
        self.error: Optional[Exception] = None

    async def search(self, query_vector, subject_id, threshold, limit):
        self.calls.append(
            {"subject_id": subject_id, "threshold": threshold, "limit": limit}
        )
        if self.error:
            raise self.error
        return list(self.results)


class FakeGenerator:
    def __init__(self):
        self.answer = GeneratedAnswer(
            text="Photosynthesis turns light into chemical energy [Source 1].",
            usage=TokenUsage(prompt=120, completion=30, total=150),
            model="llama-3.3-70b-versatile",
        )
        self.messages: Optional[list] = None
        self.error: Optional[Exception] = None

    async def generate(self, messages):
        self.messages = messages
        if self.error:
            raise self.error
        return self.answer


class FakeActivityLog:
    def __init__(self):
        self.entries: list = []

    def log(self, user_id, action_type, entity_id=None, metadata=None):
        self.entries.append((user_id, action_type, entity_id, metadata))


def make_chunk(similarity: float, content: str = None, index: int = 0, total: int = 1):
    return RetrievedChunk(
        id=index + 1,
        content=content or f"Passage scored {similarity}",
        similarity=similarity,
        metadata=ChunkMetadata(
            chunk_index=index,
            total_chunks=total,
            source_label=f"Chunk {index + 1}/{total}",
        ),
        document_id="doc-1",
        subject_id="subject-a",
    )


@pytest.fixture
def chunk_factory():
    """Build a RetrievedChunk with a given similarity."""
    return make_chunk


@pytest.fixture
def extractor():
    return FakeExtractor(
        "Photosynthesis happens in chloroplasts. Light is absorbed by chlorophyll. "
        "Glucose is produced from carbon dioxide and water."
    )


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def searcher():
    return FakeSearch()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def activity_log():
    return FakeActivityLog()


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the SQLite helpers at a fresh database file."""
    db_path = tmp_path / "kortex.sqlite"
    monkeypatch.setattr(db, "DB_PATH", db_path)
    db.init_database()
    return db_path


@pytest.fixture
def vector_store(temp_db, tmp_path):
    return FAISSVectorStore(index_dir=tmp_path / "indexes", dimension=TEST_DIMENSION)


@pytest.fixture
def library(vector_store):
    return LibraryManager(vector_store=vector_store)
