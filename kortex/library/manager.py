"""Library manager: subjects, documents and chunk storage for KORTEX.

Implements the persistence and vector-search collaborators of the RAG core
on top of the SQLite helpers in ``kortex.db`` and the per-subject FAISS
indexes in ``kortex.rag.store_faiss``.
"""
from typing import Any, Dict, List, Optional, Sequence

import structlog

from kortex import db
from kortex.activity import (
    ACTION_CHAT_QUERY,
    ACTION_CREATE_SUBJECT,
    ACTION_DELETE_DOCUMENT,
    ACTION_DELETE_SUBJECT,
    ACTION_UPDATE_SUBJECT,
    ACTION_UPLOAD_DOCUMENT,
)
from kortex.exceptions import NotFoundError, PersistenceError
from kortex.rag.models import ChunkMetadata, ChunkRecord, Document, RetrievedChunk, Subject
from kortex.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()

SUBJECT_TOPICS = {
    ACTION_CREATE_SUBJECT: "Created Subject",
    ACTION_UPDATE_SUBJECT: "Renamed Subject",
    ACTION_DELETE_SUBJECT: "Deleted Subject",
}


class LibraryManager:
    """Manages subjects, documents and their searchable chunks."""

    def __init__(self, vector_store: Optional[FAISSVectorStore] = None):
        """Initialize the library manager.

        Args:
            vector_store: FAISS store used for chunk vectors
        """
        self.vector_store = vector_store or FAISSVectorStore()

    # Subjects

    def create_subject(self, user_id: str, name: str) -> Subject:
        return Subject(**db.create_subject(user_id, name))

    def get_subject(self, subject_id: str) -> Subject:
        """Get a subject by id.

        Raises:
            NotFoundError: If the subject doesn't exist
        """
        row = db.get_subject(subject_id)
        if row is None:
            raise NotFoundError("Subject", subject_id)
        return Subject(**row)

    def list_subjects(self, user_id: str) -> List[Dict[str, Any]]:
        return db.list_subjects(user_id)

    def rename_subject(self, subject_id: str, name: str) -> Subject:
        if not db.rename_subject(subject_id, name):
            raise NotFoundError("Subject", subject_id)
        logger.info("subject_renamed", subject_id=subject_id)
        return self.get_subject(subject_id)

    def delete_subject(self, subject_id: str) -> bool:
        """Delete a subject, its documents, its chunks and its vector index.

        Returns:
            True if the subject existed
        """
        deleted = db.delete_subject(subject_id)
        self.vector_store.drop_subject(subject_id)
        return deleted

    # Documents

    def create_document(self, subject_id: str, user_id: str, title: str) -> Document:
        """Create a document record.

        Raises:
            NotFoundError: If the subject doesn't exist
        """
        if db.get_subject(subject_id) is None:
            raise NotFoundError("Subject", subject_id)

        document = Document(**db.create_document(subject_id, user_id, title))
        logger.info(
            "document_created",
            document_id=document.id,
            subject_id=subject_id,
            title=title,
        )
        return document

    def get_document(self, document_id: str) -> Document:
        row = db.get_document(document_id)
        if row is None:
            raise NotFoundError("Document", document_id)
        return Document(**row)

    def list_documents(self, subject_id: str) -> List[Dict[str, Any]]:
        return db.list_documents(subject_id)

    def delete_document(self, document_id: str) -> bool:
        """Delete a document together with its chunks and their vectors.

        Returns:
            True if the document existed
        """
        row = db.get_document(document_id)
        if row is None:
            return False

        chunk_ids = db.get_chunk_ids_by_document(document_id)
        deleted = db.delete_document(document_id)
        self.vector_store.remove_vectors(row["subject_id"], chunk_ids)

        logger.info(
            "document_deleted",
            document_id=document_id,
            chunks_deleted=len(chunk_ids),
        )
        return deleted

    # Chunks

    def insert_chunks(
        self,
        document_id: str,
        subject_id: str,
        user_id: str,
        chunks: Sequence[ChunkRecord],
    ) -> List[int]:
        """Store a document's chunks and index their vectors, all or nothing.

        The SQLite insert is one transaction. If the vector index update fails
        afterwards the inserted rows are deleted again.

        Raises:
            PersistenceError: If either store rejects the batch
        """
        rows = [
            {
                "content": chunk.content,
                "embedding": chunk.embedding,
                "metadata": chunk.metadata.to_dict(),
            }
            for chunk in chunks
        ]

        try:
            chunk_ids = db.insert_chunks(document_id, subject_id, user_id, rows)
        except Exception as e:
            raise PersistenceError(
                "Failed to store chunks", detail=str(e), document_id=document_id
            ) from e

        try:
            self.vector_store.add_vectors(
                subject_id, chunk_ids, [chunk.embedding for chunk in chunks]
            )
        except Exception as e:
            logger.error(
                "vector_index_update_failed",
                document_id=document_id,
                error=str(e),
            )
            db.delete_chunks(chunk_ids)
            raise PersistenceError(
                "Failed to index chunks", detail=str(e), document_id=document_id
            ) from e

        return chunk_ids

    def get_document_chunks(self, document_id: str) -> List[Dict[str, Any]]:
        return db.get_chunks_by_document(document_id)

    # Dashboard

    def get_user_stats(self, user_id: str) -> Dict[str, int]:
        return db.get_user_stats(user_id)

    def get_recent_activity(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Get a user's latest activity entries shaped for display, newest first.

        Each entry has ``id``, ``subject`` (a subject name or a fallback
        label), ``topic`` and ``time``.
        """
        subject_names: Dict[str, Optional[str]] = {}

        def subject_name(subject_id: Optional[str]) -> Optional[str]:
            if not subject_id:
                return None
            if subject_id not in subject_names:
                row = db.get_subject(subject_id)
                subject_names[subject_id] = row["name"] if row else None
            return subject_names[subject_id]

        activities = []
        for entry in db.get_activity_logs(user_id, limit=limit):
            action = entry["action_type"]
            metadata = entry["metadata"]

            if action == ACTION_CHAT_QUERY:
                topic = "Chat Query"
                subject = subject_name(entry["entity_id"]) or "Study Session"
            elif action == ACTION_UPLOAD_DOCUMENT:
                topic = f"Uploaded {metadata.get('title') or 'Document'}"
                subject = subject_name(metadata.get("subject_id")) or "General"
            elif action == ACTION_DELETE_DOCUMENT:
                topic = f"Deleted {metadata.get('title') or 'Document'}"
                subject = "General"
            elif action in SUBJECT_TOPICS:
                topic = SUBJECT_TOPICS[action]
                subject = metadata.get("name") or "General"
            else:
                topic = "Unknown Activity"
                subject = "General"

            activities.append({
                "id": entry["id"],
                "subject": subject,
                "topic": topic,
                "time": entry["created_at"],
            })

        return activities

    # Search

    async def search(
        self,
        query_vector: Sequence[float],
        subject_id: str,
        threshold: float,
        limit: int,
    ) -> List[RetrievedChunk]:
        """Find the chunks of one subject most similar to ``query_vector``.

        Every hit is checked against ``subject_id`` again after the database
        lookup; a row from another subject is dropped and logged.

        Returns:
            At most ``limit`` chunks with similarity >= ``threshold``,
            highest similarity first
        """
        if limit <= 0:
            return []

        chunk_ids, scores = self.vector_store.search(query_vector, subject_id, top_k=limit)
        if not chunk_ids:
            return []

        rows = {row["id"]: row for row in db.get_chunks_by_ids(chunk_ids)}

        results = []
        for chunk_id, score in zip(chunk_ids, scores):
            row = rows.get(chunk_id)
            if row is None:
                logger.warning("chunk_missing_for_vector", chunk_id=chunk_id)
                continue
            if row["subject_id"] != subject_id:
                logger.error(
                    "cross_subject_hit_dropped",
                    chunk_id=chunk_id,
                    requested_subject=subject_id,
                )
                continue

            similarity = min(max(score, 0.0), 1.0)
            if similarity < threshold:
                continue

            results.append(
                RetrievedChunk(
                    id=chunk_id,
                    content=row["content"],
                    similarity=similarity,
                    metadata=ChunkMetadata.from_dict(row["metadata"]),
                    document_id=row["document_id"],
                    subject_id=row["subject_id"],
                )
            )

        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:limit]
