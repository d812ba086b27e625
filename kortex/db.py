"""Database initialization and helpers for KORTEX.

SQLite database for storing:
- Subjects (per-user folders that scope every search)
- Documents uploaded into a subject
- Text chunks with their embeddings and chunk metadata
- The activity log
"""
import sqlite3
import json
import uuid
from typing import Optional, List, Dict, Any, Sequence
from datetime import datetime, timezone

import numpy as np
import structlog

from kortex import config

logger = structlog.get_logger()

DB_PATH = config.DB_PATH


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection() -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row and
        foreign keys enforced
    """
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_database() -> None:
    """Initialize the database schema.

    Creates tables if they don't exist. Deleting a subject cascades to its
    documents and chunks; deleting a document cascades to its chunks.
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS subjects (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                subject_id TEXT NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
                subject_id TEXT NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                user_id TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                content TEXT NOT NULL,
                embedding BLOB NOT NULL,
                metadata_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE(document_id, chunk_index)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS activity_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                action_type TEXT NOT NULL,
                entity_id TEXT,
                metadata_json TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_subject
            ON documents(subject_id)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_subject
            ON chunks(subject_id)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_document
            ON chunks(document_id)
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(DB_PATH))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


# Subjects


def create_subject(user_id: str, name: str) -> Dict[str, Any]:
    """Create a subject owned by ``user_id``.

    Returns:
        The subject row as a dictionary
    """
    subject = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "name": name,
        "created_at": _now(),
    }

    conn = get_connection()
    try:
        conn.execute(
            "INSERT INTO subjects (id, user_id, name, created_at) VALUES (?, ?, ?, ?)",
            (subject["id"], subject["user_id"], subject["name"], subject["created_at"]),
        )
        conn.commit()
        logger.info("subject_created", subject_id=subject["id"], user_id=user_id)
        return subject

    except Exception as e:
        conn.rollback()
        logger.error("subject_create_failed", error=str(e), user_id=user_id)
        raise
    finally:
        conn.close()


def get_subject(subject_id: str) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT id, user_id, name, created_at FROM subjects WHERE id = ?",
            (subject_id,),
        ).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def list_subjects(user_id: str) -> List[Dict[str, Any]]:
    """List a user's subjects with their document counts, newest first."""
    conn = get_connection()
    try:
        rows = conn.execute("""
            SELECT s.id, s.user_id, s.name, s.created_at,
                   COUNT(d.id) AS document_count
            FROM subjects s
            LEFT JOIN documents d ON d.subject_id = s.id
            WHERE s.user_id = ?
            GROUP BY s.id
            ORDER BY s.created_at DESC
        """, (user_id,)).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def rename_subject(subject_id: str, name: str) -> bool:
    """Rename a subject.

    Returns:
        True if the subject existed
    """
    conn = get_connection()
    try:
        cursor = conn.execute(
            "UPDATE subjects SET name = ? WHERE id = ?", (name, subject_id)
        )
        conn.commit()
        return cursor.rowcount > 0
    except Exception as e:
        conn.rollback()
        logger.error("subject_rename_failed", error=str(e), subject_id=subject_id)
        raise
    finally:
        conn.close()


def delete_subject(subject_id: str) -> bool:
    """Delete a subject with all of its documents and chunks.

    Returns:
        True if the subject existed
    """
    conn = get_connection()
    try:
        cursor = conn.execute("DELETE FROM subjects WHERE id = ?", (subject_id,))
        conn.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("subject_deleted", subject_id=subject_id)
        return deleted
    except Exception as e:
        conn.rollback()
        logger.error("subject_delete_failed", error=str(e), subject_id=subject_id)
        raise
    finally:
        conn.close()


# Documents


def create_document(subject_id: str, user_id: str, title: str) -> Dict[str, Any]:
    """Create a document record inside a subject.

    Raises:
        sqlite3.IntegrityError: If the subject does not exist
    """
    document = {
        "id": str(uuid.uuid4()),
        "subject_id": subject_id,
        "user_id": user_id,
        "title": title,
        "created_at": _now(),
    }

    conn = get_connection()
    try:
        conn.execute("""
            INSERT INTO documents (id, subject_id, user_id, title, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (
            document["id"],
            subject_id,
            user_id,
            title,
            document["created_at"],
        ))
        conn.commit()
        return document

    except Exception as e:
        conn.rollback()
        logger.error("document_create_failed", error=str(e), subject_id=subject_id)
        raise
    finally:
        conn.close()


def get_document(document_id: str) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT id, subject_id, user_id, title, created_at FROM documents WHERE id = ?",
            (document_id,),
        ).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def list_documents(subject_id: str) -> List[Dict[str, Any]]:
    """List the documents of a subject with their chunk counts, newest first."""
    conn = get_connection()
    try:
        rows = conn.execute("""
            SELECT d.id, d.subject_id, d.user_id, d.title, d.created_at,
                   COUNT(c.id) AS chunk_count
            FROM documents d
            LEFT JOIN chunks c ON c.document_id = d.id
            WHERE d.subject_id = ?
            GROUP BY d.id
            ORDER BY d.created_at DESC
        """, (subject_id,)).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def delete_document(document_id: str) -> bool:
    """Delete a document and, through the cascade, its chunks.

    Returns:
        True if the document existed
    """
    conn = get_connection()
    try:
        cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        conn.commit()
        return cursor.rowcount > 0
    except Exception as e:
        conn.rollback()
        logger.error("document_delete_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


# Chunks


def insert_chunks(
    document_id: str,
    subject_id: str,
    user_id: str,
    chunks: Sequence[Dict[str, Any]],
) -> List[int]:
    """Insert all chunks of a document in a single transaction.

    Args:
        document_id: Owning document
        subject_id: Owning subject (denormalized for scoped search)
        user_id: Owning user (denormalized for isolation)
        chunks: Dicts with 'content', 'embedding' and 'metadata' (a dict
            containing at least 'chunk_index')

    Returns:
        Row ids of the inserted chunks, in input order
    """
    conn = get_connection()
    created_at = _now()
    chunk_ids = []

    try:
        for chunk in chunks:
            metadata = chunk["metadata"]
            cursor = conn.execute("""
                INSERT INTO chunks (
                    document_id, subject_id, user_id, chunk_index,
                    content, embedding, metadata_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                document_id,
                subject_id,
                user_id,
                metadata["chunk_index"],
                chunk["content"],
                np.asarray(chunk["embedding"], dtype=np.float32).tobytes(),
                json.dumps(metadata),
                created_at,
            ))
            chunk_ids.append(cursor.lastrowid)

        conn.commit()
        logger.info(
            "chunks_inserted",
            document_id=document_id,
            count=len(chunk_ids),
        )
        return chunk_ids

    except Exception as e:
        conn.rollback()
        logger.error("chunk_insert_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def delete_chunks(chunk_ids: Sequence[int]) -> int:
    """Delete chunks by id.

    Returns:
        Number of chunks deleted
    """
    if not chunk_ids:
        return 0

    conn = get_connection()
    try:
        placeholders = ",".join("?" * len(chunk_ids))
        cursor = conn.execute(
            f"DELETE FROM chunks WHERE id IN ({placeholders})", list(chunk_ids)
        )
        conn.commit()
        return cursor.rowcount
    except Exception as e:
        conn.rollback()
        logger.error("chunks_delete_failed", error=str(e))
        raise
    finally:
        conn.close()


def _row_to_chunk(row: sqlite3.Row) -> Dict[str, Any]:
    chunk = dict(row)
    chunk["metadata"] = json.loads(chunk.pop("metadata_json"))
    return chunk


def get_chunks_by_ids(chunk_ids: Sequence[int]) -> List[Dict[str, Any]]:
    """Retrieve chunks (without embeddings) by row id.

    Returns:
        List of chunk dictionaries, in no particular order
    """
    if not chunk_ids:
        return []

    conn = get_connection()
    try:
        placeholders = ",".join("?" * len(chunk_ids))
        rows = conn.execute(f"""
            SELECT id, document_id, subject_id, user_id, chunk_index,
                   content, metadata_json, created_at
            FROM chunks
            WHERE id IN ({placeholders})
        """, list(chunk_ids)).fetchall()
        return [_row_to_chunk(row) for row in rows]

    except Exception as e:
        logger.error("chunks_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_chunks_by_document(document_id: str) -> List[Dict[str, Any]]:
    """Retrieve a document's chunks (without embeddings) in chunk order."""
    conn = get_connection()
    try:
        rows = conn.execute("""
            SELECT id, document_id, subject_id, user_id, chunk_index,
                   content, metadata_json, created_at
            FROM chunks
            WHERE document_id = ?
            ORDER BY chunk_index
        """, (document_id,)).fetchall()
        return [_row_to_chunk(row) for row in rows]
    finally:
        conn.close()


def get_chunk_ids_by_document(document_id: str) -> List[int]:
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT id FROM chunks WHERE document_id = ?", (document_id,)
        ).fetchall()
        return [row["id"] for row in rows]
    finally:
        conn.close()


def get_subject_embeddings(subject_id: str) -> Dict[int, np.ndarray]:
    """Load every stored embedding of a subject, keyed by chunk id.

    Used to rebuild a subject's vector index.
    """
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT id, embedding FROM chunks WHERE subject_id = ? ORDER BY id",
            (subject_id,),
        ).fetchall()
        return {
            row["id"]: np.frombuffer(row["embedding"], dtype=np.float32)
            for row in rows
        }
    finally:
        conn.close()


def get_chunk_count(subject_id: Optional[str] = None) -> int:
    """Get the number of chunks, optionally for a single subject."""
    conn = get_connection()
    try:
        if subject_id is None:
            row = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()
        else:
            row = conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE subject_id = ?", (subject_id,)
            ).fetchone()
        return row[0]
    finally:
        conn.close()


# Activity log


def insert_activity_log(
    user_id: str,
    action_type: str,
    entity_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> int:
    """Record one user action.

    Returns:
        ID of the inserted row
    """
    conn = get_connection()
    try:
        cursor = conn.execute("""
            INSERT INTO activity_logs (user_id, action_type, entity_id, metadata_json, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (
            user_id,
            action_type,
            entity_id,
            json.dumps(metadata) if metadata else None,
            _now(),
        ))
        conn.commit()
        return cursor.lastrowid
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def get_activity_logs(user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """Get a user's most recent activity entries, newest first."""
    conn = get_connection()
    try:
        rows = conn.execute("""
            SELECT id, user_id, action_type, entity_id, metadata_json, created_at
            FROM activity_logs
            WHERE user_id = ?
            ORDER BY id DESC
            LIMIT ?
        """, (user_id, limit)).fetchall()

        entries = []
        for row in rows:
            entry = dict(row)
            metadata_json = entry.pop("metadata_json")
            entry["metadata"] = json.loads(metadata_json) if metadata_json else {}
            entries.append(entry)
        return entries
    finally:
        conn.close()


def get_user_stats(user_id: str) -> Dict[str, int]:
    """Count a user's subjects, documents and chat queries."""
    conn = get_connection()
    try:
        subjects = conn.execute(
            "SELECT COUNT(*) FROM subjects WHERE user_id = ?", (user_id,)
        ).fetchone()[0]
        documents = conn.execute(
            "SELECT COUNT(*) FROM documents WHERE user_id = ?", (user_id,)
        ).fetchone()[0]
        queries = conn.execute(
            "SELECT COUNT(*) FROM activity_logs WHERE user_id = ? AND action_type = 'chat_query'",
            (user_id,),
        ).fetchone()[0]
        return {"subjects": subjects, "documents": documents, "queries": queries}
    finally:
        conn.close()


# Initialize database on module import if it doesn't exist
if not DB_PATH.exists():
    init_database()
    logger.info("database_auto_initialized", db_path=str(DB_PATH))
