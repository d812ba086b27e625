"""FAISS vector store for subject-scoped semantic search.

Handles:
- One index per subject, so a search can never see another subject's vectors
- Cosine similarity over L2-normalized vectors (inner product index)
- Index persistence with dimension validation on load
- Rebuilding a missing index from the embeddings stored in SQLite
"""
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import faiss
import numpy as np
import structlog

from kortex import config, db

logger = structlog.get_logger()


class FAISSVectorStore:
    """Per-subject FAISS indexes keyed by chunk id."""

    def __init__(
        self,
        index_dir: Path = None,
        dimension: int = None,
    ):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory holding one index file per subject (default: INDEX_DIR)
            dimension: Embedding dimension (default from config)
        """
        self.index_dir = index_dir or config.INDEX_DIR
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self._indexes: Dict[str, faiss.IndexIDMap2] = {}

        logger.info(
            "faiss_store_initialized",
            index_dir=str(self.index_dir),
            dimension=self.dimension,
        )

    def _index_path(self, subject_id: str) -> Path:
        return self.index_dir / f"{subject_id}.index"

    def _new_index(self) -> faiss.IndexIDMap2:
        # Exact inner-product search; vectors are normalized so scores are cosines
        return faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))

    def _prepare(self, vectors: Sequence[Sequence[float]]) -> np.ndarray:
        """Convert to a normalized float32 matrix, validating the dimension."""
        matrix = np.array(vectors, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[1] != self.dimension:
            got = matrix.shape[1] if matrix.ndim == 2 else matrix.shape
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.dimension}, got {got}"
            )
        faiss.normalize_L2(matrix)
        return matrix

    def load_index(self, subject_id: str) -> faiss.IndexIDMap2:
        """Return the subject's index, loading or rebuilding it if needed.

        Raises:
            ValueError: If the stored index has a different dimension
        """
        index = self._indexes.get(subject_id)
        if index is not None:
            return index

        path = self._index_path(subject_id)
        if path.exists():
            index = faiss.read_index(str(path))
            if index.d != self.dimension:
                raise ValueError(
                    f"Dimension mismatch: index for subject {subject_id} has "
                    f"dim={index.d}, expected {self.dimension}. Please rebuild the index."
                )
            logger.info(
                "faiss_index_loaded",
                subject_id=subject_id,
                vector_count=index.ntotal,
            )
        else:
            index = self._rebuild_from_db(subject_id)

        self._indexes[subject_id] = index
        return index

    def _rebuild_from_db(self, subject_id: str) -> faiss.IndexIDMap2:
        index = self._new_index()
        embeddings = db.get_subject_embeddings(subject_id)

        if embeddings:
            ids = np.array(list(embeddings.keys()), dtype=np.int64)
            index.add_with_ids(self._prepare(list(embeddings.values())), ids)
            logger.info(
                "faiss_index_rebuilt",
                subject_id=subject_id,
                vector_count=index.ntotal,
            )

        return index

    def save_index(self, subject_id: str) -> None:
        """Write the subject's index to disk."""
        index = self._indexes.get(subject_id)
        if index is None:
            return

        self.index_dir.mkdir(parents=True, exist_ok=True)
        try:
            faiss.write_index(index, str(self._index_path(subject_id)))
        except Exception as e:
            raise RuntimeError(f"Failed to save FAISS index: {e}") from e

    def add_vectors(
        self,
        subject_id: str,
        chunk_ids: Sequence[int],
        embeddings: Sequence[Sequence[float]],
    ) -> None:
        """Add chunk vectors to the subject's index and persist it.

        Raises:
            ValueError: If counts or dimensions don't match
        """
        if len(chunk_ids) != len(embeddings):
            raise ValueError(
                f"Got {len(chunk_ids)} ids for {len(embeddings)} embeddings"
            )
        if not chunk_ids:
            return

        index = self.load_index(subject_id)
        vectors = self._prepare(embeddings)
        ids = np.array(chunk_ids, dtype=np.int64)

        # A rebuild from SQLite may already hold these ids; keep adds idempotent
        index.remove_ids(ids)
        index.add_with_ids(vectors, ids)
        self.save_index(subject_id)

        logger.info(
            "vectors_added",
            subject_id=subject_id,
            count=len(chunk_ids),
            total_vectors=index.ntotal,
        )

    def remove_vectors(self, subject_id: str, chunk_ids: Sequence[int]) -> int:
        """Remove chunk vectors from the subject's index.

        Returns:
            Number of vectors removed
        """
        if not chunk_ids:
            return 0

        index = self.load_index(subject_id)
        removed = index.remove_ids(np.array(chunk_ids, dtype=np.int64))
        self.save_index(subject_id)

        logger.info("vectors_removed", subject_id=subject_id, count=removed)
        return removed

    def drop_subject(self, subject_id: str) -> None:
        """Forget a subject's index in memory and on disk."""
        self._indexes.pop(subject_id, None)
        path = self._index_path(subject_id)
        if path.exists():
            path.unlink()
            logger.info("faiss_index_deleted", subject_id=subject_id)

    def search(
        self,
        query_embedding: Sequence[float],
        subject_id: str,
        top_k: int = None,
    ) -> Tuple[List[int], List[float]]:
        """Search one subject's index.

        Args:
            query_embedding: Query vector
            subject_id: Subject whose index is searched
            top_k: Number of results to return (default from config)

        Returns:
            Tuple of (chunk_ids, cosine_scores), best first
        """
        if top_k is None:
            top_k = config.MAX_RETRIEVED_CHUNKS

        index = self.load_index(subject_id)
        query_vector = self._prepare([query_embedding])

        # Ensure we don't request more results than we have
        top_k = min(top_k, index.ntotal)

        if top_k <= 0:
            return [], []

        scores, ids = index.search(query_vector, top_k)

        # FAISS pads missing results with id -1
        pairs = [(int(i), float(s)) for i, s in zip(ids[0], scores[0]) if i != -1]

        logger.debug(
            "vector_search_completed",
            subject_id=subject_id,
            top_k=top_k,
            results_found=len(pairs),
        )

        return [i for i, _ in pairs], [s for _, s in pairs]

    def get_stats(self, subject_id: Optional[str] = None) -> dict:
        """Get statistics about loaded indexes."""
        if subject_id is not None:
            index = self.load_index(subject_id)
            return {
                "subject_id": subject_id,
                "vector_count": index.ntotal,
                "dimension": self.dimension,
                "index_exists_on_disk": self._index_path(subject_id).exists(),
            }

        return {
            "loaded_subjects": len(self._indexes),
            "vector_count": sum(i.ntotal for i in self._indexes.values()),
            "dimension": self.dimension,
        }
