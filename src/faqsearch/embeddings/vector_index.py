"""
FAISS vector index for FAQ embeddings.

Stores one record per string id (e.g. "faq-42") with metadata, and answers
cosine-similarity queries. Vectors are L2-normalized and kept in an exact
inner-product index wrapped in an IndexIDMap2, so records can be replaced
and removed individually.

Example:
    index = FAISSVectorIndex(index_dir=Path("data/vector_index"), dimension=384)
    index.load()

    index.upsert("faq-42", vector, {"faqId": 42, "question": "..."})
    matches = index.query(query_vector, top_k=10, min_score=0.7)

    index.save()
"""

import logging
import pickle
import threading
from pathlib import Path
from typing import Optional

import numpy as np

from .models import VectorMatch

logger = logging.getLogger(__name__)


class VectorIndexError(Exception):
    """Base exception for vector index errors."""
    pass


class DimensionMismatchError(VectorIndexError):
    """Raised when a vector's length doesn't match the index dimension."""
    pass


class IndexCompatibilityError(VectorIndexError):
    """Raised when a saved index was built with a different model or dimension."""
    pass


def normalize(vectors: np.ndarray) -> np.ndarray:
    """L2-normalize rows; zero rows are left unchanged."""
    vectors = np.atleast_2d(np.asarray(vectors, dtype=np.float32))
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1
    return np.ascontiguousarray(vectors / norms)


class FAISSVectorIndex:
    """
    Thread-safe FAISS index keyed by string ids.

    The manager handles:
    - Upsert and delete of individual records or batches
    - Cosine-similarity queries with an optional score threshold
    - Persistence to/from disk with model compatibility checking
    - Reloading when another process (the indexer) saved a newer copy

    Example:
        index = FAISSVectorIndex(index_dir=Path("data/vector_index"), dimension=384)
        index.upsert_batch([("faq-1", v1, {"faqId": 1}), ("faq-2", v2, {"faqId": 2})])
        index.query(q, top_k=5)
    """

    INDEX_FILE = "faq.index"
    RECORDS_FILE = "records.pkl"
    METADATA_FILE = "index_metadata.pkl"

    def __init__(
        self,
        index_dir: Path = Path("data/vector_index"),
        dimension: int = 384,
        model_version: str = "all-MiniLM-L6-v2",
    ):
        """
        Initialize an empty index.

        Args:
            index_dir: Directory for index files
            dimension: Vector length D
            model_version: Embedding model tag for compatibility checking
        """
        self.index_dir = Path(index_dir)
        self.dimension = dimension
        self.model_version = model_version

        self._lock = threading.RLock()
        self._index = None

        # FAISS int64 id <-> string id, plus metadata per string id
        self._id_to_key: dict[int, str] = {}
        self._key_to_id: dict[str, int] = {}
        self._metadata: dict[str, dict] = {}
        self._next_id = 0

        self._loaded_mtime: Optional[float] = None

    def _new_index(self):
        import faiss

        return faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))

    def _ensure_index(self):
        if self._index is None:
            self._index = self._new_index()
        return self._index

    def _check_dimension(self, vectors: np.ndarray) -> None:
        if vectors.shape[1] != self.dimension:
            raise DimensionMismatchError(
                f"Vector dimension {vectors.shape[1]} doesn't match index "
                f"dimension {self.dimension}"
            )

    def _allocate_id(self, key: str) -> int:
        faiss_id = self._next_id
        self._next_id += 1
        self._key_to_id[key] = faiss_id
        self._id_to_key[faiss_id] = key
        return faiss_id

    def _remove_keys(self, keys: list[str]) -> int:
        ids = [self._key_to_id[k] for k in keys if k in self._key_to_id]
        if not ids:
            return 0

        self._ensure_index().remove_ids(np.asarray(ids, dtype=np.int64))
        for faiss_id in ids:
            key = self._id_to_key.pop(faiss_id)
            del self._key_to_id[key]
            self._metadata.pop(key, None)
        return len(ids)

    # =========================================================================
    # Write Methods
    # =========================================================================

    def upsert(self, key: str, vector: np.ndarray, metadata: Optional[dict] = None) -> None:
        """
        Insert or replace one record.

        Args:
            key: Record id (e.g. "faq-42")
            vector: Embedding of shape (dimension,)
            metadata: JSON-compatible metadata stored with the record

        Raises:
            DimensionMismatchError: If the vector length is wrong
        """
        self.upsert_batch([(key, vector, metadata or {})])

    def upsert_batch(self, records: list[tuple[str, np.ndarray, dict]]) -> int:
        """
        Insert or replace several records.

        Args:
            records: List of (key, vector, metadata) tuples

        Returns:
            Number of records written

        Raises:
            DimensionMismatchError: If any vector length is wrong (nothing is written)
        """
        if not records:
            return 0

        vectors = normalize(np.stack([np.asarray(r[1], dtype=np.float32) for r in records]))
        self._check_dimension(vectors)

        # Last write wins for duplicate keys within one batch
        latest: dict[str, int] = {key: pos for pos, (key, _, _) in enumerate(records)}

        with self._lock:
            index = self._ensure_index()
            self._remove_keys(list(latest))

            positions = sorted(latest.values())
            ids = np.asarray(
                [self._allocate_id(records[p][0]) for p in positions], dtype=np.int64
            )
            index.add_with_ids(vectors[positions], ids)

            for p in positions:
                key, _, metadata = records[p]
                self._metadata[key] = dict(metadata or {})

        logger.debug(f"Upserted {len(positions)} vectors (total: {self.count})")
        return len(positions)

    def update_metadata(self, key: str, metadata: dict) -> bool:
        """
        Merge metadata into an existing record, leaving its vector untouched.

        Returns:
            False if the record doesn't exist
        """
        with self._lock:
            if key not in self._key_to_id:
                return False
            self._metadata.setdefault(key, {}).update(metadata)
        return True

    def get_metadata(self, key: str) -> Optional[dict]:
        with self._lock:
            if key not in self._key_to_id:
                return None
            return dict(self._metadata.get(key, {}))

    def delete(self, key: str) -> bool:
        """Remove one record. Returns False if it didn't exist."""
        return self.delete_batch([key]) == 1

    def delete_batch(self, keys: list[str]) -> int:
        """
        Remove several records.

        Returns:
            Number of records actually removed
        """
        with self._lock:
            removed = self._remove_keys(list(dict.fromkeys(keys)))
        if removed:
            logger.info(f"Deleted {removed} vectors from index")
        return removed

    # =========================================================================
    # Query Methods
    # =========================================================================

    def query(
        self,
        vector: np.ndarray,
        top_k: int = 10,
        min_score: Optional[float] = None,
    ) -> list[VectorMatch]:
        """
        Find the records most similar to a vector.

        Args:
            vector: Query embedding of shape (dimension,)
            top_k: Maximum matches to return
            min_score: Drop matches with cosine similarity below this value

        Returns:
            Matches ordered by score descending

        Raises:
            DimensionMismatchError: If the vector length is wrong
        """
        query = normalize(vector)
        self._check_dimension(query)

        with self._lock:
            if self._index is None or self._index.ntotal == 0 or top_k <= 0:
                return []

            k = min(top_k, self._index.ntotal)
            scores, ids = self._index.search(query, k)

            matches = []
            for score, faiss_id in zip(scores[0], ids[0]):
                if faiss_id < 0:
                    continue
                key = self._id_to_key.get(int(faiss_id))
                if key is None:
                    continue
                score = float(score)
                if min_score is not None and score < min_score:
                    continue
                matches.append(
                    VectorMatch(id=key, score=score, metadata=dict(self._metadata.get(key, {})))
                )

        return matches

    def get_vector(self, key: str) -> Optional[np.ndarray]:
        """Reconstruct the stored (normalized) vector for a record."""
        with self._lock:
            faiss_id = self._key_to_id.get(key)
            if faiss_id is None or self._index is None:
                return None
            return self._index.reconstruct(faiss_id)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._key_to_id)

    def __contains__(self, key: str) -> bool:
        return key in self._key_to_id

    @property
    def count(self) -> int:
        return self._index.ntotal if self._index is not None else 0

    # =========================================================================
    # Persistence
    # =========================================================================

    def save(self) -> None:
        """
        Save the index and its mappings to disk.

        Creates the following files in index_dir:
        - faq.index: FAISS index
        - records.pkl: id mappings and per-record metadata
        - index_metadata.pkl: model version and dimension
        - model_version.txt: model version for easy inspection
        """
        import faiss

        self.index_dir.mkdir(parents=True, exist_ok=True)

        with self._lock:
            index = self._ensure_index()
            # Renamed into place once complete
            tmp_path = self.index_dir / f"{self.INDEX_FILE}.tmp"
            faiss.write_index(index, str(tmp_path))

            with open(self.index_dir / self.RECORDS_FILE, "wb") as f:
                pickle.dump(
                    {
                        "id_to_key": self._id_to_key,
                        "metadata": self._metadata,
                        "next_id": self._next_id,
                    },
                    f,
                )

            with open(self.index_dir / self.METADATA_FILE, "wb") as f:
                pickle.dump(
                    {"model_version": self.model_version, "dimension": self.dimension}, f
                )

            with open(self.index_dir / "model_version.txt", "w") as f:
                f.write(self.model_version)

            index_path = self.index_dir / self.INDEX_FILE
            tmp_path.replace(index_path)
            self._loaded_mtime = index_path.stat().st_mtime

        logger.info(f"Saved vector index with {self.count} vectors to {self.index_dir}")

    def load(self) -> bool:
        """
        Load the index from disk.

        Returns:
            True if an index was loaded, False if none exists

        Raises:
            IndexCompatibilityError: If model version or dimension doesn't match
        """
        import faiss

        if not self.exists():
            logger.warning(f"No vector index found in {self.index_dir}")
            return False

        metadata_path = self.index_dir / self.METADATA_FILE
        if metadata_path.exists():
            with open(metadata_path, "rb") as f:
                metadata = pickle.load(f)

            saved_version = metadata.get("model_version", "unknown")
            if saved_version != self.model_version:
                raise IndexCompatibilityError(
                    f"Index model version '{saved_version}' doesn't match "
                    f"current version '{self.model_version}'"
                )
            saved_dimension = metadata.get("dimension", self.dimension)
            if saved_dimension != self.dimension:
                raise IndexCompatibilityError(
                    f"Index dimension {saved_dimension} doesn't match "
                    f"configured dimension {self.dimension}"
                )

        index_path = self.index_dir / self.INDEX_FILE
        with self._lock:
            mtime = index_path.stat().st_mtime
            self._index = faiss.read_index(str(index_path))

            records_path = self.index_dir / self.RECORDS_FILE
            if records_path.exists():
                with open(records_path, "rb") as f:
                    records = pickle.load(f)
                self._id_to_key = records.get("id_to_key", {})
                self._metadata = records.get("metadata", {})
                self._next_id = records.get("next_id", len(self._id_to_key))
            else:
                self._id_to_key, self._metadata, self._next_id = {}, {}, 0
            self._key_to_id = {key: faiss_id for faiss_id, key in self._id_to_key.items()}
            self._loaded_mtime = mtime

        logger.info(f"Loaded vector index with {self.count} vectors")
        return True

    def exists(self) -> bool:
        """Check if a saved index exists."""
        return (self.index_dir / self.INDEX_FILE).exists()

    def refresh_if_stale(self) -> bool:
        """
        Reload from disk if the saved index is newer than the one in memory.

        Returns:
            True if the index was reloaded
        """
        index_path = self.index_dir / self.INDEX_FILE
        if not index_path.exists():
            return False

        mtime = index_path.stat().st_mtime
        if self._loaded_mtime is not None and mtime <= self._loaded_mtime:
            return False

        logger.info("Vector index changed on disk, reloading")
        return self.load()

    # =========================================================================
    # Utilities
    # =========================================================================

    def stats(self) -> dict:
        """
        Get index statistics.

        Returns:
            Dict with vector count, dimension, model and memory estimate
        """
        return {
            "vector_count": self.count,
            "dimension": self.dimension,
            "model_version": self.model_version,
            "index_dir": str(self.index_dir),
            "index_type": type(self._index).__name__ if self._index is not None else None,
            # 32-bit floats
            "estimated_memory_mb": self.count * self.dimension * 4 / (1024 * 1024),
        }

    def health_check(self) -> dict:
        """Check the index can be queried."""
        try:
            with self._lock:
                self._ensure_index()
            return {"healthy": True, "vector_count": self.count, "dimension": self.dimension}
        except Exception as e:
            logger.warning(f"Vector index health check failed: {e}")
            return {"healthy": False, "error": str(e)}

    def is_compatible(self, model_version: str) -> bool:
        """
        Check if index is compatible with given model version.

        Embeddings from different models are not comparable, so the index
        must be rebuilt if the model changes.
        """
        return self.model_version == model_version
