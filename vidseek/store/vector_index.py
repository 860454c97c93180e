import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import faiss
import numpy as np
from loguru import logger

from ..exceptions import ValidationError


class VectorIndex:
    """
    In-memory cosine-similarity index over string keys.

    Vectors are L2-normalised and stored in an ``IndexIDMap`` over an inner
    product flat index, so search scores are cosine similarities in [-1, 1].
    Every vector in one index must have the same dimension.
    """

    def __init__(self, name: str, dimensions: int):
        self.name = name
        self.dimensions = dimensions
        self._index = faiss.IndexIDMap(faiss.IndexFlatIP(dimensions))
        self._key_to_id: Dict[str, int] = {}
        self._id_to_key: Dict[int, str] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._key_to_id)

    def _as_matrix(self, vector: Sequence[float]) -> np.ndarray:
        vec = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        if vec.shape[1] != self.dimensions:
            raise ValidationError(
                f"Vector dimension mismatch for index '{self.name}': "
                f"expected {self.dimensions}, got {vec.shape[1]}",
                error_code="DIMENSION_MISMATCH",
                details={"index": self.name, "expected": self.dimensions, "actual": int(vec.shape[1])}
            )
        faiss.normalize_L2(vec)
        return vec

    def validate(self, vector: Sequence[float]) -> None:
        """Raise ValidationError if ``vector`` does not fit this index."""
        self._as_matrix(vector)

    def upsert(self, key: str, vector: Sequence[float]) -> None:
        vec = self._as_matrix(vector)
        with self._lock:
            if key in self._key_to_id:
                numeric_id = self._key_to_id[key]
                self._index.remove_ids(np.array([numeric_id], dtype=np.int64))
            else:
                numeric_id = self._next_id
                self._next_id += 1
            self._index.add_with_ids(vec, np.array([numeric_id], dtype=np.int64))
            self._key_to_id[key] = numeric_id
            self._id_to_key[numeric_id] = key

    def remove(self, key: str) -> bool:
        with self._lock:
            numeric_id = self._key_to_id.pop(key, None)
            if numeric_id is None:
                return False
            self._id_to_key.pop(numeric_id, None)
            self._index.remove_ids(np.array([numeric_id], dtype=np.int64))
            return True

    def search(
        self,
        vector: Sequence[float],
        limit: int,
        allowed: Optional[Callable[[str], bool]] = None
    ) -> List[Tuple[str, float]]:
        """
        Return up to ``limit`` (key, cosine score) pairs, best first.

        Args:
            vector: Query vector
            limit: Maximum number of hits
            allowed: Optional predicate on keys; rejected keys are skipped
                without reducing the number of hits returned
        """
        if limit <= 0:
            return []
        vec = self._as_matrix(vector)
        with self._lock:
            total = self._index.ntotal
            if total == 0:
                return []
            # Flat index: when filtering, scan everything so the limit still holds
            fetch = total if allowed is not None else min(limit, total)
            distances, ids = self._index.search(vec, fetch)

            results: List[Tuple[str, float]] = []
            for numeric_id, score in zip(ids[0].tolist(), distances[0].tolist()):
                if numeric_id == -1:
                    continue
                key = self._id_to_key.get(int(numeric_id))
                if key is None:
                    continue
                if allowed is not None and not allowed(key):
                    continue
                results.append((key, float(score)))
                if len(results) >= limit:
                    break

        logger.debug(f"Vector search on '{self.name}' returned {len(results)} hits")
        return results
