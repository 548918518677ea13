"""Brute-force cosine index over node embeddings.

An index is built once per graph snapshot and never mutated, so replacing a
node's embedding (which publishes a new snapshot) invalidates every cached
similarity result with it.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    """Return a read-only float64 copy of ``values``."""
    vec = np.array(values, dtype=np.float64).reshape(-1)
    vec.setflags(write=False)
    return vec


def cosine(a: np.ndarray, b: np.ndarray) -> float:
    if a.shape != b.shape:
        return 0.0
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(a, b) / (na * nb))


class VectorIndex:
    """Row-normalised embedding matrix with a parallel id list."""

    def __init__(self, ids: Sequence[str], vectors: Sequence[np.ndarray]) -> None:
        self._ids: List[str] = []
        rows: List[np.ndarray] = []
        self.dimension: Optional[int] = None
        for node_id, vec in zip(ids, vectors):
            norm = float(np.linalg.norm(vec))
            if norm == 0.0:
                continue
            if self.dimension is None:
                self.dimension = vec.shape[0]
            elif vec.shape[0] != self.dimension:
                logger.warning(
                    f"Skipping embedding of '{node_id}': width {vec.shape[0]} does not match {self.dimension}"
                )
                continue
            self._ids.append(node_id)
            rows.append(vec / norm)
        self._matrix = np.vstack(rows) if rows else np.zeros((0, 0))

    def __len__(self) -> int:
        return len(self._ids)

    def query(self, vector: np.ndarray, k: int) -> List[Tuple[str, float]]:
        """Return up to ``k`` ``(node_id, cosine)`` pairs, best first."""
        if k <= 0 or not self._ids:
            return []
        if vector.shape[0] != self.dimension:
            logger.warning(f"Query width {vector.shape[0]} does not match index width {self.dimension}")
            return []
        norm = float(np.linalg.norm(vector))
        if norm == 0.0:
            return []
        sims = self._matrix @ (vector / norm)
        k = min(k, len(self._ids))
        # Stable sort keeps insertion order among ties.
        order = np.argsort(-sims, kind="stable")[:k]
        return [(self._ids[i], float(sims[i])) for i in order]
