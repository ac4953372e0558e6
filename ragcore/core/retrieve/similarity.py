from typing import List, Sequence, Tuple

import numpy as np

from ragcore.core.errors import DimensionMismatchError


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (||a|| * ||b||); 0.0 when either vector is all zeros."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatchError(expected=va.shape[0], actual=vb.shape[0])

    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def cosine_similarities(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Similarity of `query` against every row of `matrix` (rows x dims)."""
    q = np.asarray(query, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != q.shape[0]:
        raise DimensionMismatchError(expected=matrix.shape[-1], actual=q.shape[0])

    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * np.linalg.norm(q)
    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    nonzero = denom > 0
    scores[nonzero] = (matrix[nonzero] @ q) / denom[nonzero]
    return scores


def rank(scores: Sequence[float], order_keys: Sequence[int], top_k: int, threshold: float) -> List[Tuple[int, float]]:
    """
    Positions of the top_k scores >= threshold, highest first.
    Ties go to the lower order key (insertion order), so rankings are deterministic.
    """
    candidates = [(i, float(s)) for i, s in enumerate(scores) if s >= threshold]
    candidates.sort(key=lambda item: (-item[1], order_keys[item[0]]))
    return candidates[:top_k]
