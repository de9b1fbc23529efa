"""Vector math used for similarity ranking."""
from typing import Sequence

import numpy as np

from docqa.errors import InvalidVector


def as_array(vector: Sequence[float]) -> np.ndarray:
    array = np.asarray(vector, dtype=np.float64)
    if array.ndim != 1 or array.size == 0:
        raise InvalidVector(f"Expected a non-empty 1-D vector, got shape {array.shape}")
    return array


def norm(vector: Sequence[float]) -> float:
    """Euclidean norm, rejecting zero-norm vectors."""
    value = float(np.linalg.norm(as_array(vector)))
    if value == 0.0 or not np.isfinite(value):
        raise InvalidVector("Vector has zero or non-finite norm")
    return value


def l2_normalize(vector: Sequence[float]) -> np.ndarray:
    array = as_array(vector)
    return array / norm(array)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|).

    Raises:
        InvalidVector: If dimensions differ or either vector has zero norm
    """
    va, vb = as_array(a), as_array(b)
    if va.shape != vb.shape:
        raise InvalidVector(f"Dimension mismatch: {va.shape[0]} != {vb.shape[0]}")
    return float(np.dot(va, vb) / (norm(va) * norm(vb)))


def cosine_scores(matrix: np.ndarray, query: Sequence[float]) -> np.ndarray:
    """Cosine similarity of every row of matrix against query.

    Rows are expected to be non-zero; the query is validated here.
    """
    q = as_array(query)
    if matrix.ndim != 2 or matrix.shape[1] != q.shape[0]:
        raise InvalidVector(
            f"Query dimension {q.shape[0]} does not match stored dimension "
            f"{matrix.shape[1] if matrix.ndim == 2 else None}"
        )
    row_norms = np.linalg.norm(matrix, axis=1)
    return (matrix @ q) / (row_norms * norm(q))
