from __future__ import annotations

from typing import Sequence, Union

import numpy as np

VectorLike = Union[np.ndarray, Sequence[float]]


def as_embedding(values: VectorLike) -> np.ndarray:
    """Return a read-only 1D float32 copy, so a produced embedding cannot be mutated."""
    arr = np.array(values, dtype=np.float32).reshape(-1)
    arr.setflags(write=False)
    return arr


def l2_normalize(vec: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """L2-normalize a vector (or 2D array row-wise); zero vectors are returned unchanged."""
    arr = np.asarray(vec, dtype=np.float32)
    if arr.ndim == 1:
        denom = float(np.linalg.norm(arr))
        if denom < eps:
            return arr
        return arr / denom
    if arr.ndim == 2:
        norms = np.linalg.norm(arr, axis=1, keepdims=True)
        norms = np.maximum(norms, eps)
        return arr / norms
    raise ValueError(f"Unsupported ndim={arr.ndim}")


def cosine_similarity(a: VectorLike, b: VectorLike, eps: float = 1e-12) -> float:
    """Cosine similarity for 1D vectors.

    A zero-norm side makes the angle undefined; that is scored 0.0 (never a match)
    instead of producing NaN. Length mismatches raise ValueError.
    """
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.shape[0] != vb.shape[0]:
        raise ValueError(f"Embedding length mismatch: {va.shape[0]} != {vb.shape[0]}")
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na < eps or nb < eps:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))
