"""Vector helpers shared by the primary engine and the unknown clusterer.

Centroids are kept unit length.  ``fold_in`` is the running-average update
``c' = (c*n + e) / (n + 1)`` and ``fold_out`` its algebraic inverse
``c' = (c*n - e) / (n - 1)``; both re-normalise their result.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import numpy as np

_EPS = 1e-9


def as_vector(embedding: Any) -> np.ndarray | None:
    """Coerce ``embedding`` to a flat float64 array, or ``None`` when unusable."""

    if embedding is None:
        return None
    try:
        vec = np.asarray(embedding, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        return None
    if vec.size == 0 or not np.all(np.isfinite(vec)):
        return None
    return vec


def l2_normalize(embedding: Any) -> np.ndarray | None:
    """Return a unit-length copy of ``embedding`` (``None`` for zero vectors)."""

    vec = as_vector(embedding)
    if vec is None:
        return None
    norm = float(np.linalg.norm(vec))
    if norm <= _EPS:
        return None
    return vec / norm


def cosine_similarity(a: Any, b: Any) -> float:
    """Cosine similarity in ``[-1, 1]``; ``0.0`` when either side is unusable."""

    va = as_vector(a)
    vb = as_vector(b)
    if va is None or vb is None or va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom <= _EPS:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


def similarity_row(embedding: np.ndarray, centroids: Sequence[np.ndarray]) -> np.ndarray:
    """Cosine similarity of a unit ``embedding`` against unit ``centroids``."""

    if not centroids:
        return np.zeros(0, dtype=np.float64)
    matrix = np.vstack(centroids)
    return np.clip(matrix @ embedding, -1.0, 1.0)


def fold_in(centroid: np.ndarray, count: int, embedding: np.ndarray) -> np.ndarray | None:
    """Running-average update of a unit centroid with a unit embedding."""

    updated = (centroid * count + embedding) / (count + 1)
    norm = float(np.linalg.norm(updated))
    if norm <= _EPS:
        return None
    return updated / norm


def fold_out(centroid: np.ndarray, count: int, embedding: np.ndarray) -> np.ndarray | None:
    """Inverse of :func:`fold_in`; ``None`` when ``count <= 1`` or the result vanishes."""

    if count <= 1:
        return None
    # ``centroid`` was re-normalised after the last fold, so rescale by the
    # norm the un-normalised mean had before that step.
    restored = _unnormalised_mean(centroid, count, embedding)
    if restored is None:
        return None
    previous = (restored * count - embedding) / (count - 1)
    norm = float(np.linalg.norm(previous))
    if norm <= _EPS:
        return None
    return previous / norm


def _unnormalised_mean(
    centroid: np.ndarray, count: int, embedding: np.ndarray
) -> np.ndarray | None:
    # The stored centroid is m/|m| where m = (p*(n-1) + e)/n and p is the
    # previous unit centroid.  Recover the scale s = |m| from |p| = 1:
    #   |s*c*n - e| = n - 1  ->  n^2 s^2 - 2 n s (c.e) + |e|^2 - (n-1)^2 = 0
    n = float(count)
    ce = float(np.dot(centroid, embedding))
    ee = float(np.dot(embedding, embedding))
    disc = (n * ce) ** 2 - n * n * (ee - (n - 1.0) ** 2)
    if disc < 0.0:
        disc = 0.0
    scale = (n * ce + np.sqrt(disc)) / (n * n)
    if scale <= _EPS:
        return None
    return centroid * scale


__all__ = [
    "as_vector",
    "l2_normalize",
    "cosine_similarity",
    "similarity_row",
    "fold_in",
    "fold_out",
]
