"""Shared vector fixtures for the identity tests.

Embeddings are built from an orthonormal basis so every cosine similarity in
a test is known in advance.
"""

from __future__ import annotations

import numpy as np
import pytest

DIM = 64


@pytest.fixture
def unit():
    """Return ``e_i``, the i-th standard basis vector."""

    def _unit(index: int, dim: int = DIM) -> np.ndarray:
        vec = np.zeros(dim)
        vec[index] = 1.0
        return vec

    return _unit


@pytest.fixture
def mix(unit):
    """Unit vector with cosine ``sim`` to ``e_a``; the rest lies along ``e_b``."""

    def _mix(a: int, b: int, sim: float) -> np.ndarray:
        return sim * unit(a) + np.sqrt(1.0 - sim * sim) * unit(b)

    return _mix


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
