"""How well a set of speaker centroids separates the voices it represents.

Lower pairwise similarity and a higher silhouette score mean fewer confusions
between speakers.  Used to sanity-check an enrolled set before a session.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np
from sklearn.metrics import silhouette_score

from .vectors import cosine_similarity, l2_normalize


def mean_pairwise_similarity(centroids: Sequence[Any]) -> float | None:
    """Mean cosine similarity over all centroid pairs (``None`` for < 2)."""

    if len(centroids) < 2:
        return None
    sims = [
        cosine_similarity(centroids[i], centroids[j])
        for i in range(len(centroids))
        for j in range(i + 1, len(centroids))
    ]
    return float(np.mean(sims))


def most_similar_pair(speakers: Sequence[Mapping[str, Any]]) -> dict[str, Any] | None:
    """The most confusable pair of named centroids."""

    if len(speakers) < 2:
        return None
    best: dict[str, Any] | None = None
    for i in range(len(speakers)):
        for j in range(i + 1, len(speakers)):
            sim = cosine_similarity(speakers[i]["centroid"], speakers[j]["centroid"])
            if best is None or sim > best["similarity"]:
                best = {
                    "similarity": sim,
                    "pair": (speakers[i].get("name"), speakers[j].get("name")),
                }
    return best


def silhouette(samples: Sequence[tuple[Any, Any]]) -> float | None:
    """Silhouette score of ``(speaker_id, embedding)`` samples, cosine metric.

    When any speaker has a single sample, falls back to the mean distance to
    the nearest other centroid shifted into ``[-1, 1]``.
    """

    if len(samples) < 2:
        return None
    by_speaker: dict[Any, list[np.ndarray]] = {}
    for speaker_id, embedding in samples:
        vec = l2_normalize(embedding)
        if vec is not None:
            by_speaker.setdefault(speaker_id, []).append(vec)
    if len(by_speaker) < 2:
        return None
    if any(len(vecs) < 2 for vecs in by_speaker.values()):
        return _centroid_separation(by_speaker)
    labels: list[int] = []
    rows: list[np.ndarray] = []
    for label, vecs in enumerate(by_speaker.values()):
        labels.extend([label] * len(vecs))
        rows.extend(vecs)
    return float(silhouette_score(np.vstack(rows), np.asarray(labels), metric="cosine"))


def _centroid_separation(by_speaker: Mapping[Any, list[np.ndarray]]) -> float:
    centroids = []
    for vecs in by_speaker.values():
        c = np.vstack(vecs).mean(axis=0)
        centroids.append(c / (np.linalg.norm(c) + 1e-9))
    nearest = []
    for i, a in enumerate(centroids):
        nearest.append(
            min(1.0 - cosine_similarity(a, b) for j, b in enumerate(centroids) if j != i)
        )
    return float(np.mean(nearest)) - 1.0


def discriminability_report(speakers: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    """Bundle all metrics for ``[{id, name, centroid, samples?}, ...]``."""

    if not speakers:
        return {"meanSimilarity": None, "mostSimilarPair": None, "silhouetteScore": None}
    samples: list[tuple[Any, Any]] = []
    for position, speaker in enumerate(speakers):
        key = speaker.get("id", position)
        extra = speaker.get("samples") or []
        if len(extra) > 0:
            samples.extend((key, emb) for emb in extra)
        elif speaker.get("centroid") is not None:
            samples.append((key, speaker["centroid"]))
    return {
        "meanSimilarity": mean_pairwise_similarity([s["centroid"] for s in speakers]),
        "mostSimilarPair": most_similar_pair(speakers),
        "silhouetteScore": silhouette(samples) if len(samples) >= 2 else None,
    }


__all__ = [
    "mean_pairwise_similarity",
    "most_similar_pair",
    "silhouette",
    "discriminability_report",
]
