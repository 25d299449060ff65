"""Secondary clustering pass for utterances without a confident primary match.

Segments the primary engine could not place are grouped into pseudo-speakers
("Unknown 1", "Unknown 2", ...).  Cluster ids count down from
:data:`UNKNOWN_SPEAKER_BASE` in order of first appearance, so they never
collide with primary ids or with the primary "nothing assigned" sentinel.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import numpy as np

from ..errors import SnapshotError, attach_context
from .config import UNKNOWN_SPEAKER_BASE, UNKNOWN_SPEAKER_ID, UnknownClusteringConfig
from .logger import logger
from .models import (
    ClosestEnrolled,
    ClosestEnrolledAggregate,
    DecisionReason,
    SimilarityEntry,
    UnknownClusterRecord,
    UnknownClusterResult,
)
from .vectors import fold_in, fold_out, l2_normalize, similarity_row


def is_unknown_id(speaker_id: int) -> bool:
    """True for a real pseudo-cluster id, False for primary ids and the ``-1`` sentinel."""

    return speaker_id <= UNKNOWN_SPEAKER_BASE and speaker_id != UNKNOWN_SPEAKER_ID


class UnknownSpeakerClusterer:
    def __init__(self, config: UnknownClusteringConfig | None = None, **overrides: Any):
        if config is None:
            config = UnknownClusteringConfig.from_mapping(overrides)
        self.config = config
        self.clusters: list[UnknownClusterRecord] = []
        # Slots a running correction replay may refill, lowest id first.
        self._refill_slots: list[int] | None = None

    # --- public API -------------------------------------------------------
    @staticmethod
    def is_unknown_id(speaker_id: int) -> bool:
        return is_unknown_id(speaker_id)

    @property
    def live_clusters(self) -> list[UnknownClusterRecord]:
        return [c for c in self.clusters if not c.vacant]

    def process_unknown_segment(
        self,
        embedding: Any,
        enrolled_similarities: Sequence[SimilarityEntry] | None = None,
    ) -> UnknownClusterResult:
        """Assign ``embedding`` to an unknown pseudo-speaker."""

        closest = self._closest_enrolled(enrolled_similarities)
        vec = l2_normalize(embedding)
        if vec is None or not self._dimension_ok(vec):
            return UnknownClusterResult(
                unknown_id=UNKNOWN_SPEAKER_BASE,
                reason=DecisionReason.NO_EMBEDDING,
                closest_enrolled=closest,
                cluster_count=len(self.live_clusters),
            )

        live = self.live_clusters
        if not live:
            return self._create_new_cluster(vec, closest)

        index, similarity, margin = self._find_best_cluster_match(vec, live)
        cluster = live[index]
        cfg = self.config
        if similarity >= cfg.similarity_threshold:
            # Ambiguity between two unknown clusters does not block assignment.
            if len(live) > 1 and margin < cfg.confidence_margin:
                logger.debug(
                    "Unknown cluster match %d is ambiguous (margin %.3f)", cluster.id, margin
                )
            self._update_cluster(cluster, vec, closest)
            return UnknownClusterResult(
                unknown_id=cluster.id,
                reason=DecisionReason.UNKNOWN_CLUSTER_MATCH,
                closest_enrolled=closest,
                similarity=similarity,
                margin=margin,
                cluster_count=len(live),
                centroid_updated=True,
            )

        if len(live) < cfg.max_unknown_speakers:
            return self._create_new_cluster(vec, closest)

        self._update_cluster(cluster, vec, closest)
        logger.debug(
            "Unknown cluster cap %d reached; forced assignment to %d (sim %.3f)",
            cfg.max_unknown_speakers,
            cluster.id,
            similarity,
        )
        return UnknownClusterResult(
            unknown_id=cluster.id,
            reason=DecisionReason.UNKNOWN_CLUSTER_MATCH,
            closest_enrolled=closest,
            similarity=similarity,
            margin=margin,
            cluster_count=len(live),
            forced_assignment=True,
            centroid_updated=True,
        )

    def remove_from_cluster(
        self,
        unknown_id: int,
        embedding: Any,
        closest_enrolled: ClosestEnrolled | None = None,
    ) -> bool:
        """Undo one running-average contribution; ``False`` (no mutation) when impossible."""

        cluster = self._cluster_for(unknown_id)
        vec = l2_normalize(embedding)
        if cluster is None or vec is None or vec.shape != cluster.centroid.shape:
            return False
        previous = fold_out(cluster.centroid, cluster.count, vec)
        if previous is None:
            return False
        cluster.centroid = previous
        cluster.count -= 1
        if closest_enrolled is not None:
            history = cluster.closest_enrolled_history
            for idx in range(len(history) - 1, -1, -1):
                if history[idx] == closest_enrolled:
                    del history[idx]
                    break
            self._update_closest_enrolled_aggregate(cluster)
        return True

    def vacate(self, unknown_id: int) -> bool:
        """Empty a cluster holding only its founding segment."""

        cluster = self._cluster_for(unknown_id)
        if cluster is None or cluster.count != 1:
            return False
        cluster.vacant = True
        cluster.count = 0
        cluster.closest_enrolled_history = []
        cluster.closest_enrolled_aggregate = None
        return True

    def get_cluster_info(self, unknown_id: int) -> dict[str, Any] | None:
        cluster = self._cluster_for(unknown_id)
        if cluster is None:
            return None
        return {
            "id": cluster.id,
            "label": self.get_label(cluster.id),
            "segmentCount": cluster.count,
            "closestEnrolled": self._aggregate_dict(cluster),
        }

    def get_all_unknown_speakers(self) -> list[dict[str, Any]]:
        """Clusters with enough segments to report, with a capped count-based confidence."""

        minimum = self.config.min_segments_for_cluster
        return [
            {
                "speakerName": self.get_label(c.id),
                "unknownId": c.id,
                "segmentCount": c.count,
                "isUnknown": True,
                "closestEnrolled": self._aggregate_dict(c),
                "confidence": min(0.9, 0.5 + 0.05 * c.count),
            }
            for c in self.live_clusters
            if c.count >= minimum
        ]

    @staticmethod
    def get_label(unknown_id: int) -> str:
        return f"Unknown {UNKNOWN_SPEAKER_BASE - unknown_id + 1}"

    def serialize(self) -> dict[str, Any]:
        return {
            "clusters": [
                {
                    "id": c.id,
                    "centroid": c.centroid.tolist(),
                    "count": c.count,
                    "closestEnrolledAggregate": self._aggregate_dict(c),
                }
                for c in self.live_clusters
            ]
        }

    def restore(self, payload: Mapping[str, Any] | Iterable[Mapping[str, Any]] | None) -> None:
        """Replace cluster state from :meth:`serialize` output (or its bare list)."""

        if not payload:
            return
        items = payload.get("clusters") if isinstance(payload, Mapping) else payload
        if items is None:
            return
        restored: dict[int, UnknownClusterRecord] = {}
        for position, item in enumerate(items):
            try:
                cluster_id = int(item["id"])
                centroid = l2_normalize(item["centroid"])
                count = int(item.get("count", 1))
            except (KeyError, TypeError, ValueError) as exc:
                raise attach_context(
                    SnapshotError("Malformed unknown-cluster entry"), {"position": position}
                ) from exc
            if centroid is None or not is_unknown_id(cluster_id) or count < 1:
                raise SnapshotError(
                    "Unknown-cluster entry needs a negative id, a centroid and count >= 1",
                    {"position": position, "id": cluster_id},
                )
            restored[cluster_id] = UnknownClusterRecord(
                id=cluster_id,
                centroid=centroid,
                count=count,
                closest_enrolled_aggregate=ClosestEnrolledAggregate.from_dict(
                    item.get("closestEnrolledAggregate")
                ),
            )
        clusters: list[UnknownClusterRecord] = []
        if restored:
            for index in range(UNKNOWN_SPEAKER_BASE - min(restored) + 1):
                cluster_id = UNKNOWN_SPEAKER_BASE - index
                record = restored.get(cluster_id)
                if record is None:
                    dim = next(iter(restored.values())).centroid.shape
                    record = UnknownClusterRecord(
                        id=cluster_id, centroid=np.zeros(dim), count=0, vacant=True
                    )
                clusters.append(record)
        self.clusters = clusters
        logger.info("Restored %d unknown clusters", len(restored))

    def reset(self) -> None:
        self.clusters = []
        self._refill_slots = None

    def get_stats(self) -> dict[str, Any]:
        return {
            "clusterCount": len(self.live_clusters),
            "clusters": [
                {
                    "id": c.id,
                    "label": self.get_label(c.id),
                    "count": c.count,
                    "closestEnrolled": self._aggregate_dict(c),
                }
                for c in self.live_clusters
            ],
        }

    # --- replay support ---------------------------------------------------
    def begin_refill(self, slots: Iterable[int]) -> None:
        self._refill_slots = sorted(
            (cid for cid in slots if self._cluster_for(cid, include_vacant=True)),
            reverse=True,
        )

    def end_refill(self) -> list[int]:
        remaining = list(self._refill_slots or [])
        self._refill_slots = None
        return remaining

    # --- internal helpers -------------------------------------------------
    def _create_new_cluster(
        self, embedding: np.ndarray, closest: ClosestEnrolled | None
    ) -> UnknownClusterResult:
        history = [closest] if closest else []
        slot = self._next_refill_slot()
        cluster = self._cluster_for(slot, include_vacant=True) if slot is not None else None
        if cluster is not None:
            cluster.centroid = embedding.copy()
            cluster.count = 1
            cluster.vacant = False
            cluster.closest_enrolled_history = history
        else:
            cluster = UnknownClusterRecord(
                id=UNKNOWN_SPEAKER_BASE - len(self.clusters),
                centroid=embedding.copy(),
                count=1,
                closest_enrolled_history=history,
            )
            self.clusters.append(cluster)
        self._update_closest_enrolled_aggregate(cluster)
        logger.info("Created unknown cluster %s (%d)", self.get_label(cluster.id), cluster.id)
        return UnknownClusterResult(
            unknown_id=cluster.id,
            reason=DecisionReason.UNKNOWN_NEW_CLUSTER,
            closest_enrolled=closest,
            similarity=1.0,
            margin=0.0,
            cluster_count=len(self.live_clusters),
        )

    def _next_refill_slot(self) -> int | None:
        # Sorted descending by id, so the lowest index sits at the front.
        while self._refill_slots:
            slot = self._refill_slots.pop(0)
            cluster = self._cluster_for(slot, include_vacant=True)
            if cluster is not None and cluster.vacant:
                return slot
        return None

    @staticmethod
    def _find_best_cluster_match(
        embedding: np.ndarray, clusters: Sequence[UnknownClusterRecord]
    ) -> tuple[int, float, float]:
        sims = similarity_row(embedding, [c.centroid for c in clusters])
        order = np.argsort(-sims, kind="stable")
        best = int(order[0])
        best_sim = float(sims[best])
        second = float(sims[order[1]]) if len(order) > 1 else 0.0
        return best, best_sim, best_sim - max(second, 0.0)

    def _update_cluster(
        self,
        cluster: UnknownClusterRecord,
        embedding: np.ndarray,
        closest: ClosestEnrolled | None,
    ) -> None:
        updated = fold_in(cluster.centroid, cluster.count, embedding)
        if updated is None:
            return
        cluster.centroid = updated
        cluster.count += 1
        if closest is not None:
            cluster.closest_enrolled_history.append(closest)
            self._update_closest_enrolled_aggregate(cluster)

    @staticmethod
    def _update_closest_enrolled_aggregate(cluster: UnknownClusterRecord) -> None:
        stats: dict[str, list[float]] = {}
        for entry in cluster.closest_enrolled_history:
            if not entry or not entry.name:
                continue
            tally = stats.setdefault(entry.name, [0, 0.0])
            tally[0] += 1
            tally[1] += entry.similarity
        best: ClosestEnrolledAggregate | None = None
        for name, (count, total) in stats.items():
            average = total / count
            if best is None or count > best.occurrences or (
                count == best.occurrences and average > best.similarity
            ):
                best = ClosestEnrolledAggregate(
                    name=name,
                    similarity=average,
                    occurrences=int(count),
                    total_segments=len(cluster.closest_enrolled_history),
                )
        cluster.closest_enrolled_aggregate = best

    @staticmethod
    def _closest_enrolled(
        similarities: Sequence[SimilarityEntry] | None,
    ) -> ClosestEnrolled | None:
        enrolled = [s for s in similarities or () if s.enrolled]
        if not enrolled:
            return None
        best = max(enrolled, key=lambda s: s.similarity)
        return ClosestEnrolled(name=best.name, similarity=best.similarity)

    def _cluster_for(
        self, unknown_id: int, *, include_vacant: bool = False
    ) -> UnknownClusterRecord | None:
        if not is_unknown_id(unknown_id):
            return None
        index = UNKNOWN_SPEAKER_BASE - unknown_id
        if index < 0 or index >= len(self.clusters):
            return None
        cluster = self.clusters[index]
        if cluster.vacant and not include_vacant:
            return None
        return cluster

    def _dimension_ok(self, embedding: np.ndarray) -> bool:
        live = self.live_clusters
        if not live or live[0].centroid.shape == embedding.shape:
            return True
        logger.warning(
            "Unknown clusterer got a %d-dim embedding, expected %d",
            embedding.shape[0],
            live[0].centroid.shape[0],
        )
        return False

    @staticmethod
    def _aggregate_dict(cluster: UnknownClusterRecord) -> dict[str, Any] | None:
        agg = cluster.closest_enrolled_aggregate
        return agg.to_dict() if agg else None


__all__ = ["UnknownSpeakerClusterer", "is_unknown_id"]
