from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np


class DecisionReason(str, Enum):
    """Closed set of outcomes for a single utterance decision."""

    NO_EMBEDDING = "no_embedding"
    NEW_SPEAKER = "new_speaker"
    CONFIDENT_MATCH = "confident_match"
    AMBIGUOUS_MATCH = "ambiguous_match"
    BELOW_MINIMUM_THRESHOLD = "below_minimum_threshold"
    NO_CONFIDENT_MATCH = "no_confident_match"
    UNKNOWN_NEW_CLUSTER = "unknown_new_cluster"
    UNKNOWN_CLUSTER_MATCH = "unknown_cluster_match"
    INHERITED = "inherited"
    # Reserved for an upstream confidence-boosting collaborator.
    BOOSTED_MATCH = "boosted_match"

    def __str__(self) -> str:
        return self.value


@dataclass
class SpeakerRecord:
    """One enrolled or discovered identity, addressed by its arena index."""

    id: int
    centroid: np.ndarray
    sample_count: int = 1
    enrolled: bool = False
    enrollment_id: str | None = None
    name: str | None = None
    color_index: int | None = None
    # Slot emptied by an undo or an enrolment removal; never reused silently.
    vacant: bool = False


@dataclass
class SimilarityEntry:
    speaker_id: int
    name: str
    similarity: float
    enrolled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "speakerId": self.speaker_id,
            "speaker": self.name,
            "similarity": self.similarity,
            "enrolled": self.enrolled,
        }


@dataclass
class ClosestEnrolled:
    name: str
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "similarity": self.similarity}


@dataclass
class ClosestEnrolledAggregate:
    """Consensus "this unknown voice is probably near X" hint."""

    name: str
    similarity: float
    occurrences: int
    total_segments: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "similarity": self.similarity,
            "occurrences": self.occurrences,
            "totalSegments": self.total_segments,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> ClosestEnrolledAggregate | None:
        if not payload or not payload.get("name"):
            return None
        similarity = float(payload.get("similarity", 0.0))
        occurrences = int(payload.get("occurrences", 1))
        total = int(payload.get("totalSegments", payload.get("total_segments", occurrences)))
        return cls(str(payload["name"]), similarity, occurrences, total)


@dataclass
class UnknownClusterRecord:
    id: int
    centroid: np.ndarray
    count: int = 1
    closest_enrolled_history: list[ClosestEnrolled] = field(default_factory=list)
    closest_enrolled_aggregate: ClosestEnrolledAggregate | None = None
    vacant: bool = False


@dataclass
class UnknownClusterResult:
    unknown_id: int
    reason: DecisionReason
    closest_enrolled: ClosestEnrolled | None = None
    similarity: float = 0.0
    margin: float = 0.0
    cluster_count: int = 0
    forced_assignment: bool = False
    centroid_updated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "unknownId": self.unknown_id,
            "reason": self.reason.value,
            "closestEnrolled": (
                self.closest_enrolled.to_dict() if self.closest_enrolled else None
            ),
            "similarity": self.similarity,
            "margin": self.margin,
            "clusterCount": self.cluster_count,
            "forcedAssignment": self.forced_assignment,
        }


@dataclass
class AssignmentDecision:
    """Per-utterance output of the primary engine.

    ``speaker_id`` is a primary-engine id when non-negative and an unknown
    cluster id when negative.  ``centroid_updated`` records whether the
    embedding was folded into the chosen centroid so a later correction can
    undo exactly that contribution.
    """

    speaker_id: int
    reason: DecisionReason
    similarity: float = 0.0
    margin: float = 0.0
    is_enrolled: bool = False
    forced_assignment: bool = False
    second_best_similarity: float = 0.0
    second_best_speaker: str | None = None
    all_similarities: list[SimilarityEntry] = field(default_factory=list)
    unknown: UnknownClusterResult | None = None
    centroid_updated: bool = False

    @property
    def is_ambiguous(self) -> bool:
        return self.reason is DecisionReason.AMBIGUOUS_MATCH

    def display_label(self, label: str) -> str:
        """Render ``label`` with the runner-up for ambiguous matches, e.g. ``A (B?)``."""

        if self.is_ambiguous and self.second_best_speaker:
            return f"{label} ({self.second_best_speaker}?)"
        return label

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "speakerId": self.speaker_id,
            "reason": self.reason.value,
            "similarity": self.similarity,
            "margin": self.margin,
            "isEnrolled": self.is_enrolled,
            "secondBestSimilarity": self.second_best_similarity,
            "secondBestSpeaker": self.second_best_speaker,
            "allSimilarities": [entry.to_dict() for entry in self.all_similarities],
        }
        if self.forced_assignment:
            payload["forcedAssignment"] = True
        if self.unknown is not None:
            payload["unknown"] = self.unknown.to_dict()
        return payload


__all__ = [
    "DecisionReason",
    "SpeakerRecord",
    "SimilarityEntry",
    "ClosestEnrolled",
    "ClosestEnrolledAggregate",
    "UnknownClusterRecord",
    "UnknownClusterResult",
    "AssignmentDecision",
]
