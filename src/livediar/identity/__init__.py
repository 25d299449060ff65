from __future__ import annotations

from .channels import ChannelEngines
from .config import (
    MAX_SPEAKERS,
    MIN_SPEAKERS,
    UNKNOWN_SPEAKER_BASE,
    UNKNOWN_SPEAKER_ID,
    ClusteringConfig,
    UnknownClusteringConfig,
)
from .engine import SpeakerClusteringEngine
from .metrics import discriminability_report
from .models import (
    AssignmentDecision,
    ClosestEnrolled,
    ClosestEnrolledAggregate,
    DecisionReason,
    SimilarityEntry,
    SpeakerRecord,
    UnknownClusterRecord,
    UnknownClusterResult,
)
from .persistence import propagate_enrolled, restore, snapshot
from .replay import CorrectionReplay, SessionSegment, SpeakerChange
from .session import IdentitySession
from .sound import SoundClassifier, SoundType
from .unknown import UnknownSpeakerClusterer, is_unknown_id
from .vectors import cosine_similarity, l2_normalize

__all__ = [
    "AssignmentDecision",
    "ChannelEngines",
    "ClosestEnrolled",
    "ClosestEnrolledAggregate",
    "ClusteringConfig",
    "CorrectionReplay",
    "DecisionReason",
    "IdentitySession",
    "MAX_SPEAKERS",
    "MIN_SPEAKERS",
    "SessionSegment",
    "SimilarityEntry",
    "SoundClassifier",
    "SoundType",
    "SpeakerChange",
    "SpeakerClusteringEngine",
    "SpeakerRecord",
    "UNKNOWN_SPEAKER_BASE",
    "UNKNOWN_SPEAKER_ID",
    "UnknownClusterRecord",
    "UnknownClusterResult",
    "UnknownClusteringConfig",
    "UnknownSpeakerClusterer",
    "cosine_similarity",
    "discriminability_report",
    "is_unknown_id",
    "l2_normalize",
    "propagate_enrolled",
    "restore",
    "snapshot",
]
