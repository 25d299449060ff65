"""
livediar: online speaker identity resolution for transcription sessions
"""

__version__ = "0.3.0"

from .identity import (
    AssignmentDecision,
    ClusteringConfig,
    CorrectionReplay,
    DecisionReason,
    IdentitySession,
    SpeakerClusteringEngine,
    UnknownClusteringConfig,
    UnknownSpeakerClusterer,
)

__all__ = [
    "__version__",
    "AssignmentDecision",
    "ClusteringConfig",
    "CorrectionReplay",
    "DecisionReason",
    "IdentitySession",
    "SpeakerClusteringEngine",
    "UnknownClusteringConfig",
    "UnknownSpeakerClusterer",
]
