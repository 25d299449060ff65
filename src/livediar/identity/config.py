"""Configuration defaults for the speaker identity core."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from dataclasses import fields as dataclass_fields
from typing import Any, TypeVar

from ..errors import ConfigurationError
from .logger import logger

# Primary engine sentinel for "nothing assigned".
UNKNOWN_SPEAKER_ID = -1
# First unknown-cluster id; later clusters count down from here.
UNKNOWN_SPEAKER_BASE = -100

MIN_SPEAKERS = 1
MAX_SPEAKERS = 10

_ConfigT = TypeVar("_ConfigT", "ClusteringConfig", "UnknownClusteringConfig")

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def snake_case(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def _ensure_numeric_range(
    name: str,
    value: float,
    *,
    ge: float | None = None,
    gt: float | None = None,
    le: float | None = None,
    lt: float | None = None,
) -> None:
    """Validate numeric range constraints for configuration fields."""

    if ge is not None and value < ge:
        raise ConfigurationError(f"{name} must be >= {ge}", {"field": name, "value": value})
    if gt is not None and value <= gt:
        raise ConfigurationError(f"{name} must be > {gt}", {"field": name, "value": value})
    if le is not None and value > le:
        raise ConfigurationError(f"{name} must be <= {le}", {"field": name, "value": value})
    if lt is not None and value >= lt:
        raise ConfigurationError(f"{name} must be < {lt}", {"field": name, "value": value})


def clamp_num_speakers(value: int) -> int:
    return max(MIN_SPEAKERS, min(int(value), MAX_SPEAKERS))


def _from_mapping(cls: type[_ConfigT], overrides: Mapping[str, Any] | None) -> _ConfigT:
    known = {f.name for f in dataclass_fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in (overrides or {}).items():
        name = snake_case(str(key))
        if name not in known:
            logger.debug("Ignoring unknown %s option: %s", cls.__name__, key)
            continue
        if value is None:
            continue
        kwargs[name] = value
    return cls(**kwargs)


@dataclass(slots=True)
class ClusteringConfig:
    """Validated configuration for :class:`SpeakerClusteringEngine`."""

    num_speakers: int = 2
    similarity_threshold: float = 0.75
    minimum_similarity_threshold: float = 0.5
    confidence_margin: float = 0.15
    # Near-tie window in which an enrolled candidate beats a discovered best.
    enrolled_priority_margin: float = 0.03
    # Enrolled centroids stay frozen unless this is switched on.
    update_enrolled_centroids: bool = False
    inter_enrollment_warning_threshold: float = 0.72
    debug_logging: bool = False

    def __post_init__(self) -> None:
        try:
            self.num_speakers = clamp_num_speakers(self.num_speakers)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                "num_speakers must be an integer", {"value": repr(self.num_speakers)}
            ) from exc
        for name in (
            "similarity_threshold",
            "minimum_similarity_threshold",
            "inter_enrollment_warning_threshold",
        ):
            value = float(getattr(self, name))
            _ensure_numeric_range(name, value, ge=-1.0, le=1.0)
            setattr(self, name, value)
        self.confidence_margin = float(self.confidence_margin)
        self.enrolled_priority_margin = float(self.enrolled_priority_margin)
        _ensure_numeric_range("confidence_margin", self.confidence_margin, ge=0.0, le=2.0)
        _ensure_numeric_range(
            "enrolled_priority_margin", self.enrolled_priority_margin, ge=0.0, le=2.0
        )
        if self.minimum_similarity_threshold > self.similarity_threshold:
            raise ConfigurationError(
                "minimum_similarity_threshold must not exceed similarity_threshold",
                {
                    "minimum_similarity_threshold": self.minimum_similarity_threshold,
                    "similarity_threshold": self.similarity_threshold,
                },
            )
        self.update_enrolled_centroids = bool(self.update_enrolled_centroids)
        self.debug_logging = bool(self.debug_logging)

    @classmethod
    def from_mapping(cls, overrides: Mapping[str, Any] | None = None) -> ClusteringConfig:
        """Build a config from camelCase or snake_case option names."""

        return _from_mapping(cls, overrides)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class UnknownClusteringConfig:
    """Validated configuration for :class:`UnknownSpeakerClusterer`."""

    similarity_threshold: float = 0.70
    confidence_margin: float = 0.05
    max_unknown_speakers: int = 5
    min_segments_for_cluster: int = 2

    def __post_init__(self) -> None:
        self.similarity_threshold = float(self.similarity_threshold)
        self.confidence_margin = float(self.confidence_margin)
        _ensure_numeric_range("similarity_threshold", self.similarity_threshold, ge=-1.0, le=1.0)
        _ensure_numeric_range("confidence_margin", self.confidence_margin, ge=0.0, le=2.0)
        self._validate_positive_int("max_unknown_speakers", self.max_unknown_speakers)
        self._validate_positive_int("min_segments_for_cluster", self.min_segments_for_cluster)
        self.max_unknown_speakers = int(self.max_unknown_speakers)
        self.min_segments_for_cluster = int(self.min_segments_for_cluster)

    @staticmethod
    def _validate_positive_int(name: str, value: Any) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigurationError(f"{name} must be an integer >= 1", {"value": repr(value)})

    @classmethod
    def from_mapping(
        cls, overrides: Mapping[str, Any] | None = None
    ) -> UnknownClusteringConfig:
        """Build a config from camelCase or snake_case option names."""

        return _from_mapping(cls, overrides)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


__all__ = [
    "ClusteringConfig",
    "UnknownClusteringConfig",
    "UNKNOWN_SPEAKER_ID",
    "UNKNOWN_SPEAKER_BASE",
    "MIN_SPEAKERS",
    "MAX_SPEAKERS",
    "clamp_num_speakers",
    "snake_case",
]
