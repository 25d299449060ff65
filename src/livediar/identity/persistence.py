"""Snapshot contracts for moving identity state in and out of an engine.

Enrolled voices travel as ``{id, name, centroid, colorIndex}`` dictionaries and
unknown clusters as ``{id, centroid, count, closestEnrolledAggregate}``.  A
snapshot is a point-in-time copy; engines never share live state.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from ..errors import SnapshotError
from .logger import logger
from .vectors import l2_normalize

if TYPE_CHECKING:
    from .engine import SpeakerClusteringEngine

SNAPSHOT_VERSION = 1


@dataclass
class EnrolledSpeakerEntry:
    enrollment_id: str
    name: str
    centroid: np.ndarray
    color_index: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.enrollment_id,
            "name": self.name,
            "centroid": [float(x) for x in self.centroid],
            "colorIndex": self.color_index,
        }


def parse_enrolled_entries(entries: Iterable[Mapping[str, Any]] | None) -> list[EnrolledSpeakerEntry]:
    """Normalise boundary dictionaries, skipping entries without a usable centroid."""

    parsed: list[EnrolledSpeakerEntry] = []
    if not entries:
        return parsed
    for position, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            logger.warning("Skipping enrolled entry %d: expected a mapping", position)
            continue
        centroid = l2_normalize(entry.get("centroid"))
        if centroid is None:
            logger.warning(
                "Skipping enrolled entry %d (%s): missing centroid", position, entry.get("name")
            )
            continue
        color = entry.get("colorIndex", entry.get("color_index"))
        enrollment_id = entry.get("id", entry.get("enrollment_id"))
        name = entry.get("name")
        parsed.append(
            EnrolledSpeakerEntry(
                enrollment_id=str(enrollment_id) if enrollment_id is not None else f"enrolled-{position}",
                name=str(name) if name else f"Enrolled {position + 1}",
                centroid=centroid,
                color_index=int(color) if color is not None else position,
            )
        )
    return parsed


def export_enrolled_speakers(engine: SpeakerClusteringEngine) -> list[dict[str, Any]]:
    return engine.export_enrolled_speakers()


def import_enrolled_speakers(
    engine: SpeakerClusteringEngine, entries: Iterable[Mapping[str, Any]] | None
) -> list[dict[str, Any]]:
    return engine.import_enrolled_speakers(entries)


def propagate_enrolled(
    source: SpeakerClusteringEngine, targets: Iterable[SpeakerClusteringEngine]
) -> int:
    """Copy the enrolled set of ``source`` into every engine in ``targets``."""

    payload = source.export_enrolled_speakers()
    copied = 0
    for target in targets:
        if target is source:
            continue
        target.import_enrolled_speakers(payload)
        copied += 1
    logger.info("Propagated %d enrolled speakers to %d engines", len(payload), copied)
    return copied


def export_unknown_clusters(engine: SpeakerClusteringEngine) -> list[dict[str, Any]]:
    return list(engine.unknown.serialize()["clusters"])


def snapshot(engine: SpeakerClusteringEngine) -> dict[str, Any]:
    """Full boundary snapshot: config, enrolled set and unknown clusters."""

    return {
        "version": SNAPSHOT_VERSION,
        "config": engine.config.to_dict(),
        "unknownConfig": engine.unknown.config.to_dict(),
        "enrolled": engine.export_enrolled_speakers(),
        "unknownClusters": export_unknown_clusters(engine),
    }


def restore(engine: SpeakerClusteringEngine, payload: Mapping[str, Any]) -> None:
    """Load a :func:`snapshot` payload; discovered speakers are left untouched."""

    if not isinstance(payload, Mapping):
        raise SnapshotError("Snapshot must be a mapping", {"type": type(payload).__name__})
    version = payload.get("version", SNAPSHOT_VERSION)
    if version != SNAPSHOT_VERSION:
        raise SnapshotError("Unsupported snapshot version", {"version": version})
    enrolled = payload.get("enrolled", [])
    if not isinstance(enrolled, list):
        raise SnapshotError("Snapshot 'enrolled' must be a list")
    engine.import_enrolled_speakers(enrolled)
    clusters = payload.get("unknownClusters")
    if clusters:
        engine.unknown.restore({"clusters": clusters})


__all__ = [
    "EnrolledSpeakerEntry",
    "SNAPSHOT_VERSION",
    "parse_enrolled_entries",
    "export_enrolled_speakers",
    "import_enrolled_speakers",
    "propagate_enrolled",
    "export_unknown_clusters",
    "snapshot",
    "restore",
]
