"""Retroactive correction over an ordered session history.

When a voice is enrolled mid-session, or a past assignment is judged wrong,
the decisions from an edit point onwards are undone and re-made from the
stored embeddings.  No raw audio is involved.

The replay runs in two passes over ``segments[from_index:]``:

1. rewind, newest first: every recorded contribution is removed with the
   exact inverse of the running-average update, and records that only held
   their founding segment are vacated.  A segment whose contribution cannot
   be removed (a founder that a pinned segment also joined) keeps its
   decision and is left out of the redo;
2. redo, oldest first: each segment is re-decided by the same engine.  New
   records refill the slots vacated in step 1 (lowest id first) before any
   fresh id is allocated, so an unchanged history replays to the same ids.

Only segments whose speaker id actually changed are reported.
"""

from __future__ import annotations

import copy
from collections.abc import MutableSequence, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np

from .engine import SpeakerClusteringEngine
from .logger import logger
from .models import AssignmentDecision, DecisionReason
from .vectors import l2_normalize


@dataclass
class SessionSegment:
    """One phrase of a session as remembered for replay."""

    embedding: np.ndarray | None
    decision: AssignmentDecision | None = None
    environmental: bool = False
    text: str | None = None
    # Manually labelled; replay keeps both its decision and its contribution.
    pinned: bool = False

    @property
    def speaker_id(self) -> int | None:
        return self.decision.speaker_id if self.decision is not None else None

    @property
    def replayable(self) -> bool:
        return (
            not self.environmental
            and not self.pinned
            and l2_normalize(self.embedding) is not None
        )


@dataclass
class SpeakerChange:
    index: int
    old_speaker: int | None
    new_speaker: int
    new_label: str
    decision: AssignmentDecision

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "oldSpeaker": self.old_speaker,
            "newSpeaker": self.new_speaker,
            "newLabel": self.new_label,
            "reason": self.decision.reason.value,
        }


class CorrectionReplay:
    def __init__(self, engine: SpeakerClusteringEngine):
        self.engine = engine

    def remove_from_centroid(self, speaker_id: int, embedding: Any) -> bool:
        return self.engine.remove_from_centroid(speaker_id, embedding)

    def recluster_from_index(
        self,
        segments: MutableSequence[SessionSegment],
        from_index: int = 0,
        *,
        dry_run: bool = False,
    ) -> list[SpeakerChange]:
        """Undo and redo every decision from ``from_index`` onwards.

        Segments get their new decision written back unless ``dry_run`` is
        set, in which case the replay runs against a copy of the engine and
        nothing observable changes.
        """

        engine = copy.deepcopy(self.engine) if dry_run else self.engine
        start = max(0, int(from_index))
        suffix = [(i, segments[i]) for i in range(start, len(segments)) if segments[i].replayable]
        if not suffix:
            return []

        redoable, vacated, vacated_unknown = self.rewind(engine, suffix)
        changes, holes = self.redo(engine, redoable, vacated, vacated_unknown, dry_run=dry_run)
        logger.info(
            "Replayed %d segments from index %d: %d changed, %d kept, %d vacated slots left",
            len(redoable),
            start,
            len(changes),
            len(suffix) - len(redoable),
            holes,
        )
        return changes

    def rewind(
        self,
        engine: SpeakerClusteringEngine,
        suffix: Sequence[tuple[int, SessionSegment]],
    ) -> tuple[list[tuple[int, SessionSegment]], list[int], list[int]]:
        """Remove the contributions of ``suffix``, newest first.

        Returns the segments that may be redone together with the primary and
        unknown slots that were vacated.  A segment whose contribution cannot
        be removed keeps its decision, otherwise redoing it would count it
        twice.
        """

        vacated: list[int] = []
        vacated_unknown: list[int] = []
        kept: set[int] = set()
        for index, segment in reversed(suffix):
            if self.holds_contribution(segment) and not self.undo_segment(
                engine, segment, vacated, vacated_unknown, index=index
            ):
                kept.add(index)
        redoable = [(i, s) for i, s in suffix if i not in kept]
        return redoable, vacated, vacated_unknown

    def redo(
        self,
        engine: SpeakerClusteringEngine,
        suffix: Sequence[tuple[int, SessionSegment]],
        vacated: Sequence[int] = (),
        vacated_unknown: Sequence[int] = (),
        *,
        dry_run: bool = False,
    ) -> tuple[list[SpeakerChange], int]:
        """Re-decide ``suffix`` oldest first; returns the changes and the count of unfilled slots."""

        if not suffix:
            return [], len(vacated) + len(vacated_unknown)
        changes: list[SpeakerChange] = []
        engine.begin_refill(vacated)
        engine.unknown.begin_refill(vacated_unknown)
        try:
            for index, segment in suffix:
                decision = engine.assign_speaker(segment.embedding)
                old = segment.speaker_id
                if old != decision.speaker_id:
                    changes.append(
                        SpeakerChange(
                            index=index,
                            old_speaker=old,
                            new_speaker=decision.speaker_id,
                            new_label=engine.get_speaker_label(decision.speaker_id),
                            decision=decision,
                        )
                    )
                if not dry_run:
                    segment.decision = decision
        finally:
            holes = engine.end_refill()
            unknown_holes = engine.unknown.end_refill()
        return changes, len(holes) + len(unknown_holes)

    @staticmethod
    def holds_contribution(segment: SessionSegment) -> bool:
        """Whether the segment's decision left a trace in a centroid or founded a record."""

        decision = segment.decision
        if decision is None:
            return False
        if decision.unknown is not None:
            result = decision.unknown
            return result.centroid_updated or result.reason is DecisionReason.UNKNOWN_NEW_CLUSTER
        return decision.centroid_updated or decision.reason is DecisionReason.NEW_SPEAKER

    @staticmethod
    def undo_segment(
        engine: SpeakerClusteringEngine,
        segment: SessionSegment,
        vacated: list[int] | None = None,
        vacated_unknown: list[int] | None = None,
        *,
        index: int = -1,
    ) -> bool:
        """Remove the contribution ``segment`` made to the engine state."""

        decision = segment.decision
        if decision is None:
            return False
        vacated = vacated if vacated is not None else []
        vacated_unknown = vacated_unknown if vacated_unknown is not None else []
        if decision.unknown is not None:
            result = decision.unknown
            if result.centroid_updated:
                ok = engine.unknown.remove_from_cluster(
                    result.unknown_id, segment.embedding, result.closest_enrolled
                )
            elif result.reason is DecisionReason.UNKNOWN_NEW_CLUSTER:
                ok = engine.unknown.vacate(result.unknown_id)
                if ok:
                    vacated_unknown.append(result.unknown_id)
            else:
                return False
        elif decision.centroid_updated:
            ok = engine.remove_from_centroid(decision.speaker_id, segment.embedding)
        elif decision.reason is DecisionReason.NEW_SPEAKER:
            ok = engine.vacate(decision.speaker_id)
            if ok:
                vacated.append(decision.speaker_id)
        else:
            return False
        if not ok:
            logger.debug(
                "Could not undo segment %d (%s -> %d)",
                index,
                decision.reason.value,
                decision.speaker_id,
            )
        return ok


__all__ = ["SessionSegment", "SpeakerChange", "CorrectionReplay"]
