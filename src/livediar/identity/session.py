"""Phrase-level driver that keeps the ordered history a correction needs."""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .engine import SpeakerClusteringEngine
from .logger import logger
from .models import AssignmentDecision, DecisionReason
from .replay import CorrectionReplay, SessionSegment, SpeakerChange
from .sound import SoundClassifier, SoundType
from .vectors import as_vector, cosine_similarity, l2_normalize


class IdentitySession:
    """Run phrases through one engine and remember every decision.

    Phrases without an embedding inherit the previous speaker, environmental
    markers are kept out of clustering, and ``[BLANK_AUDIO]``-only phrases are
    dropped entirely.
    """

    def __init__(
        self,
        engine: SpeakerClusteringEngine | None = None,
        *,
        sound_classifier: SoundClassifier | None = None,
        **overrides: Any,
    ):
        self.engine = engine or SpeakerClusteringEngine(**overrides)
        self.sound = sound_classifier or SoundClassifier()
        self.replay = CorrectionReplay(self.engine)
        self.segments: list[SessionSegment] = []

    def process_phrase(
        self,
        embedding: Any,
        *,
        text: str | None = None,
        words: Sequence[str] | None = None,
    ) -> SessionSegment | None:
        if words is not None:
            category = self.sound.categorize_words(words)
            if text is None:
                text = " ".join(w.strip() for w in words if w and w.strip())
        else:
            category = self.sound.categorize_text(text)

        if category is SoundType.BLANK:
            return None
        vec = as_vector(embedding)
        if category is SoundType.ENVIRONMENTAL:
            segment = SessionSegment(embedding=vec, environmental=True, text=text)
        elif l2_normalize(vec) is not None:
            segment = SessionSegment(
                embedding=vec, decision=self.engine.assign_speaker(vec), text=text
            )
        else:
            segment = SessionSegment(
                embedding=None, decision=self._inherit(len(self.segments)), text=text
            )
        self.segments.append(segment)
        return segment

    def process_phrases(self, phrases: Iterable[Mapping[str, Any]]) -> list[SessionSegment]:
        processed: list[SessionSegment] = []
        for phrase in phrases:
            segment = self.process_phrase(
                phrase.get("embedding"), text=phrase.get("text"), words=phrase.get("words")
            )
            if segment is not None:
                processed.append(segment)
        return processed

    def label_for(self, segment: SessionSegment) -> str | None:
        """Display label, e.g. ``Alice (Speaker 3?)`` for an ambiguous match."""

        if segment.decision is None:
            return None
        label = self.engine.get_speaker_label(segment.decision.speaker_id)
        return segment.decision.display_label(label)

    # --- corrections ------------------------------------------------------
    def recluster(self, from_index: int = 0, *, dry_run: bool = False) -> list[SpeakerChange]:
        changes = self.replay.recluster_from_index(self.segments, from_index, dry_run=dry_run)
        if not dry_run:
            changes.extend(self._reinherit(from_index))
            changes.sort(key=lambda change: change.index)
        return changes

    def enroll_and_replay(
        self, entries: Iterable[Mapping[str, Any]]
    ) -> tuple[list[dict[str, Any]], list[SpeakerChange]]:
        """Swap in a new enrolled set mid-session and re-decide the whole history."""

        warnings = self.engine.import_enrolled_speakers(entries)
        return warnings, self.recluster(0)

    def relabel(self, index: int, speaker_id: int) -> list[SpeakerChange]:
        """Pin segment ``index`` to primary speaker ``speaker_id``.

        The later segments that shared its old speaker are rewound, the
        segment's contribution is moved to ``speaker_id`` and those segments
        are decided again.  Returns an empty list when the segment cannot be
        relabelled: no embedding, environmental, ``speaker_id`` not a live
        record, or a pinned segment keeps the old record from releasing it.
        """

        if not 0 <= index < len(self.segments):
            return []
        segment = self.segments[index]
        live_ids = {s.id for s in self.engine.live_speakers}
        if speaker_id not in live_ids or l2_normalize(segment.embedding) is None:
            return []
        if segment.environmental:
            return []
        old = segment.speaker_id
        if old == speaker_id:
            segment.pinned = True
            return []
        # Later segments that joined the old record are rewound first so the
        # record can release this one, even when it founded the record.
        sharing = [
            (i, s)
            for i, s in enumerate(self.segments[index + 1 :], start=index + 1)
            if s.replayable and s.speaker_id == old
        ]
        if CorrectionReplay.holds_contribution(segment):
            trial = copy.deepcopy(self.engine)
            self.replay.rewind(trial, sharing)
            if not CorrectionReplay.undo_segment(trial, segment, index=index):
                logger.warning(
                    "Segment %d cannot leave speaker %s; a pinned segment still holds it",
                    index,
                    old,
                )
                return []
        redoable, vacated, vacated_unknown = self.replay.rewind(self.engine, sharing)
        if CorrectionReplay.holds_contribution(segment):
            CorrectionReplay.undo_segment(
                self.engine, segment, vacated, vacated_unknown, index=index
            )
        record = self.engine.speakers[speaker_id]
        updated = self.engine.add_to_centroid(speaker_id, segment.embedding)
        segment.decision = AssignmentDecision(
            speaker_id=speaker_id,
            reason=DecisionReason.CONFIDENT_MATCH,
            similarity=cosine_similarity(segment.embedding, record.centroid),
            is_enrolled=record.enrolled,
            forced_assignment=True,
            centroid_updated=updated,
        )
        segment.pinned = True
        logger.info("Segment %d relabelled %s -> %s", index, old, speaker_id)
        changes: list[SpeakerChange] = []
        if old != speaker_id:
            changes.append(
                SpeakerChange(
                    index=index,
                    old_speaker=old,
                    new_speaker=speaker_id,
                    new_label=self.engine.get_speaker_label(speaker_id),
                    decision=segment.decision,
                )
            )
        redone, _ = self.replay.redo(self.engine, redoable, vacated, vacated_unknown)
        changes.extend(redone)
        changes.extend(self._reinherit(index + 1))
        changes.sort(key=lambda change: change.index)
        return changes

    def reset(self, preserve_enrolled: bool = True) -> None:
        self.engine.reset(preserve_enrolled=preserve_enrolled)
        self.segments = []

    # --- internal helpers -------------------------------------------------
    def _previous_decision(self, index: int) -> AssignmentDecision | None:
        for segment in reversed(self.segments[:index]):
            if segment.decision is not None and not segment.environmental:
                return segment.decision
        return None

    def _inherit(self, index: int) -> AssignmentDecision:
        previous = self._previous_decision(index)
        if previous is None:
            return AssignmentDecision(speaker_id=0, reason=DecisionReason.INHERITED)
        return AssignmentDecision(
            speaker_id=previous.speaker_id,
            reason=DecisionReason.INHERITED,
            similarity=previous.similarity,
            margin=previous.margin,
            is_enrolled=previous.is_enrolled,
        )

    def _reinherit(self, from_index: int) -> list[SpeakerChange]:
        changes: list[SpeakerChange] = []
        for index in range(max(0, from_index), len(self.segments)):
            segment = self.segments[index]
            if segment.environmental or segment.embedding is not None:
                continue
            old = segment.speaker_id
            segment.decision = self._inherit(index)
            if old != segment.decision.speaker_id:
                changes.append(
                    SpeakerChange(
                        index=index,
                        old_speaker=old,
                        new_speaker=segment.decision.speaker_id,
                        new_label=self.engine.get_speaker_label(segment.decision.speaker_id),
                        decision=segment.decision,
                    )
                )
        return changes


__all__ = ["IdentitySession"]
