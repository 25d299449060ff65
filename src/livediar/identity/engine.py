"""Primary per-utterance speaker decision engine.

Utterances are processed strictly in arrival order.  Every live record is
scored first (read-only), then a single write is applied to the winner, so
the decision is a pure function of the engine state and the embedding.

Records live in an arena indexed by their stable id.  Ids are never compacted
during a session; an undo may leave a vacant slot behind, which only a running
correction replay is allowed to refill.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import numpy as np

from .config import (
    UNKNOWN_SPEAKER_ID,
    ClusteringConfig,
    UnknownClusteringConfig,
    clamp_num_speakers,
    snake_case,
)
from .logger import logger
from .models import AssignmentDecision, DecisionReason, SimilarityEntry, SpeakerRecord
from .persistence import parse_enrolled_entries
from .unknown import UnknownSpeakerClusterer, is_unknown_id
from .vectors import cosine_similarity, fold_in, fold_out, l2_normalize, similarity_row


_UNKNOWN_OPTIONS = {"max_unknown_speakers", "min_segments_for_cluster"}


def _unknown_overrides(overrides: Mapping[str, Any]) -> dict[str, Any]:
    # ``unknownSimilarityThreshold`` style keys target the secondary pass only.
    picked: dict[str, Any] = {}
    for key, value in overrides.items():
        name = snake_case(str(key))
        if name.startswith("unknown_"):
            picked[name[len("unknown_") :]] = value
        elif name in _UNKNOWN_OPTIONS:
            picked[name] = value
    return picked


class SpeakerClusteringEngine:
    def __init__(
        self,
        config: ClusteringConfig | None = None,
        *,
        unknown_clusterer: UnknownSpeakerClusterer | None = None,
        **overrides: Any,
    ):
        if config is None:
            config = ClusteringConfig.from_mapping(overrides)
        self.config = config
        self.unknown = unknown_clusterer or UnknownSpeakerClusterer(
            UnknownClusteringConfig.from_mapping(_unknown_overrides(overrides))
        )
        self.speakers: list[SpeakerRecord] = []
        self._refill_slots: list[int] | None = None

    # --- configuration ----------------------------------------------------
    @property
    def num_speakers(self) -> int:
        return self.config.num_speakers

    def set_num_speakers(self, n: int) -> None:
        self.config.num_speakers = clamp_num_speakers(n)

    @property
    def live_speakers(self) -> list[SpeakerRecord]:
        return [s for s in self.speakers if not s.vacant]

    @property
    def detected_speaker_count(self) -> int:
        return len(self.live_speakers)

    @property
    def enrolled_count(self) -> int:
        return sum(1 for s in self.live_speakers if s.enrolled)

    def has_enrolled_speaker(self) -> bool:
        return self.enrolled_count > 0

    @property
    def dimension(self) -> int | None:
        for record in self.speakers:
            if not record.vacant:
                return int(record.centroid.shape[0])
        return None

    # --- scoring ----------------------------------------------------------
    def similarities(self, embedding: Any) -> list[SimilarityEntry]:
        """Score every live record, best first (ties keep id order)."""

        vec = l2_normalize(embedding)
        if vec is None or not self._dimension_ok(vec, warn=False):
            return []
        return self._score(vec, self.live_speakers)

    def find_best_match(self, embedding: Any) -> tuple[int, float, float] | None:
        """Return ``(speaker_id, similarity, second_best_similarity)`` or ``None``."""

        entries = self.similarities(embedding)
        if not entries:
            return None
        second = entries[1].similarity if len(entries) > 1 else 0.0
        return entries[0].speaker_id, entries[0].similarity, second

    def _score(self, vec: np.ndarray, live: Sequence[SpeakerRecord]) -> list[SimilarityEntry]:
        sims = similarity_row(vec, [s.centroid for s in live])
        order = np.argsort(-sims, kind="stable")
        return [
            SimilarityEntry(
                speaker_id=live[i].id,
                name=self.get_speaker_label(live[i].id),
                similarity=float(sims[i]),
                enrolled=live[i].enrolled,
            )
            for i in order
        ]

    def _choose(self, entries: Sequence[SimilarityEntry]) -> SimilarityEntry:
        best = entries[0]
        if best.enrolled:
            return best
        floor = max(
            best.similarity - self.config.enrolled_priority_margin,
            self.config.similarity_threshold,
        )
        for entry in entries[1:]:
            if entry.similarity < floor:
                break
            if entry.enrolled:
                return entry
        return best

    # --- decisions --------------------------------------------------------
    def assign_speaker(self, embedding: Any) -> AssignmentDecision:
        """Classify one utterance embedding and apply the resulting state change."""

        vec = l2_normalize(embedding)
        if vec is None or not self._dimension_ok(vec):
            return AssignmentDecision(speaker_id=0, reason=DecisionReason.NO_EMBEDDING)

        live = self.live_speakers
        if not live:
            record = self._create_speaker(vec)
            decision = AssignmentDecision(
                speaker_id=record.id,
                reason=DecisionReason.NEW_SPEAKER,
                similarity=1.0,
                is_enrolled=False,
                all_similarities=[
                    SimilarityEntry(record.id, self.get_speaker_label(record.id), 1.0, False)
                ],
            )
            self._log_decision(decision)
            return decision

        cfg = self.config
        entries = self._score(vec, live)
        best = entries[0].similarity
        margin = best - entries[1].similarity if len(entries) > 1 else 0.0
        chosen = self._choose(entries)
        runner_up = next((e for e in entries if e.speaker_id != chosen.speaker_id), None)
        record = self.speakers[chosen.speaker_id]
        at_cap = len(live) >= cfg.num_speakers
        below_minimum = best < cfg.minimum_similarity_threshold
        # Far-off voices only go to the unknown bucket once known voices exist.
        has_enrolled = any(s.enrolled for s in live)

        decision = AssignmentDecision(
            speaker_id=chosen.speaker_id,
            reason=DecisionReason.CONFIDENT_MATCH,
            similarity=chosen.similarity,
            margin=margin,
            is_enrolled=record.enrolled,
            second_best_similarity=runner_up.similarity if runner_up else 0.0,
            second_best_speaker=runner_up.name if runner_up else None,
            all_similarities=entries,
        )

        if best >= cfg.similarity_threshold:
            if len(entries) > 1 and margin < cfg.confidence_margin:
                decision.reason = DecisionReason.AMBIGUOUS_MATCH
            elif not record.enrolled or cfg.update_enrolled_centroids:
                decision.centroid_updated = self._fold_in(record, vec)
        elif not at_cap and (not below_minimum or not has_enrolled):
            created = self._create_speaker(vec)
            decision.speaker_id = created.id
            decision.reason = DecisionReason.NEW_SPEAKER
            decision.is_enrolled = False
            decision.second_best_similarity = best
            decision.second_best_speaker = entries[0].name
        elif below_minimum and not has_enrolled:
            decision.reason = DecisionReason.BELOW_MINIMUM_THRESHOLD
            decision.forced_assignment = True
        else:
            result = self.unknown.process_unknown_segment(vec, entries)
            decision.speaker_id = result.unknown_id
            decision.reason = DecisionReason.NO_CONFIDENT_MATCH
            decision.is_enrolled = False
            decision.unknown = result

        self._log_decision(decision)
        return decision

    # --- corrections ------------------------------------------------------
    def remove_from_centroid(self, speaker_id: int, embedding: Any) -> bool:
        """Undo one running-average contribution.

        Returns ``False`` without mutating anything for enrolled speakers,
        single-sample records, vacant or out-of-range ids and unusable
        embeddings.
        """

        if not isinstance(speaker_id, (int, np.integer)) or not 0 <= speaker_id < len(self.speakers):
            return False
        record = self.speakers[int(speaker_id)]
        if record.vacant or record.enrolled or record.sample_count <= 1:
            return False
        vec = l2_normalize(embedding)
        if vec is None or vec.shape != record.centroid.shape:
            return False
        previous = fold_out(record.centroid, record.sample_count, vec)
        if previous is None:
            return False
        record.centroid = previous
        record.sample_count -= 1
        return True

    def add_to_centroid(self, speaker_id: int, embedding: Any) -> bool:
        """Fold one embedding into a discovered record; the partner of :meth:`remove_from_centroid`."""

        if not isinstance(speaker_id, (int, np.integer)) or not 0 <= speaker_id < len(self.speakers):
            return False
        record = self.speakers[int(speaker_id)]
        if record.vacant or (record.enrolled and not self.config.update_enrolled_centroids):
            return False
        vec = l2_normalize(embedding)
        if vec is None or vec.shape != record.centroid.shape:
            return False
        return self._fold_in(record, vec)

    def vacate(self, speaker_id: int) -> bool:
        """Empty a discovered record that holds only its founding sample."""

        if not 0 <= speaker_id < len(self.speakers):
            return False
        record = self.speakers[speaker_id]
        if record.vacant or record.enrolled or record.sample_count != 1:
            return False
        record.vacant = True
        record.sample_count = 0
        return True

    def begin_refill(self, slots: Iterable[int]) -> None:
        self._refill_slots = sorted(s for s in slots if 0 <= s < len(self.speakers))

    def end_refill(self) -> list[int]:
        remaining = list(self._refill_slots or [])
        self._refill_slots = None
        return remaining

    # --- labels -----------------------------------------------------------
    def get_speaker_label(self, speaker_id: int) -> str:
        if speaker_id == UNKNOWN_SPEAKER_ID:
            return "Unknown"
        if is_unknown_id(speaker_id):
            return self.unknown.get_label(speaker_id)
        if 0 <= speaker_id < len(self.speakers) and self.speakers[speaker_id].name:
            return str(self.speakers[speaker_id].name)
        return f"Speaker {speaker_id + 1}"

    # --- enrolment --------------------------------------------------------
    def enroll_speaker(
        self,
        name: str,
        embedding: Any,
        enrollment_id: str | None = None,
        color_index: int = 0,
    ) -> int | None:
        """Add a single enrolled voice; returns its id, or ``None`` for a bad embedding."""

        vec = l2_normalize(embedding)
        if vec is None or not self._dimension_ok(vec):
            return None
        record = SpeakerRecord(
            id=len(self.speakers),
            centroid=vec,
            enrolled=True,
            enrollment_id=enrollment_id or uuid.uuid4().hex,
            name=name,
            color_index=color_index,
        )
        self.speakers.append(record)
        logger.info("Enrolled speaker %s as id %d", name, record.id)
        return record.id

    def import_enrolled_speakers(
        self, entries: Iterable[Mapping[str, Any]] | None
    ) -> list[dict[str, Any]]:
        """Replace the enrolled set; returns inter-enrolment similarity warnings.

        Previously enrolled slots are reused in ascending id order so an
        export/import cycle keeps ids stable; surplus slots are vacated.
        Discovered speakers are untouched.
        """

        if entries is None:
            return []
        parsed = parse_enrolled_entries(entries)
        # Discovered records fix the dimension; otherwise the first entry does.
        discovered = [s for s in self.live_speakers if not s.enrolled]
        reference = discovered[0].centroid if discovered else (parsed[0].centroid if parsed else None)
        if reference is not None:
            kept = [e for e in parsed if e.centroid.shape == reference.shape]
            if len(kept) != len(parsed):
                logger.warning(
                    "Skipped %d enrolled entries with a dimension other than %d",
                    len(parsed) - len(kept),
                    reference.shape[0],
                )
            parsed = kept
        slots = [s.id for s in self.speakers if s.enrolled]
        for position, entry in enumerate(parsed):
            record = SpeakerRecord(
                id=slots[position] if position < len(slots) else len(self.speakers),
                centroid=entry.centroid,
                enrolled=True,
                enrollment_id=entry.enrollment_id,
                name=entry.name,
                color_index=entry.color_index,
            )
            if position < len(slots):
                self.speakers[record.id] = record
            else:
                self.speakers.append(record)
        for slot in slots[len(parsed) :]:
            self.speakers[slot].vacant = True
        logger.info("Imported %d enrolled speakers", len(parsed))
        return self.check_enrolled_speaker_similarities(force=True)

    def export_enrolled_speakers(self) -> list[dict[str, Any]]:
        return [
            {
                "id": s.enrollment_id,
                "name": s.name,
                "centroid": [float(x) for x in s.centroid],
                "colorIndex": s.color_index,
            }
            for s in self.live_speakers
            if s.enrolled
        ]

    def remove_enrolled_speaker(self, enrollment_id: str) -> bool:
        for record in self.live_speakers:
            if record.enrolled and record.enrollment_id == enrollment_id:
                record.vacant = True
                return True
        return False

    def clear_all_enrollments(self) -> None:
        for record in self.speakers:
            if record.enrolled:
                record.vacant = True

    def check_enrolled_speaker_similarities(self, force: bool = False) -> list[dict[str, Any]]:
        """Pairs of enrolled voices similar enough to be confused with each other."""

        enrolled = [s for s in self.live_speakers if s.enrolled]
        warnings: list[dict[str, Any]] = []
        threshold = self.config.inter_enrollment_warning_threshold
        verbose = force or self.config.debug_logging
        for i in range(len(enrolled)):
            for j in range(i + 1, len(enrolled)):
                sim = cosine_similarity(enrolled[i].centroid, enrolled[j].centroid)
                if sim > threshold:
                    warnings.append(
                        {"speaker1": enrolled[i].name, "speaker2": enrolled[j].name, "similarity": sim}
                    )
                    logger.warning(
                        "Enrolled speakers %s and %s are similar (%.3f)",
                        enrolled[i].name,
                        enrolled[j].name,
                        sim,
                    )
                elif verbose:
                    logger.debug(
                        "Enrolled pair %s <-> %s: %.3f", enrolled[i].name, enrolled[j].name, sim
                    )
        return warnings

    def get_all_speakers_for_visualization(self) -> list[dict[str, Any]]:
        return [
            {
                "id": s.enrollment_id or f"discovered-{s.id}",
                "speakerId": s.id,
                "name": self.get_speaker_label(s.id),
                "centroid": s.centroid,
                "enrolled": s.enrolled,
                "colorIndex": s.color_index if s.color_index is not None else s.id,
                "sampleCount": s.sample_count,
            }
            for s in self.live_speakers
        ]

    def reset(self, preserve_enrolled: bool = False) -> None:
        """Start a new session; enrolled voices are renumbered from zero when kept."""

        kept = [s for s in self.live_speakers if s.enrolled] if preserve_enrolled else []
        self.speakers = []
        for record in kept:
            record.id = len(self.speakers)
            self.speakers.append(record)
        self.unknown.reset()
        self._refill_slots = None

    # --- internal helpers -------------------------------------------------
    def _create_speaker(self, vec: np.ndarray) -> SpeakerRecord:
        slot = self._next_refill_slot()
        if slot is not None:
            record = self.speakers[slot]
            record.centroid = vec.copy()
            record.sample_count = 1
            record.vacant = False
        else:
            record = SpeakerRecord(id=len(self.speakers), centroid=vec.copy())
            self.speakers.append(record)
        logger.info("New speaker %s (id %d)", self.get_speaker_label(record.id), record.id)
        return record

    def _next_refill_slot(self) -> int | None:
        while self._refill_slots:
            slot = self._refill_slots.pop(0)
            record = self.speakers[slot]
            if record.vacant and not record.enrolled:
                return slot
        return None

    @staticmethod
    def _fold_in(record: SpeakerRecord, vec: np.ndarray) -> bool:
        updated = fold_in(record.centroid, record.sample_count, vec)
        if updated is None:
            return False
        record.centroid = updated
        record.sample_count += 1
        return True

    def _dimension_ok(self, vec: np.ndarray, *, warn: bool = True) -> bool:
        dim = self.dimension
        if dim is None or dim == vec.shape[0]:
            return True
        if warn:
            logger.warning("Embedding has %d dims, engine expects %d", vec.shape[0], dim)
        return False

    def _log_decision(self, decision: AssignmentDecision) -> None:
        log = logger.info if self.config.debug_logging else logger.debug
        log(
            "%s <- %s (sim %.3f, margin %.3f)",
            self.get_speaker_label(decision.speaker_id),
            decision.reason.value,
            decision.similarity,
            decision.margin,
        )


__all__ = ["SpeakerClusteringEngine"]
