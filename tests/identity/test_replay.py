"""Tests for undoing and re-deciding a session history."""

from __future__ import annotations

import numpy as np
import pytest

from livediar.identity import (
    CorrectionReplay,
    DecisionReason,
    IdentitySession,
    SessionSegment,
    SpeakerClusteringEngine,
)


@pytest.fixture
def two_voice_session(mix):
    """X, X, Y, X, Y, Y, X: two well separated voices, speaker X first."""

    session = IdentitySession(num_speakers=2)
    pattern = "XXYXYYX"
    for k, voice in enumerate(pattern):
        anchor = 0 if voice == "X" else 1
        session.process_phrase(mix(anchor, 10 + k, 0.9), text=f"phrase {k}")
    return session


def _ids(session):
    return [segment.speaker_id for segment in session.segments]


def test_fixture_assigns_two_voices(two_voice_session):
    assert _ids(two_voice_session) == [0, 0, 1, 0, 1, 1, 0]


def test_dry_run_is_deterministic_and_side_effect_free(two_voice_session):
    session = two_voice_session
    before = [(s.centroid.copy(), s.sample_count) for s in session.engine.speakers]
    decisions = [s.decision for s in session.segments]

    first = session.replay.recluster_from_index(session.segments, 0, dry_run=True)
    second = session.replay.recluster_from_index(session.segments, 0, dry_run=True)

    assert [c.to_dict() for c in first] == [c.to_dict() for c in second]
    assert [s.decision for s in session.segments] == decisions
    for record, (centroid, count) in zip(session.engine.speakers, before):
        np.testing.assert_array_equal(record.centroid, centroid)
        assert record.sample_count == count


def test_unchanged_history_replays_to_empty_diff(two_voice_session):
    session = two_voice_session
    counts = [s.sample_count for s in session.engine.speakers]

    assert session.recluster(0) == []
    assert session.recluster(3) == []
    assert _ids(session) == [0, 0, 1, 0, 1, 1, 0]
    assert [s.sample_count for s in session.engine.speakers] == counts


def test_enrollment_mid_session_moves_history_to_enrolled_voice(mix, unit):
    session = IdentitySession(num_speakers=2)
    for k in range(4):
        session.process_phrase(mix(0, 10 + k, 0.9))
    assert _ids(session) == [0, 0, 0, 0]

    warnings, changes = session.enroll_and_replay(
        [{"id": "alice", "name": "Alice", "centroid": unit(0).tolist(), "colorIndex": 2}]
    )

    assert warnings == []
    alice = next(s.id for s in session.engine.live_speakers if s.enrolled)
    assert [c.index for c in changes] == [0, 1, 2, 3]
    assert {c.new_speaker for c in changes} == {alice}
    assert {c.new_label for c in changes} == {"Alice"}
    assert all(c.old_speaker == 0 for c in changes)
    assert all(s.decision.reason is DecisionReason.CONFIDENT_MATCH for s in session.segments)
    assert session.engine.detected_speaker_count == 1


def test_replay_skips_environmental_and_embeddingless_segments(unit, mix):
    engine = SpeakerClusteringEngine(num_speakers=2)
    segments = [
        SessionSegment(embedding=unit(0), decision=engine.assign_speaker(unit(0))),
        SessionSegment(embedding=unit(5), environmental=True),
        SessionSegment(embedding=None),
        SessionSegment(embedding=mix(0, 3, 0.9), decision=engine.assign_speaker(mix(0, 3, 0.9))),
    ]
    changes = CorrectionReplay(engine).recluster_from_index(segments, 0)
    assert changes == []
    assert segments[1].decision is None
    assert segments[2].decision is None
    assert engine.speakers[0].sample_count == 2


def test_replay_reroutes_unknown_segments(unit):
    engine = SpeakerClusteringEngine(num_speakers=2)
    engine.enroll_speaker("Alice", unit(0), enrollment_id="alice")
    stranger = 0.3 * unit(0) + np.sqrt(1 - 0.09) * unit(9)
    segments = [SessionSegment(embedding=stranger, decision=engine.assign_speaker(stranger))]
    assert segments[0].speaker_id == -100

    engine.import_enrolled_speakers(
        [
            {"id": "alice", "name": "Alice", "centroid": unit(0).tolist()},
            {"id": "sam", "name": "Sam", "centroid": unit(9).tolist()},
        ]
    )
    (change,) = CorrectionReplay(engine).recluster_from_index(segments, 0)

    assert change.old_speaker == -100
    assert change.new_label == "Sam"
    assert engine.unknown.get_stats()["clusterCount"] == 0


def test_replay_from_out_of_range_index_is_a_noop(two_voice_session):
    session = two_voice_session
    assert session.replay.recluster_from_index(session.segments, 99) == []
    assert session.replay.recluster_from_index(session.segments, -5) == []


def test_remove_from_centroid_delegates_to_engine(mix, unit):
    engine = SpeakerClusteringEngine()
    engine.assign_speaker(unit(0))
    engine.assign_speaker(mix(0, 1, 0.9))
    replay = CorrectionReplay(engine)
    assert replay.remove_from_centroid(0, mix(0, 1, 0.9)) is True
    assert replay.remove_from_centroid(0, unit(0)) is False
