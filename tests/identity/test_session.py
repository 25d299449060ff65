"""Tests for the phrase-level session driver."""

from __future__ import annotations

import numpy as np
import pytest

from livediar.identity import DecisionReason, IdentitySession


def test_blank_audio_is_dropped(unit):
    session = IdentitySession()
    assert session.process_phrase(unit(0), text="[BLANK_AUDIO]") is None
    assert session.process_phrase(unit(0), words=["[BLANK_AUDIO]", " "]) is None
    assert session.segments == []
    assert session.engine.speakers == []


def test_environmental_phrase_is_kept_out_of_clustering(unit):
    session = IdentitySession()
    segment = session.process_phrase(unit(0), text="[MUSIC] [APPLAUSE]")
    assert segment.environmental is True
    assert segment.decision is None
    assert session.label_for(segment) is None
    assert session.engine.speakers == []


def test_human_voice_marker_is_attributed(unit):
    session = IdentitySession()
    segment = session.process_phrase(unit(0), text="[LAUGHTER]")
    assert segment.environmental is False
    assert segment.decision.reason is DecisionReason.NEW_SPEAKER


def test_phrase_without_embedding_inherits_previous_speaker(unit, mix):
    session = IdentitySession(num_speakers=2)
    session.process_phrase(unit(0), text="hello")
    session.process_phrase(unit(1), text="hi there")
    session.process_phrase(unit(3), text="[DOOR SLAMS]")
    inherited = session.process_phrase(None, text="ok")

    assert inherited.decision.reason is DecisionReason.INHERITED
    assert inherited.speaker_id == 1
    assert session.label_for(inherited) == "Speaker 2"


def test_first_phrase_without_embedding_defaults_to_speaker_zero():
    session = IdentitySession()
    segment = session.process_phrase(None, text="hello")
    assert segment.speaker_id == 0
    assert segment.decision.reason is DecisionReason.INHERITED
    assert session.engine.speakers == []


def test_words_are_joined_into_text(unit):
    session = IdentitySession()
    segment = session.process_phrase(unit(0), words=[" so", " anyway", ""])
    assert segment.text == "so anyway"


def test_process_phrases_skips_blank_entries(unit, mix):
    session = IdentitySession()
    processed = session.process_phrases(
        [
            {"embedding": unit(0), "text": "one"},
            {"embedding": unit(0), "text": "[BLANK_AUDIO]"},
            {"embedding": mix(0, 2, 0.9), "words": ["two"]},
        ]
    )
    assert len(processed) == 2
    assert [s.speaker_id for s in session.segments] == [0, 0]


@pytest.fixture
def relabel_session(mix):
    session = IdentitySession(num_speakers=2)
    for k, anchor in enumerate([0, 0, 1, 1]):
        session.process_phrase(mix(anchor, 10 + k, 0.9))
    return session


def test_relabel_moves_segment_and_pins_it(relabel_session):
    session = relabel_session
    assert [s.speaker_id for s in session.segments] == [0, 0, 1, 1]

    changes = session.relabel(3, 0)

    assert [(c.index, c.old_speaker, c.new_speaker) for c in changes] == [(3, 1, 0)]
    assert session.segments[3].pinned is True
    assert session.segments[3].decision.forced_assignment is True
    assert session.engine.speakers[0].sample_count == 3
    assert session.engine.speakers[1].sample_count == 1

    # A later replay keeps the manual label.
    assert session.recluster(2) == []
    assert session.segments[3].speaker_id == 0


def _folded_counts(session):
    counts = {}
    for segment in session.segments:
        decision = segment.decision
        if decision is None:
            continue
        if decision.centroid_updated or decision.reason is DecisionReason.NEW_SPEAKER:
            counts[decision.speaker_id] = counts.get(decision.speaker_id, 0) + 1
    return counts


@pytest.fixture
def founder_session(mix):
    # Three phrases of one voice found and grow speaker 0; a fourth voice founds speaker 1.
    session = IdentitySession(num_speakers=2)
    for k, anchor in enumerate([0, 0, 0, 1]):
        session.process_phrase(mix(anchor, 10 + k, 0.9))
    return session


def test_relabel_founding_segment_releases_old_speaker(founder_session):
    session = founder_session
    assert [s.speaker_id for s in session.segments] == [0, 0, 0, 1]
    assert session.engine.speakers[0].sample_count == 3

    changes = session.relabel(0, 1)

    assert [(c.index, c.old_speaker, c.new_speaker) for c in changes] == [(0, 0, 1)]
    assert [s.speaker_id for s in session.segments] == [1, 0, 0, 1]
    assert session.segments[0].pinned is True
    assert session.engine.speakers[0].sample_count == 2
    assert session.engine.speakers[1].sample_count == 2
    live = {s.id: s.sample_count for s in session.engine.live_speakers}
    assert _folded_counts(session) == live


def test_relabel_is_refused_when_pinned_segment_holds_old_speaker(founder_session):
    session = founder_session
    assert session.relabel(2, 0) == []
    assert session.segments[2].pinned is True

    before = session.engine.speakers[0].centroid.copy()
    assert session.relabel(0, 1) == []

    assert [s.speaker_id for s in session.segments] == [0, 0, 0, 1]
    assert session.segments[0].pinned is False
    assert session.engine.speakers[0].sample_count == 3
    assert session.engine.speakers[1].sample_count == 1
    assert np.allclose(session.engine.speakers[0].centroid, before)


def test_replay_keeps_founder_held_by_pinned_segment(founder_session):
    session = founder_session
    session.relabel(2, 0)

    assert session.recluster(0) == []

    assert [s.speaker_id for s in session.segments] == [0, 0, 0, 1]
    assert session.segments[0].decision.reason is DecisionReason.NEW_SPEAKER
    assert session.engine.speakers[0].sample_count == 3
    live = {s.id: s.sample_count for s in session.engine.live_speakers}
    assert _folded_counts(session) == live


def test_relabel_to_same_speaker_only_pins(relabel_session):
    session = relabel_session
    assert session.relabel(1, 0) == []
    assert session.segments[1].pinned is True
    assert session.engine.speakers[0].sample_count == 2


@pytest.mark.parametrize("index, speaker_id", [(9, 0), (0, 7), (0, -100)])
def test_relabel_rejects_invalid_targets(relabel_session, index, speaker_id):
    assert relabel_session.relabel(index, speaker_id) == []
    assert relabel_session.segments[0].pinned is False


def test_reset_keeps_enrolled_voices(unit):
    session = IdentitySession(num_speakers=3)
    session.process_phrase(unit(1), text="first")
    session.engine.enroll_speaker("Alice", unit(0))
    session.reset()
    assert session.segments == []
    assert [s.name for s in session.engine.speakers] == ["Alice"]
