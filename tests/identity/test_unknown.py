"""Tests for the secondary clustering pass over unplaced utterances."""

from __future__ import annotations

import numpy as np
import pytest

from livediar.errors import SnapshotError
from livediar.identity import (
    UNKNOWN_SPEAKER_BASE,
    DecisionReason,
    SimilarityEntry,
    UnknownSpeakerClusterer,
    is_unknown_id,
)


def _enrolled(name, similarity):
    return [SimilarityEntry(speaker_id=0, name=name, similarity=similarity, enrolled=True)]


@pytest.mark.parametrize(
    "speaker_id, expected",
    [(-100, True), (-105, True), (-1, False), (0, False), (3, False), (-50, False)],
)
def test_is_unknown_id(speaker_id, expected):
    assert is_unknown_id(speaker_id) is expected
    assert UnknownSpeakerClusterer.is_unknown_id(speaker_id) is expected


def test_missing_embedding_returns_base_id():
    clusterer = UnknownSpeakerClusterer()
    result = clusterer.process_unknown_segment(None, _enrolled("Alice", 0.4))
    assert result.unknown_id == UNKNOWN_SPEAKER_BASE
    assert result.reason is DecisionReason.NO_EMBEDDING
    assert result.closest_enrolled.name == "Alice"
    assert clusterer.clusters == []


def test_cluster_ids_decrease_in_order_of_appearance(unit):
    clusterer = UnknownSpeakerClusterer()
    ids = [clusterer.process_unknown_segment(unit(i)).unknown_id for i in range(4)]
    assert ids == [-100, -101, -102, -103]
    assert all(later < earlier for earlier, later in zip(ids, ids[1:]))
    assert [clusterer.get_label(i) for i in ids[:2]] == ["Unknown 1", "Unknown 2"]


def test_noisy_repeat_joins_existing_cluster(unit, mix):
    clusterer = UnknownSpeakerClusterer()
    first = clusterer.process_unknown_segment(unit(0))
    assert first.reason is DecisionReason.UNKNOWN_NEW_CLUSTER

    repeat = clusterer.process_unknown_segment(mix(0, 7, 0.95))
    assert repeat.unknown_id == first.unknown_id
    assert repeat.reason is DecisionReason.UNKNOWN_CLUSTER_MATCH
    assert repeat.similarity == pytest.approx(0.95)
    assert clusterer.get_cluster_info(first.unknown_id)["segmentCount"] == 2


def test_cap_forces_assignment_to_best_cluster(unit, mix):
    clusterer = UnknownSpeakerClusterer(max_unknown_speakers=2)
    clusterer.process_unknown_segment(unit(0))
    clusterer.process_unknown_segment(unit(1))

    forced = clusterer.process_unknown_segment(mix(1, 2, 0.4))
    assert forced.unknown_id == -101
    assert forced.forced_assignment is True
    assert forced.reason is DecisionReason.UNKNOWN_CLUSTER_MATCH
    assert len(clusterer.live_clusters) == 2


def test_closest_enrolled_aggregate_prefers_count_then_similarity(unit, mix):
    clusterer = UnknownSpeakerClusterer()
    cid = clusterer.process_unknown_segment(unit(0), _enrolled("Alice", 0.60)).unknown_id
    clusterer.process_unknown_segment(mix(0, 5, 0.95), _enrolled("Bob", 0.65))

    aggregate = clusterer.get_cluster_info(cid)["closestEnrolled"]
    assert aggregate["name"] == "Bob"
    assert aggregate["occurrences"] == 1
    assert aggregate["totalSegments"] == 2

    clusterer.process_unknown_segment(mix(0, 6, 0.95), _enrolled("Alice", 0.55))
    aggregate = clusterer.get_cluster_info(cid)["closestEnrolled"]
    assert aggregate["name"] == "Alice"
    assert aggregate["occurrences"] == 2
    assert aggregate["similarity"] == pytest.approx(0.575)


def test_non_enrolled_candidates_are_not_closest_enrolled(unit):
    clusterer = UnknownSpeakerClusterer()
    result = clusterer.process_unknown_segment(
        unit(0), [SimilarityEntry(1, "Speaker 2", 0.45, enrolled=False)]
    )
    assert result.closest_enrolled is None
    assert clusterer.get_cluster_info(result.unknown_id)["closestEnrolled"] is None


def test_all_unknown_speakers_filters_singletons(unit, mix):
    clusterer = UnknownSpeakerClusterer(min_segments_for_cluster=2)
    clusterer.process_unknown_segment(unit(0))
    clusterer.process_unknown_segment(mix(0, 8, 0.95))
    clusterer.process_unknown_segment(unit(1))

    reported = clusterer.get_all_unknown_speakers()
    assert [row["unknownId"] for row in reported] == [-100]
    assert reported[0]["segmentCount"] == 2
    assert reported[0]["confidence"] == pytest.approx(0.6)
    assert reported[0]["isUnknown"] is True


def test_confidence_is_capped(unit, mix):
    clusterer = UnknownSpeakerClusterer()
    clusterer.process_unknown_segment(unit(0))
    for k in range(1, 12):
        clusterer.process_unknown_segment(mix(0, k, 0.95))
    (row,) = clusterer.get_all_unknown_speakers()
    assert row["segmentCount"] == 12
    assert row["confidence"] == pytest.approx(0.9)


def test_remove_from_cluster_reverts_update(unit, mix):
    clusterer = UnknownSpeakerClusterer()
    cid = clusterer.process_unknown_segment(unit(0), _enrolled("Alice", 0.6)).unknown_id
    second = mix(0, 3, 0.9)
    result = clusterer.process_unknown_segment(second, _enrolled("Bob", 0.3))

    assert clusterer.remove_from_cluster(cid, second, result.closest_enrolled) is True
    cluster = clusterer.clusters[0]
    assert cluster.count == 1
    np.testing.assert_allclose(cluster.centroid, unit(0), atol=1e-9)
    assert cluster.closest_enrolled_aggregate.name == "Alice"

    assert clusterer.remove_from_cluster(cid, unit(0)) is False
    assert clusterer.remove_from_cluster(-150, unit(0)) is False


def test_serialize_restore_round_trip(unit, mix):
    source = UnknownSpeakerClusterer()
    source.process_unknown_segment(unit(0), _enrolled("Alice", 0.4))
    source.process_unknown_segment(mix(0, 4, 0.95), _enrolled("Alice", 0.42))
    source.process_unknown_segment(unit(1))
    payload = source.serialize()

    restored = UnknownSpeakerClusterer()
    restored.restore(payload)
    assert restored.get_stats() == source.get_stats()

    follow_up = restored.process_unknown_segment(unit(2))
    assert follow_up.unknown_id == -102

    bare = UnknownSpeakerClusterer()
    bare.restore(payload["clusters"])
    assert bare.get_stats()["clusterCount"] == 2


def test_restore_keeps_gaps_vacant(unit):
    clusterer = UnknownSpeakerClusterer()
    clusterer.restore({"clusters": [{"id": -102, "centroid": unit(0).tolist(), "count": 3}]})
    assert [c.vacant for c in clusterer.clusters] == [True, True, False]
    assert clusterer.get_cluster_info(-100) is None
    assert clusterer.get_cluster_info(-102)["segmentCount"] == 3


@pytest.mark.parametrize(
    "entry",
    [
        {"id": -100},
        {"id": 3, "centroid": [1.0, 0.0], "count": 1},
        {"id": -100, "centroid": [0.0, 0.0], "count": 1},
        {"id": -100, "centroid": [1.0, 0.0], "count": 0},
    ],
)
def test_restore_rejects_malformed_entries(entry):
    clusterer = UnknownSpeakerClusterer()
    with pytest.raises(SnapshotError) as excinfo:
        clusterer.restore([entry])
    assert excinfo.value.context["position"] == 0
    assert clusterer.clusters == []


def test_reset_clears_clusters(unit):
    clusterer = UnknownSpeakerClusterer()
    clusterer.process_unknown_segment(unit(0))
    clusterer.reset()
    assert clusterer.get_stats() == {"clusterCount": 0, "clusters": []}
    assert clusterer.process_unknown_segment(unit(1)).unknown_id == -100


def test_refill_reuses_vacated_cluster_before_fresh_id(unit):
    clusterer = UnknownSpeakerClusterer()
    clusterer.process_unknown_segment(unit(0))
    clusterer.process_unknown_segment(unit(1))
    assert clusterer.vacate(-101) is True

    clusterer.begin_refill([-101, -100, 4])
    refilled = clusterer.process_unknown_segment(unit(2))
    fresh = clusterer.process_unknown_segment(unit(3))

    assert refilled.unknown_id == -101
    assert refilled.reason is DecisionReason.UNKNOWN_NEW_CLUSTER
    assert fresh.unknown_id == -102
    assert clusterer.end_refill() == []
    assert clusterer.get_cluster_info(-101)["segmentCount"] == 1
