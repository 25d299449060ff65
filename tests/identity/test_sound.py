"""Tests for transcript marker classification."""

from __future__ import annotations

import pytest

from livediar.identity import SoundClassifier, SoundType


@pytest.fixture
def classifier():
    return SoundClassifier()


@pytest.mark.parametrize(
    "text, expected",
    [
        ("[MUSIC]", SoundType.ENVIRONMENTAL),
        ("(door slams)", SoundType.ENVIRONMENTAL),
        ("[UNRECOGNISED THING]", SoundType.ENVIRONMENTAL),
        ("[LAUGHTER]", SoundType.HUMAN_VOICE),
        ("(coughs)", SoundType.HUMAN_VOICE),
        ("hello", SoundType.SPEECH),
        ("[BLANK_AUDIO]", SoundType.BLANK),
        ("", SoundType.BLANK),
    ],
)
def test_classify(classifier, text, expected):
    assert classifier.classify(text) is expected


def test_categorize_words(classifier):
    assert classifier.categorize_words(["[MUSIC]", "[APPLAUSE]"]) is SoundType.ENVIRONMENTAL
    assert classifier.categorize_words(["[MUSIC]", "hello"]) is SoundType.SPEECH
    assert classifier.categorize_words(["[LAUGHTER]"]) is SoundType.SPEECH
    assert classifier.categorize_words(["[BLANK_AUDIO]", "  "]) is SoundType.BLANK
    assert classifier.categorize_words([]) is SoundType.BLANK


def test_categorize_text_splits_markers(classifier):
    assert classifier.categorize_text("[Music] (door slams)") is SoundType.ENVIRONMENTAL
    assert classifier.categorize_text("well [MUSIC]") is SoundType.SPEECH
    assert classifier.categorize_text(None) is SoundType.SPEECH


def test_custom_patterns():
    classifier = SoundClassifier(human_voice_patterns=["beatbox"])
    assert classifier.classify("[BEATBOX]") is SoundType.HUMAN_VOICE
    assert classifier.classify("[LAUGHTER]") is SoundType.ENVIRONMENTAL


@pytest.mark.parametrize(
    "text, expected",
    [
        ("[CLEARS THROAT]", SoundType.HUMAN_VOICE),
        ("[Singing]", SoundType.HUMAN_VOICE),
        ("[UNCLEAR]", SoundType.ENVIRONMENTAL),
        ("[CLEARS]", SoundType.ENVIRONMENTAL),
        ("[CLOSING DOOR]", SoundType.ENVIRONMENTAL),
        ("(passing car)", SoundType.ENVIRONMENTAL),
    ],
)
def test_vocal_patterns_match_whole_word_starts(classifier, text, expected):
    assert classifier.classify(text) is expected
