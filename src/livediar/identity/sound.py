from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from enum import Enum

HUMAN_VOICE_PATTERNS: tuple[str, ...] = (
    "laugh", "chuckle", "giggle", "cough", "sigh", "sneeze", "cry", "sob",
    "scream", "groan", "moan", "yawn", "gasp", "breath", "hum", "whistle",
    "sing", "throat", "hiccup", "snore", "sniff", "whimper",
)

ENVIRONMENTAL_PATTERNS: tuple[str, ...] = (
    "blank", "music", "noise", "applause", "silence", "static", "beep",
    "ring", "click", "bang", "crash", "thunder", "rain", "wind", "door",
    "phone", "alarm", "siren", "horn", "engine", "background",
)

_BRACKETED = re.compile(r"^(\[.*\]|\(.*\))$")
_BLANK = re.compile(r"^\[BLANK|^AUDIO\]$", re.IGNORECASE)
_TOKEN = re.compile(r"\[[^\]]*\]|\([^)]*\)|\S+")


class SoundType(str, Enum):
    SPEECH = "speech"
    HUMAN_VOICE = "human_voice"
    ENVIRONMENTAL = "environmental"
    BLANK = "blank"


class SoundClassifier:
    """Classify transcript markers so non-speech phrases skip speaker clustering.

    Bracketed markers such as ``[MUSIC]`` are environmental unless they name a
    human vocal sound (``[LAUGHTER]``), which stays attributable to a speaker.
    Unrecognised bracketed markers default to environmental.
    """

    def __init__(
        self,
        human_voice_patterns: Sequence[str] | None = None,
        environmental_patterns: Sequence[str] | None = None,
    ):
        self.human_voice_patterns = tuple(human_voice_patterns or HUMAN_VOICE_PATTERNS)
        self.environmental_patterns = tuple(environmental_patterns or ENVIRONMENTAL_PATTERNS)
        # Patterns match at the start of a word: "[COUGHS]" but not "[UNCLEAR]".
        self._human_voice = re.compile(
            r"\b(?:" + "|".join(re.escape(p) for p in self.human_voice_patterns) + ")",
            re.IGNORECASE,
        )

    @staticmethod
    def is_bracketed_marker(text: str | None) -> bool:
        return bool(text) and bool(_BRACKETED.match(text.strip()))

    def is_human_voice_sound(self, text: str | None) -> bool:
        if not text:
            return False
        return bool(self._human_voice.search(text))

    def is_environmental_sound(self, text: str | None) -> bool:
        if not text or not self.is_bracketed_marker(text):
            return False
        return not self.is_human_voice_sound(text)

    @staticmethod
    def is_blank_audio(text: str | None) -> bool:
        return bool(text) and bool(_BLANK.search(text.strip()))

    def classify(self, text: str | None) -> SoundType:
        if not text or self.is_blank_audio(text):
            return SoundType.BLANK
        if not self.is_bracketed_marker(text):
            return SoundType.SPEECH
        if self.is_human_voice_sound(text):
            return SoundType.HUMAN_VOICE
        return SoundType.ENVIRONMENTAL

    def categorize_words(self, words: Iterable[str] | None) -> SoundType:
        """Phrase-level category: blank, environmental or speech."""

        tokens = [w.strip() for w in words or () if w and w.strip()]
        if not tokens or all(self.is_blank_audio(t) for t in tokens):
            return SoundType.BLANK
        if all(self.is_environmental_sound(t) for t in tokens):
            return SoundType.ENVIRONMENTAL
        return SoundType.SPEECH

    def categorize_text(self, text: str | None) -> SoundType:
        if text is None:
            return SoundType.SPEECH
        return self.categorize_words(_TOKEN.findall(text))


__all__ = [
    "SoundClassifier",
    "SoundType",
    "HUMAN_VOICE_PATTERNS",
    "ENVIRONMENTAL_PATTERNS",
]
