"""One engine per input channel, each serialised behind its own lock.

Decisions are order dependent, so every channel's utterances must be applied
one at a time.  Channels are independent of each other; the only shared state
is the enrolled-speaker snapshot, which is copied into each engine before it
sees its first utterance.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from typing import Any

from .config import ClusteringConfig, UnknownClusteringConfig
from .engine import SpeakerClusteringEngine
from .logger import logger
from .models import AssignmentDecision
from .unknown import UnknownSpeakerClusterer


class ChannelEngines:
    """Manage per-channel engines and enrolled-set propagation."""

    def __init__(
        self,
        config: ClusteringConfig | None = None,
        unknown_config: UnknownClusteringConfig | None = None,
    ):
        self.config = config or ClusteringConfig()
        self.unknown_config = unknown_config or UnknownClusteringConfig()
        self._lock = threading.RLock()
        self._engines: dict[str, SpeakerClusteringEngine] = {}
        self._channel_locks: dict[str, threading.RLock] = {}
        self._enrolled: list[dict[str, Any]] = []

    @property
    def channels(self) -> list[str]:
        with self._lock:
            return list(self._engines)

    def engine(self, channel: str) -> SpeakerClusteringEngine:
        """Return the engine for ``channel``, creating it from the current snapshot."""

        with self._lock:
            engine = self._engines.get(channel)
            if engine is None:
                engine = SpeakerClusteringEngine(
                    ClusteringConfig.from_mapping(self.config.to_dict()),
                    unknown_clusterer=UnknownSpeakerClusterer(
                        UnknownClusteringConfig.from_mapping(self.unknown_config.to_dict())
                    ),
                )
                if self._enrolled:
                    engine.import_enrolled_speakers(self._enrolled)
                self._engines[channel] = engine
                self._channel_locks[channel] = threading.RLock()
                logger.info(
                    "Channel %s engine created with %d enrolled speakers",
                    channel,
                    len(self._enrolled),
                )
            return engine

    def assign_speaker(self, channel: str, embedding: Any) -> AssignmentDecision:
        engine = self.engine(channel)
        with self._channel_locks[channel]:
            return engine.assign_speaker(embedding)

    def set_enrolled(self, entries: Iterable[Mapping[str, Any]]) -> None:
        """Store a new enrolled snapshot and copy it into every existing engine."""

        payload = [dict(entry) for entry in entries]
        with self._lock:
            self._enrolled = payload
            targets = list(self._engines.items())
        for channel, engine in targets:
            with self._channel_locks[channel]:
                engine.import_enrolled_speakers(payload)

    def propagate_from(self, channel: str) -> None:
        """Use ``channel``'s enrolled set as the snapshot for all channels."""

        source = self.engine(channel)
        with self._channel_locks[channel]:
            payload = source.export_enrolled_speakers()
        self.set_enrolled(payload)

    def enrolled_snapshot(self) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(entry) for entry in self._enrolled]

    def reset(self, preserve_enrolled: bool = True) -> None:
        with self._lock:
            targets = list(self._engines.items())
        for channel, engine in targets:
            with self._channel_locks[channel]:
                engine.reset(preserve_enrolled=preserve_enrolled)


__all__ = ["ChannelEngines"]
