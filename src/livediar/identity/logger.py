from __future__ import annotations

import logging

logger = logging.getLogger("livediar.identity")
if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(_handler)
logger.setLevel(logging.INFO)


def set_verbose(enabled: bool) -> None:
    """Emit per-decision DEBUG records (one line per utterance) when enabled."""

    logger.setLevel(logging.DEBUG if enabled else logging.INFO)


__all__ = ["logger", "set_verbose"]
