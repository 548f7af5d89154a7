"""Adaptive inter-chunk pacing."""

from __future__ import annotations

import logging

from ..config import TransferConfig

_LOGGER = logging.getLogger(__name__)


class PacingController:
    """Tracks the pause between chunk writes.

    With adaptive pacing the interval drops by one step after every streak of
    clean chunks (never below the floor) and rises by one step per retransmit
    (never above the ceiling). A retransmit resets the clean streak. Without
    adaptive pacing the interval stays at the baseline.
    """

    def __init__(self, config: TransferConfig):
        self._config = config
        self._interval = config.chunk_interval
        self._clean = 0

    @property
    def interval(self) -> float:
        """Current pause between chunks in seconds."""
        return self._interval

    @property
    def adaptive(self) -> bool:
        return self._config.adaptive_pacing

    def on_clean(self) -> None:
        """Record a chunk sent without incident."""
        if not self.adaptive:
            return
        self._clean += 1
        if self._clean < self._config.pacing_clean_streak:
            return
        self._clean = 0
        new_interval = max(self._config.pacing_floor, self._interval - self._config.pacing_decrease_step)
        if new_interval < self._interval:
            _LOGGER.info("Pacing tightened: %.0f ms -> %.0f ms", self._interval * 1000, new_interval * 1000)
            self._interval = new_interval

    def on_retransmit(self) -> None:
        """Record a retransmit request and back off."""
        if not self.adaptive:
            return
        self._clean = 0
        new_interval = min(self._config.pacing_ceiling, self._interval + self._config.pacing_increase_step)
        if new_interval > self._interval:
            _LOGGER.info("Pacing backed off: %.0f ms -> %.0f ms", self._interval * 1000, new_interval * 1000)
            self._interval = new_interval
