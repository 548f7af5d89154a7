"""Transfer tuning configuration."""

from __future__ import annotations

import sys
from dataclasses import dataclass


def _check_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


def _check_non_negative(name: str, value: float) -> None:
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")


@dataclass(frozen=True, slots=True)
class TransferConfig:
    """Pacing, timeouts and retry bounds for chunked file uploads.

    Durations are in seconds.

    Attributes:
        chunk_size: Data bytes per C1 chunk (max 65535 chunks per file)
        chunk_interval: Baseline pause between chunks
        adaptive_pacing: Tighten pacing on clean streaks, back off on retransmits
        pacing_floor: Lowest adaptive interval
        pacing_ceiling: Highest adaptive interval
        pacing_decrease_step: Interval reduction per clean streak
        pacing_increase_step: Interval increase per retransmit
        pacing_clean_streak: Clean chunks needed before tightening
        chunks_unacknowledged: Prefer write-without-response for chunks
        first_chunk_acknowledged: Force write-with-response for chunk 0
        start_delay: Debounce before sending the start command
        pre_end_settle: Pause before the first end command
        start_timeout: Wait for the start acknowledgement
        end_ack_timeout: Per-attempt wait for the end acknowledgement
        max_end_attempts: Bound on end-phase waits
        max_chunk_resends: Bound on resends of a chunk named by a drop notice
        retransmit_ack_timeout: Wait after each end-phase chunk resend
        end_recovery_window: Drop-notice listening window after a failed end ack
            (0 disables recovery)
        end_recovery_poll: Poll interval inside the recovery window
        final_end_timeout: Wait for the end ack after the recovery resend
        commit_settle: Pause before the commit command
        commit_timeout: Wait for the commit acknowledgement
        max_retransmit_rounds: Bound on mid-stream retransmit drains
    """

    chunk_size: int = 500
    chunk_interval: float = 0.05
    adaptive_pacing: bool = False
    pacing_floor: float = 0.08
    pacing_ceiling: float = 0.25
    pacing_decrease_step: float = 0.01
    pacing_increase_step: float = 0.02
    pacing_clean_streak: int = 20
    chunks_unacknowledged: bool = True
    first_chunk_acknowledged: bool = False
    start_delay: float = 0.0
    pre_end_settle: float = 0.0
    start_timeout: float = 5.0
    end_ack_timeout: float = 5.0
    max_end_attempts: int = 100
    max_chunk_resends: int = 6
    retransmit_ack_timeout: float = 1.5
    end_recovery_window: float = 4.0
    end_recovery_poll: float = 1.0
    final_end_timeout: float = 10.0
    commit_settle: float = 0.2
    commit_timeout: float = 15.0
    max_retransmit_rounds: int = 100

    def __post_init__(self) -> None:
        if not 1 <= self.chunk_size <= 0xFFFF:
            raise ValueError(f"chunk_size out of range: {self.chunk_size} (must be 1-65535)")
        if self.pacing_floor > self.pacing_ceiling:
            raise ValueError(
                f"pacing_floor ({self.pacing_floor}) exceeds pacing_ceiling ({self.pacing_ceiling})"
            )
        for name in (
            "chunk_interval",
            "pacing_floor",
            "pacing_decrease_step",
            "pacing_increase_step",
            "start_delay",
            "pre_end_settle",
            "end_recovery_window",
            "commit_settle",
        ):
            _check_non_negative(name, getattr(self, name))
        for name in (
            "pacing_ceiling",
            "start_timeout",
            "end_ack_timeout",
            "retransmit_ack_timeout",
            "end_recovery_poll",
            "final_end_timeout",
            "commit_timeout",
        ):
            _check_positive(name, getattr(self, name))
        for name in ("pacing_clean_streak", "max_end_attempts", "max_chunk_resends", "max_retransmit_rounds"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")

    @classmethod
    def conservative(cls) -> TransferConfig:
        """Slower profile for stacks that drop unacknowledged writes (macOS)."""
        return cls(
            chunk_size=160,
            chunk_interval=0.15,
            adaptive_pacing=True,
            chunks_unacknowledged=False,
            first_chunk_acknowledged=True,
            start_delay=0.075,
            pre_end_settle=0.5,
            end_ack_timeout=8.0,
        )

    @classmethod
    def for_platform(cls, platform: str | None = None) -> TransferConfig:
        """Pick the profile suited to the host BLE stack."""
        platform = sys.platform if platform is None else platform
        if platform == "darwin":
            return cls.conservative()
        return cls()
