"""Per-upload transfer state."""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field

from ..models.enums import TransferPhase
from ..protocol.commands import build_chunk_payload

_LOGGER = logging.getLogger(__name__)

# Phases during which device drop notices are queued for retransmission
_ACCEPTS_DROPS = (TransferPhase.STREAMING, TransferPhase.RETRANSMITTING)


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a completed upload."""

    filename: str
    bytes_total: int
    chunk_count: int
    chunks_sent: int
    retransmits: int
    start_index: int
    elapsed: float
    phases: tuple[TransferPhase, ...]

    @property
    def throughput(self) -> float:
        """Average throughput in KB/s."""
        if self.elapsed <= 0:
            return 0.0
        return self.bytes_total / 1024 / self.elapsed


@dataclass
class TransferSession:
    """State of one in-flight upload.

    Mutated both by the engine task and by synchronous notification dispatch,
    so the notification-side methods only set flags or append to the queue.
    """

    data: bytes
    filename: str
    chunk_size: int
    phase: TransferPhase = TransferPhase.IDLE
    phase_history: list[TransferPhase] = field(default_factory=list)
    chunk_cache: dict[int, bytes] = field(default_factory=dict)
    retransmit_queue: deque[int] = field(default_factory=deque)
    end_failed_mid_stream: bool = False
    cancelled: bool = False
    resume_redirect: int | None = None
    start_index: int = 0
    chunks_sent: int = 0
    retransmits: int = 0
    drain_rounds: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def total_length(self) -> int:
        return len(self.data)

    @property
    def chunk_count(self) -> int:
        return math.ceil(len(self.data) / self.chunk_size)

    def set_phase(self, phase: TransferPhase) -> None:
        if phase == self.phase:
            return
        _LOGGER.info("Transfer %s: %s -> %s", self.filename, self.phase.name, phase.name)
        self.phase = phase
        self.phase_history.append(phase)

    def chunk_payload(self, index: int) -> bytes:
        """Serialize and cache chunk [index:2][exact slice]."""
        start = index * self.chunk_size
        payload = build_chunk_payload(index, self.data[start:start + self.chunk_size])
        self.chunk_cache[index] = payload
        return payload

    def queue_retransmit(self, index: int) -> bool:
        """Queue a dropped chunk if drops are currently being collected."""
        if self.phase not in _ACCEPTS_DROPS:
            return False
        self.retransmit_queue.append(index)
        return True

    def take_retransmits(self) -> list[int]:
        """Drain the queue in FIFO order, dropping repeats within the pass."""
        seen: set[int] = set()
        ordered: list[int] = []
        while self.retransmit_queue:
            index = self.retransmit_queue.popleft()
            if index not in seen:
                seen.add(index)
                ordered.append(index)
        return ordered

    def request_resume(self, bytes_written: int) -> None:
        self.resume_redirect = bytes_written // self.chunk_size

    def discard(self) -> None:
        """Drop cached chunks and queued work."""
        self.chunk_cache.clear()
        self.retransmit_queue.clear()

    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def to_result(self) -> TransferResult:
        return TransferResult(
            filename=self.filename,
            bytes_total=self.total_length,
            chunk_count=self.chunk_count,
            chunks_sent=self.chunks_sent,
            retransmits=self.retransmits,
            start_index=self.start_index,
            elapsed=self.elapsed(),
            phases=tuple(self.phase_history),
        )
