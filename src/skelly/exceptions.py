"""Exception hierarchy for the Skelly BLE protocol package."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models.enums import TransferPhase


class SkellyError(Exception):
    """Base exception for all Skelly errors."""


class BLEConnectionError(SkellyError):
    """Transport is not connected, was lost, or a write failed."""


class BLETimeoutError(SkellyError):
    """An expected notification did not arrive before its deadline."""


class ProtocolError(SkellyError):
    """Device reported a failure or sent something we cannot use."""


class InvalidResponseError(ProtocolError):
    """Notification frame is shorter than its layout requires."""


class MalformedFrameError(ProtocolError):
    """Command frame could not be encoded or decoded (bad hex, bad checksum)."""


class TransferError(SkellyError):
    """File transfer failed.

    Attributes:
        phase: Transfer phase that was active when the failure occurred
        chunk_index: Chunk involved in the failure, if any
    """

    def __init__(
            self,
            message: str,
            phase: TransferPhase,
            chunk_index: int | None = None,
    ):
        super().__init__(message)
        self.phase = phase
        self.chunk_index = chunk_index

    def __str__(self) -> str:
        base = super().__str__()
        if self.chunk_index is not None:
            return f"{base} (phase={self.phase.name}, chunk={self.chunk_index})"
        return f"{base} (phase={self.phase.name})"


class TransferRejectedError(TransferError):
    """Device explicitly flagged a transfer phase as failed."""


class TransferMalformedError(TransferError):
    """Device answered a transfer phase with a frame that could not be decoded."""


class TransferTimeoutError(TransferError):
    """No acknowledgement within the bounded number of attempts."""


class TransferCancelledError(TransferError):
    """Caller cancelled the transfer."""


class TransferDisconnectedError(TransferError):
    """Transport was lost during the transfer."""
