"""Chunked file transfer."""

from .engine import TransferEngine
from .pacing import PacingController
from .session import TransferResult, TransferSession

__all__ = [
    "PacingController",
    "TransferEngine",
    "TransferResult",
    "TransferSession",
]
