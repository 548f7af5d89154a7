"""Transport contract consumed by the protocol engine."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class FrameTransport(Protocol):
    """Anything that can write command frames to a device."""

    @property
    def is_connected(self) -> bool:
        ...

    async def send(self, data: bytes, prefer_unacknowledged: bool = False) -> None:
        """Write one frame.

        Raises:
            BLEConnectionError: If not connected or the write fails
        """
        ...
