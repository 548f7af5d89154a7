"""Correlation of outbound commands with their acknowledgement notifications."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ..exceptions import BLEConnectionError, BLETimeoutError
from .commands import hex_to_bytes

_LOGGER = logging.getLogger(__name__)


@dataclass(eq=False)
class _Waiter:
    prefix: bytes
    future: asyncio.Future[bytes]
    timer: asyncio.TimerHandle | None = None


class ResponseWaiters:
    """Pending expectations keyed by notification prefix.

    A frame resolves every waiter whose prefix it starts with, most recently
    registered first. Each waiter carries its own deadline.
    """

    def __init__(self) -> None:
        self._waiters: list[_Waiter] = []

    def __len__(self) -> int:
        return len(self._waiters)

    def register(self, prefix: bytes | str, timeout: float) -> asyncio.Future[bytes]:
        """Register interest in the next frame starting with prefix.

        Must be called before sending the command whose ack is expected, so
        a fast reply is not missed.

        Args:
            prefix: Notification prefix as bytes or hex string (e.g. "BBC0")
            timeout: Seconds until the future fails with BLETimeoutError

        Returns:
            Future resolved with the full frame. Cancelling it removes the waiter.
        """
        loop = asyncio.get_running_loop()
        waiter = _Waiter(prefix=hex_to_bytes(prefix), future=loop.create_future())
        waiter.timer = loop.call_later(timeout, self._expire, waiter, timeout)
        waiter.future.add_done_callback(lambda _: self._discard(waiter))
        self._waiters.append(waiter)
        return waiter.future

    async def wait_for(self, prefix: bytes | str, timeout: float) -> bytes:
        """Register a waiter and await it.

        Raises:
            BLETimeoutError: If no matching frame arrives in time
            BLEConnectionError: If waiters are cleared by a disconnect
        """
        return await self.register(prefix, timeout)

    def dispatch(self, frame: bytes) -> int:
        """Resolve every waiter matching the frame.

        Returns:
            Number of waiters resolved
        """
        resolved = 0
        for waiter in reversed(list(self._waiters)):
            if frame.startswith(waiter.prefix) and not waiter.future.done():
                waiter.future.set_result(frame)
                self._discard(waiter)
                resolved += 1
        return resolved

    def clear_all(self) -> None:
        """Fail all outstanding waiters (used on disconnect)."""
        pending = list(self._waiters)
        self._waiters.clear()
        for waiter in pending:
            if waiter.timer is not None:
                waiter.timer.cancel()
            if not waiter.future.done():
                waiter.future.set_exception(BLEConnectionError("Disconnected while waiting for response"))
        if pending:
            _LOGGER.debug("Cleared %d pending waiters", len(pending))

    def _expire(self, waiter: _Waiter, timeout: float) -> None:
        if not waiter.future.done():
            waiter.future.set_exception(
                BLETimeoutError(f"No {waiter.prefix.hex().upper()} response within {timeout}s")
            )
        self._discard(waiter)

    def _discard(self, waiter: _Waiter) -> None:
        if waiter.timer is not None:
            waiter.timer.cancel()
        if waiter in self._waiters:
            self._waiters.remove(waiter)
