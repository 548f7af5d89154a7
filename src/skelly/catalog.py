"""Aggregation of per-file catalog notifications into a file list."""

from __future__ import annotations

import asyncio
import logging

from .exceptions import BLEConnectionError
from .models.catalog import CatalogEntry, normalize_name
from .models.enums import CatalogState
from .protocol.commands import CommandTag, build_query_command
from .protocol.responses import CatalogEntryReport, Notification
from .transport.base import FrameTransport

_LOGGER = logging.getLogger(__name__)

# Seconds without a new entry before a fetch is considered stalled
CATALOG_IDLE_TIMEOUT = 6.0

# Queries sent once the catalog is complete, with their offsets in seconds
FOLLOWUP_QUERIES: tuple[tuple[CommandTag, float], ...] = (
    (CommandTag.QUERY_FILE_ORDER, 0.0),
    (CommandTag.QUERY_LIVE_MODE, 0.1),
    (CommandTag.QUERY_VOLUME, 0.2),
    (CommandTag.QUERY_CAPACITY, 0.3),
)


class FileCatalog:
    """Builds the stored-file list from a D0 query.

    The device answers one D0 query with one BBD0 notification per file,
    each declaring the total file count. The catalog is complete once that
    many distinct serials have been seen. If entries stop arriving for
    idle_timeout seconds first, the fetch ends as TIMED_OUT.
    """

    def __init__(self, transport: FrameTransport, idle_timeout: float = CATALOG_IDLE_TIMEOUT):
        self._transport = transport
        self.idle_timeout = idle_timeout
        self._entries: dict[int, CatalogEntry] = {}
        self._expected = 0
        self._state = CatalogState.IDLE
        self._trigger_followups = False
        self._followups_sent = False
        self._timer: asyncio.TimerHandle | None = None
        self._followup_task: asyncio.Task[None] | None = None
        self._done: asyncio.Event = asyncio.Event()

    @property
    def state(self) -> CatalogState:
        return self._state

    @property
    def expected_count(self) -> int:
        """File count declared by the device in the current cycle."""
        return self._expected

    @property
    def entries(self) -> list[CatalogEntry]:
        """Entries sorted by serial."""
        return [self._entries[serial] for serial in sorted(self._entries)]

    def find_by_name(self, name: str) -> CatalogEntry | None:
        """Find an entry by trimmed, case-insensitive name."""
        target = normalize_name(name)
        if not target:
            return None
        for entry in self.entries:
            if entry.normalized_name == target:
                return entry
        return None

    async def start_fetch(self, trigger_followups: bool = False) -> None:
        """Clear the catalog and send a new D0 query.

        Args:
            trigger_followups: Send play order, live state, volume and capacity
                queries once the catalog completes

        Raises:
            BLEConnectionError: If the query cannot be sent
        """
        self._cancel_timer()
        self._cancel_followups()
        self._entries.clear()
        self._expected = 0
        self._trigger_followups = trigger_followups
        self._followups_sent = False
        self._done.clear()
        self._state = CatalogState.FETCHING

        _LOGGER.debug("Fetching file catalog")
        try:
            await self._transport.send(build_query_command(CommandTag.QUERY_FILE_LIST))
        except BLEConnectionError:
            self._finish(CatalogState.IDLE)
            raise
        self._arm_timer()

    async def wait_complete(self, timeout: float | None = None) -> bool:
        """Wait until the current fetch ends.

        Returns:
            True if the catalog completed, False if it timed out or was reset
        """
        if self._state == CatalogState.FETCHING:
            try:
                await asyncio.wait_for(self._done.wait(), timeout)
            except asyncio.TimeoutError:
                return False
        return self._state == CatalogState.COMPLETE

    def handle_notification(self, notification: Notification) -> None:
        """Upsert catalog entries; ignores everything else."""
        if not isinstance(notification, CatalogEntryReport):
            return

        entry = notification.entry
        self._entries[entry.serial] = entry
        if entry.total:
            self._expected = entry.total
        _LOGGER.debug(
            "Catalog entry serial=%d name=%r (%d/%d)",
            entry.serial,
            entry.name,
            len(self._entries),
            self._expected,
        )

        if self._state != CatalogState.FETCHING:
            return

        if self._expected and len(self._entries) >= self._expected:
            _LOGGER.info("File catalog complete: %d files", len(self._entries))
            self._finish(CatalogState.COMPLETE)
            if self._trigger_followups and not self._followups_sent:
                self._followups_sent = True
                self._followup_task = asyncio.get_running_loop().create_task(self._send_followups())
        else:
            self._arm_timer()

    def reset(self) -> None:
        """Forget all entries and stop any fetch (used on disconnect)."""
        self._cancel_timer()
        self._cancel_followups()
        self._entries.clear()
        self._expected = 0
        self._finish(CatalogState.IDLE)

    def _arm_timer(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().call_later(self.idle_timeout, self._on_idle_timeout)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_followups(self) -> None:
        if self._followup_task is not None and not self._followup_task.done():
            self._followup_task.cancel()
        self._followup_task = None

    def _on_idle_timeout(self) -> None:
        self._timer = None
        if self._state != CatalogState.FETCHING:
            return
        _LOGGER.warning(
            "File catalog fetch timed out with %d/%d entries",
            len(self._entries),
            self._expected,
        )
        self._finish(CatalogState.TIMED_OUT)

    def _finish(self, state: CatalogState) -> None:
        self._cancel_timer()
        self._state = state
        self._done.set()

    async def _send_followups(self) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        for tag, offset in FOLLOWUP_QUERIES:
            delay = started + offset - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            if not self._transport.is_connected:
                return
            try:
                await self._transport.send(build_query_command(tag))
            except BLEConnectionError as e:
                _LOGGER.warning("Follow-up query %s failed: %s", tag.name, e)
                return
