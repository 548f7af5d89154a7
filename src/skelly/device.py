"""Main Skelly BLE device class."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from .catalog import FileCatalog
from .config import TransferConfig
from .exceptions import BLEConnectionError, InvalidResponseError, ProtocolError
from .models.catalog import CatalogEntry
from .models.enums import (
    ACTION_ALL_ON,
    ALL_CHANNELS,
    LightMode,
    MovementContext,
    MovementPart,
    get_movement_code,
)
from .models.status import DeviceStatus
from .protocol.commands import (
    CommandTag,
    build_cancel_transfer_command,
    build_delete_file_command,
    build_enable_classic_bt_command,
    build_format_storage_command,
    build_frame,
    build_play_file_command,
    build_play_pause_command,
    build_query_command,
    build_set_action_command,
    build_set_brightness_command,
    build_set_eye_icon_command,
    build_set_light_mode_command,
    build_set_light_speed_command,
    build_set_rgb_command,
    build_set_volume_command,
)
from .protocol.correlation import ResponseWaiters
from .protocol.responses import (
    DeleteAck,
    FormatAck,
    Notification,
    NotificationKind,
    decode_as,
    decode_notification,
)
from .transfer import TransferEngine, TransferResult
from .transfer.engine import ProgressCallback
from .transport import BLEConnection

if TYPE_CHECKING:
    from bleak.backends.device import BLEDevice

_LOGGER = logging.getLogger(__name__)

NotificationListener = Callable[[Notification], None]


class SkellyDevice:
    """Skelly animatronic over BLE.

    Main API: owns the connection, the response waiters, the status snapshot,
    the file catalog and the transfer engine for one device session.

    Usage:
        async with SkellyDevice("AA:BB:CC:DD:EE:FF") as device:
            await device.set_volume(120)
            await device.wait_for_files()
            result = await device.upload_file(data, "hello.mp3")
    """

    TIMEOUT_ACK = 5.0
    TIMEOUT_FORMAT = 30.0
    PLAY_BY_NAME_TIMEOUT = 10.0
    PLAY_BY_NAME_POLL = 0.5

    def __init__(
            self,
            mac_address: str,
            ble_device: BLEDevice | None = None,
            timeout: float = 10.0,
            transfer_config: TransferConfig | None = None,
            connection: BLEConnection | None = None,
    ):
        """Initialize Skelly device.

        Args:
            mac_address: Device MAC address
            ble_device: Optional BLEDevice from HA bluetooth integration
            timeout: BLE connection timeout in seconds (default: 10)
            transfer_config: Upload tuning (default: profile for this platform)
            connection: Pre-built connection (mainly for tests)
        """
        self.mac_address = mac_address
        self._connection = connection or BLEConnection(mac_address, ble_device, timeout)
        self._waiters = ResponseWaiters()
        self._status = DeviceStatus()
        self._catalog = FileCatalog(self._connection)
        self._engine = TransferEngine(
            self._connection,
            self._waiters,
            transfer_config or TransferConfig.for_platform(),
        )
        self._listeners: list[NotificationListener] = []
        self._unsubscribe: list[Callable[[], None]] = []

    async def __aenter__(self) -> SkellyDevice:
        """Connect and start the initial catalog fetch."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect from device."""
        await self.disconnect()

    async def connect(self) -> None:
        """Connect, subscribe to notifications and fetch the file list.

        Raises:
            BLEConnectionError: If connection fails
            BLETimeoutError: If connection times out
        """
        await self._connection.connect()
        if not self._unsubscribe:
            self._unsubscribe = [
                self._connection.add_frame_listener(self._handle_frame),
                self._connection.add_disconnect_listener(self._handle_disconnect),
            ]
        _LOGGER.info("Connected to Skelly %s", self.mac_address)
        await self._catalog.start_fetch(trigger_followups=True)

    async def disconnect(self) -> None:
        """Disconnect and fail anything still waiting for a response."""
        self._engine.cancel()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        await self._connection.disconnect()
        self._handle_disconnect()

    @property
    def is_connected(self) -> bool:
        return self._connection.is_connected

    @property
    def status(self) -> DeviceStatus:
        """Latest device state seen in notifications."""
        return self._status

    @property
    def catalog(self) -> FileCatalog:
        return self._catalog

    @property
    def transfer_engine(self) -> TransferEngine:
        return self._engine

    def add_notification_listener(self, listener: NotificationListener) -> Callable[[], None]:
        """Subscribe to decoded notifications.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _handle_frame(self, frame: bytes) -> None:
        _LOGGER.debug("RX %s", frame.hex().upper())
        try:
            notification = decode_notification(frame)
        except InvalidResponseError as e:
            _LOGGER.warning("Ignoring malformed notification %s: %s", frame.hex().upper(), e)
            notification = None

        if notification is not None:
            self._status.apply(notification)
            self._catalog.handle_notification(notification)
            self._engine.handle_notification(notification)
            for listener in list(self._listeners):
                try:
                    listener(notification)
                except Exception:
                    _LOGGER.exception("Notification listener failed")

        self._waiters.dispatch(frame)

    def _handle_disconnect(self) -> None:
        self._waiters.clear_all()
        self._catalog.reset()

    def _require_connection(self) -> None:
        if not self._connection.is_connected:
            raise RuntimeError("Device not connected")

    async def _send(self, frame: bytes) -> None:
        self._require_connection()
        await self._connection.send(frame)

    async def _send_and_wait(self, kind: NotificationKind, frame: bytes, timeout: float) -> bytes:
        self._require_connection()
        future = self._waiters.register(kind.prefix, timeout)
        try:
            await self._connection.send(frame)
        except BaseException:
            future.cancel()
            raise
        return await future

    async def send_raw(self, tag: int, payload: bytes | str = b"", min_payload: int = 8) -> None:
        """Build and send an arbitrary command frame.

        Raises:
            MalformedFrameError: If payload is not valid hex
        """
        await self._send(build_frame(tag, payload, min_payload))

    async def query(self, tag: CommandTag) -> None:
        """Send a status query; the answer arrives as a notification."""
        await self._send(build_query_command(tag))

    async def query_all(self) -> None:
        """Query parameters, live state, volume, BT name and version."""
        for tag in (
            CommandTag.QUERY_DEVICE_PARAMS,
            CommandTag.QUERY_LIVE_MODE,
            CommandTag.QUERY_VOLUME,
            CommandTag.QUERY_BT_NAME,
            CommandTag.QUERY_VERSION,
        ):
            await self.query(tag)

    async def set_volume(self, volume: int) -> None:
        """Set speaker volume (0-255)."""
        await self._send(build_set_volume_command(volume))

    async def play(self) -> None:
        await self._send(build_play_pause_command(True))

    async def pause(self) -> None:
        await self._send(build_play_pause_command(False))

    async def enable_classic_bt(self) -> None:
        """Enable the classic Bluetooth audio sink."""
        await self._send(build_enable_classic_bt_command())

    async def set_light_mode(
            self,
            mode: LightMode,
            channel: int = ALL_CHANNELS,
            cluster: int = 0,
            name: str = "",
    ) -> None:
        await self._send(build_set_light_mode_command(mode, channel, cluster, name))

    async def set_brightness(
            self,
            brightness: int,
            channel: int = ALL_CHANNELS,
            cluster: int = 0,
            name: str = "",
    ) -> None:
        await self._send(build_set_brightness_command(brightness, channel, cluster, name))

    async def set_rgb(
            self,
            red: int,
            green: int,
            blue: int,
            channel: int = ALL_CHANNELS,
            loop: bool = False,
            cluster: int = 0,
            name: str = "",
    ) -> None:
        await self._send(build_set_rgb_command(red, green, blue, channel, loop, cluster, name))

    async def set_light_speed(
            self,
            speed: int,
            channel: int = ALL_CHANNELS,
            cluster: int = 0,
            name: str = "",
    ) -> None:
        await self._send(build_set_light_speed_command(speed, channel, cluster, name))

    async def cycle_colors(
            self,
            red: int,
            green: int,
            blue: int,
            brightness: int = 0xFF,
            cluster: int = 0,
            name: str = "",
    ) -> None:
        """Cycle all channels through every colour, starting at red/green/blue.

        Sends brightness, static mode, then RGB with the loop flag set.
        """
        await self.set_brightness(brightness, ALL_CHANNELS, cluster, name)
        await self.set_light_mode(LightMode.STATIC, ALL_CHANNELS, cluster, name)
        await self.set_rgb(red, green, blue, ALL_CHANNELS, True, cluster, name)

    async def set_eye_icon(self, eye: int, cluster: int = 0, name: str = "") -> None:
        """Set the eye icon (device eye number, see get_eye_number)."""
        await self._send(build_set_eye_icon_command(eye, cluster, name))

    async def set_action(self, action: int, cluster: int = 0, name: str = "") -> None:
        """Send a raw animation action code."""
        await self._send(build_set_action_command(action, cluster, name))

    async def set_movement(
            self,
            head: bool = True,
            arm: bool = True,
            torso: bool = True,
            context: MovementContext = MovementContext.LIVE,
            cluster: int = 0,
            name: str = "",
    ) -> None:
        """Switch animatronic parts on or off.

        All parts on is sent as a single all-on action. Otherwise one action
        per part is sent, in head, arm, torso order.
        """
        if context == MovementContext.LIVE:
            cluster, name = 0, ""

        if head and arm and torso:
            await self.set_action(ACTION_ALL_ON, cluster, name)
            return

        for part, enabled in (
            (MovementPart.HEAD, head),
            (MovementPart.ARM, arm),
            (MovementPart.TORSO, torso),
        ):
            await self.set_action(get_movement_code(context, part, enabled), cluster, name)

    async def play_file(self, serial: int) -> None:
        """Play a stored file by serial."""
        await self._send(build_play_file_command(serial, True))

    async def stop_file(self, serial: int) -> None:
        await self._send(build_play_file_command(serial, False))

    async def delete_file(self, entry: CatalogEntry, timeout: float | None = None) -> None:
        """Delete a stored file and refresh the catalog.

        Raises:
            ProtocolError: If the device reports the delete failed
            BLETimeoutError: If no acknowledgement arrives
        """
        frame = await self._send_and_wait(
            NotificationKind.DELETE_ACK,
            build_delete_file_command(entry.serial, entry.cluster),
            timeout or self.TIMEOUT_ACK,
        )
        if decode_as(frame, DeleteAck).failed:
            raise ProtocolError(f"Device failed to delete file {entry.name!r} (serial {entry.serial})")
        _LOGGER.info("Deleted %r (serial %d)", entry.name, entry.serial)
        await self.refresh_files()

    async def format_storage(self, timeout: float | None = None) -> int:
        """Erase every stored file.

        Returns:
            Status byte reported by the device
        """
        frame = await self._send_and_wait(
            NotificationKind.FORMAT_ACK,
            build_format_storage_command(),
            timeout or self.TIMEOUT_FORMAT,
        )
        status = decode_as(frame, FormatAck).status
        _LOGGER.info("Storage formatted (status=%d)", status)
        await self.refresh_files()
        return status

    async def refresh_files(self, trigger_followups: bool = False) -> None:
        """Start a new catalog fetch without waiting for it."""
        self._require_connection()
        await self._catalog.start_fetch(trigger_followups)

    async def wait_for_files(self, timeout: float | None = None) -> bool:
        """Wait for the running catalog fetch to finish."""
        return await self._catalog.wait_complete(timeout)

    async def fetch_files(self, timeout: float | None = None) -> list[CatalogEntry]:
        """Fetch the catalog and return it (possibly partial if the fetch timed out)."""
        await self.refresh_files()
        if not await self._catalog.wait_complete(timeout):
            _LOGGER.warning("File list incomplete (%s)", self._catalog.state.name)
        return self._catalog.entries

    @property
    def files(self) -> list[CatalogEntry]:
        """Catalog entries from the latest fetch, sorted by serial."""
        return self._catalog.entries

    def find_file(self, name: str) -> CatalogEntry | None:
        return self._catalog.find_by_name(name)

    async def upload_file(
            self,
            data: bytes,
            filename: str,
            progress_callback: ProgressCallback | None = None,
    ) -> TransferResult:
        """Upload an audio file and refresh the catalog.

        Args:
            data: File contents
            filename: Name to store the file under
            progress_callback: Called with (chunks done, chunk count)

        Returns:
            TransferResult

        Raises:
            RuntimeError: If not connected or an upload is already running
            TransferError: If the transfer fails
        """
        self._require_connection()
        existing = self._catalog.find_by_name(filename)
        if existing is not None:
            _LOGGER.warning(
                "A file named %r already exists (serial %d); the device may keep both",
                existing.name,
                existing.serial,
            )

        result = await self._engine.upload(data, filename, progress_callback)
        if self._connection.is_connected:
            await self.refresh_files()
        return result

    async def replace_file(
            self,
            entry: CatalogEntry,
            data: bytes,
            progress_callback: ProgressCallback | None = None,
    ) -> TransferResult:
        """Upload new contents under an existing entry's name."""
        if not entry.name:
            raise ValueError(f"Catalog entry {entry.serial} has no name")
        self._require_connection()
        result = await self._engine.upload(data, entry.name, progress_callback)
        if self._connection.is_connected:
            await self.refresh_files()
        return result

    async def cancel_upload(self) -> bool:
        """Cancel a running upload and tell the device to abort it.

        Returns:
            True if an upload was running
        """
        if not self._engine.cancel():
            return False
        if self._connection.is_connected:
            try:
                await self._connection.send(build_cancel_transfer_command())
            except BLEConnectionError as e:
                _LOGGER.warning("Failed to send cancel command: %s", e)
        return True

    async def play_file_by_name(self, name: str, timeout: float | None = None) -> CatalogEntry | None:
        """Re-fetch the catalog, wait for name to appear, then play it.

        Returns:
            The entry played, or None if it never appeared
        """
        await self.refresh_files(trigger_followups=True)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout or self.PLAY_BY_NAME_TIMEOUT)
        entry = self._catalog.find_by_name(name)
        while entry is None and loop.time() < deadline:
            await asyncio.sleep(self.PLAY_BY_NAME_POLL)
            entry = self._catalog.find_by_name(name)

        if entry is None:
            _LOGGER.warning("File %r not found on device", name)
            return None

        _LOGGER.info("Playing %r (serial %d)", entry.name, entry.serial)
        await self.play_file(entry.serial)
        return entry
