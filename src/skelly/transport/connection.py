"""BLE connection management."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from bleak import BleakClient, BleakScanner
from bleak_retry_connector import BleakClientWithServiceCache, establish_connection

from ..exceptions import BLEConnectionError, BLETimeoutError
from ..protocol.commands import NOTIFY_UUID, SERVICE_UUID, WRITE_UUID

if TYPE_CHECKING:
    from bleak.backends.characteristic import BleakGATTCharacteristic
    from bleak.backends.device import BLEDevice

_LOGGER = logging.getLogger(__name__)

FrameListener = Callable[[bytes], None]
DisconnectListener = Callable[[], None]

# Pause before retrying a failed write with the opposite write mode
WRITE_RETRY_DELAY = 0.1


class BLEConnection:
    """Manages BLE connection to a Skelly device.

    Features:
    - Automatic retry logic with bleak-retry-connector
    - Service caching for faster reconnections
    - Context manager for automatic cleanup
    - Frame and disconnect listeners for the protocol engine
    - Write mode chosen from characteristic properties, with one fallback retry
    """

    def __init__(
            self,
            mac_address: str,
            ble_device: BLEDevice | None = None,
            timeout: float = 10.0,
            max_attempts: int = 4,
            use_services_cache: bool = True,
    ):
        """Initialize BLE connection manager.

        Args:
            mac_address: Device MAC address
            ble_device: Optional BLEDevice from Home Assistant bluetooth integration
            timeout: Connection timeout in seconds (default: 10)
            max_attempts: Maximum connection attempts for bleak-retry-connector (default: 4)
            use_services_cache: Enable GATT service caching for faster reconnections (default: True)
        """
        self.mac_address = mac_address
        self.ble_device = ble_device
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.use_services_cache = use_services_cache

        self._client: BleakClient | None = None
        self._write_characteristic: BleakGATTCharacteristic | None = None
        self._notify_characteristic: BleakGATTCharacteristic | None = None
        self._frame_listeners: list[FrameListener] = []
        self._disconnect_listeners: list[DisconnectListener] = []

    async def __aenter__(self) -> BLEConnection:
        """Connect to device (context manager entry)."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect from device (context manager exit)."""
        await self.disconnect()

    async def connect(self) -> None:
        """Establish BLE connection to device.

        Uses bleak-retry-connector for automatic retry logic and service caching.

        Raises:
            BLEConnectionError: If connection fails
            BLETimeoutError: If connection times out
        """
        if self._client and self._client.is_connected:
            return  # Already connected

        try:
            _LOGGER.debug(
                "Connecting to %s with bleak-retry-connector (max_attempts=%d)",
                self.mac_address,
                self.max_attempts
            )

            if self.ble_device:
                device = self.ble_device
            else:
                device = await BleakScanner.find_device_by_address(
                    self.mac_address,
                    timeout=self.timeout
                )
                if device is None:
                    raise BLEConnectionError(
                        f"Device {self.mac_address} not found during scan"
                    )

            self._client = await establish_connection(
                client_class=BleakClientWithServiceCache,
                device=device,
                name=device.name or self.mac_address,
                disconnected_callback=self._on_disconnected,
                max_attempts=self.max_attempts,
                use_services_cache=self.use_services_cache,
                timeout=self.timeout,
            )

            _LOGGER.debug("Connected to %s", self.mac_address)

            await self._setup_characteristics()

        except asyncio.TimeoutError as e:
            raise BLETimeoutError(
                f"Connection timeout after {self.timeout}s"
            ) from e
        except BLEConnectionError:
            raise
        except Exception as e:
            raise BLEConnectionError(
                f"Failed to connect: {e}"
            ) from e

    async def disconnect(self) -> None:
        """Disconnect from device."""
        if self._client and self._client.is_connected:
            try:
                _LOGGER.debug("Disconnecting from %s", self.mac_address)
                if self._notify_characteristic is not None:
                    await self._client.stop_notify(self._notify_characteristic)
                await self._client.disconnect()
            except Exception as e:
                _LOGGER.warning("Error during disconnect: %s", e)
            finally:
                self._client = None
                self._write_characteristic = None
                self._notify_characteristic = None

    async def _setup_characteristics(self) -> None:
        """Resolve write/notify characteristics and start notifications.

        Raises:
            BLEConnectionError: If service/characteristic not found
        """
        if not self._client or not self._client.is_connected:
            raise BLEConnectionError("Not connected")

        service = self._client.services.get_service(SERVICE_UUID)
        if not service:
            raise BLEConnectionError(
                f"Service {SERVICE_UUID} not found"
            )

        self._write_characteristic = service.get_characteristic(WRITE_UUID)
        self._notify_characteristic = service.get_characteristic(NOTIFY_UUID)
        if self._write_characteristic is None or self._notify_characteristic is None:
            raise BLEConnectionError("Write/notify characteristics not found")

        await self._client.start_notify(
            self._notify_characteristic,
            self._notification_callback,
        )

        _LOGGER.debug("Notifications started")

    def _notification_callback(self, sender, data: bytearray) -> None:
        """Fan an incoming notification out to frame listeners."""
        frame = bytes(data)
        for listener in list(self._frame_listeners):
            try:
                listener(frame)
            except Exception:
                _LOGGER.exception("Frame listener failed")

    def _on_disconnected(self, client: BleakClient) -> None:
        _LOGGER.warning("Disconnected from %s", self.mac_address)
        self._client = None
        self._write_characteristic = None
        self._notify_characteristic = None
        for listener in list(self._disconnect_listeners):
            try:
                listener()
            except Exception:
                _LOGGER.exception("Disconnect listener failed")

    def add_frame_listener(self, listener: FrameListener) -> Callable[[], None]:
        """Subscribe to raw notification frames.

        Returns:
            Callable that removes the listener
        """
        self._frame_listeners.append(listener)

        def remove() -> None:
            if listener in self._frame_listeners:
                self._frame_listeners.remove(listener)

        return remove

    def add_disconnect_listener(self, listener: DisconnectListener) -> Callable[[], None]:
        """Subscribe to link loss.

        Returns:
            Callable that removes the listener
        """
        self._disconnect_listeners.append(listener)

        def remove() -> None:
            if listener in self._disconnect_listeners:
                self._disconnect_listeners.remove(listener)

        return remove

    def _choose_response(self, prefer_unacknowledged: bool) -> bool:
        """Pick write-with-response based on characteristic properties."""
        properties = self._write_characteristic.properties if self._write_characteristic else []
        supports_without = "write-without-response" in properties
        supports_with = "write" in properties

        if prefer_unacknowledged and supports_without:
            return False
        if supports_with:
            return True
        return not supports_without

    async def send(self, data: bytes, prefer_unacknowledged: bool = False) -> None:
        """Write one frame to the device.

        A failed write is retried once with the opposite write mode after a
        short pause.

        Args:
            data: Frame bytes to write
            prefer_unacknowledged: Use write-without-response when supported

        Raises:
            BLEConnectionError: If not connected or both write attempts fail
        """
        if not self._client or not self._client.is_connected:
            raise BLEConnectionError("Not connected")

        if not self._write_characteristic:
            raise BLEConnectionError("Write characteristic not set up")

        response = self._choose_response(prefer_unacknowledged)
        _LOGGER.debug("TX %s (response=%s)", data.hex().upper(), response)

        try:
            await self._client.write_gatt_char(self._write_characteristic, data, response=response)
            return
        except Exception as e:
            _LOGGER.warning("Write failed (response=%s), retrying: %s", response, e)

        await asyncio.sleep(WRITE_RETRY_DELAY)

        if not self._client or not self._client.is_connected:
            raise BLEConnectionError("Disconnected during write")

        try:
            await self._client.write_gatt_char(self._write_characteristic, data, response=not response)
        except Exception as e:
            raise BLEConnectionError(f"Write failed: {e}") from e

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to device."""
        return self._client is not None and self._client.is_connected
