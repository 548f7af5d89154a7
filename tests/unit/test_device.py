"""Test SkellyDevice command routing with an injected connection."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from skelly.config import TransferConfig
from skelly.device import SkellyDevice
from skelly.exceptions import BLEConnectionError, ProtocolError, TransferCancelledError
from skelly.models.catalog import CatalogEntry
from skelly.models.enums import CatalogState, LightMode, MovementContext
from skelly.protocol.commands import CommandTag, crc8, parse_command_frame
from skelly.protocol.responses import VolumeReport


def _notify(hex_body: str) -> bytes:
    body = bytes.fromhex(hex_body)
    return body + bytes([crc8(body)])


def catalog_entry_frame(serial: int, total: int, name: str) -> bytes:
    header = b"\xBB\xD0" + serial.to_bytes(2, "big") + b"\x00\x00\x00\x09" + total.to_bytes(2, "big")
    body = header.ljust(55, b"\x00") + bytes([1, serial]) + b"\x5c\x55" + name.encode("utf-16-le")
    return body + bytes([crc8(body)])


class _FakeConnection:
    """Records written frames and answers from per-tag handlers."""

    def __init__(self) -> None:
        self.connected = False
        self.written: list[bytes] = []
        self.handlers: dict[int, Callable[[bytes], list[bytes]]] = {}
        self._frame_listeners: list[Callable[[bytes], None]] = []
        self._disconnect_listeners: list[Callable[[], None]] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def add_frame_listener(self, listener):
        self._frame_listeners.append(listener)
        return lambda: self._frame_listeners.remove(listener)

    def add_disconnect_listener(self, listener):
        self._disconnect_listeners.append(listener)
        return lambda: self._disconnect_listeners.remove(listener)

    async def send(self, data: bytes, prefer_unacknowledged: bool = False) -> None:
        if not self.connected:
            raise BLEConnectionError("Not connected")
        self.written.append(data)
        handler = self.handlers.get(data[1])
        if handler is not None:
            loop = asyncio.get_running_loop()
            for reply in handler(data):
                loop.call_soon(self.emit, reply)

    def emit(self, frame: bytes) -> None:
        for listener in list(self._frame_listeners):
            listener(frame)

    def drop(self) -> None:
        self.connected = False
        for listener in list(self._disconnect_listeners):
            listener()

    @property
    def tags(self) -> list[int]:
        return [parse_command_frame(frame).tag for frame in self.written]

    def payloads(self, tag: int) -> list[bytes]:
        return [parse_command_frame(f).payload for f in self.written if f[1] == tag]


def _device(fake: _FakeConnection) -> SkellyDevice:
    return SkellyDevice("AA:BB:CC:DD:EE:FF", connection=fake, transfer_config=TransferConfig())


async def _connected() -> tuple[SkellyDevice, _FakeConnection]:
    fake = _FakeConnection()
    device = _device(fake)
    await device.connect()
    fake.written.clear()
    return device, fake


class TestLifecycle:
    """Test connect and disconnect handling."""

    @pytest.mark.asyncio
    async def test_connect_starts_catalog_fetch(self):
        fake = _FakeConnection()
        device = _device(fake)

        await device.connect()

        assert device.is_connected
        assert fake.tags == [CommandTag.QUERY_FILE_LIST]
        assert device.catalog.state == CatalogState.FETCHING
        await device.disconnect()
        assert device.catalog.state == CatalogState.IDLE

    @pytest.mark.asyncio
    async def test_context_manager(self):
        fake = _FakeConnection()
        async with _device(fake) as device:
            assert device.is_connected
        assert not fake.connected

    @pytest.mark.asyncio
    async def test_commands_require_connection(self):
        device = _device(_FakeConnection())
        with pytest.raises(RuntimeError, match="not connected"):
            await device.set_volume(10)

    @pytest.mark.asyncio
    async def test_link_loss_fails_pending_waits(self):
        device, fake = await _connected()
        entry = CatalogEntry(serial=1, cluster=9, total=1, length=0, attr=0, eye_icon=1, position=1)
        fake.handlers[CommandTag.DELETE_FILE] = lambda frame: []

        task = asyncio.create_task(device.delete_file(entry))
        await asyncio.sleep(0.01)
        fake.drop()

        with pytest.raises(BLEConnectionError):
            await task
        assert device.catalog.state == CatalogState.IDLE


class TestSettings:
    """Test fire-and-forget setting commands."""

    @pytest.mark.asyncio
    async def test_volume_frame(self):
        device, fake = await _connected()
        await device.set_volume(100)
        assert fake.payloads(CommandTag.SET_VOLUME) == [b"\x64" + b"\x00" * 7]
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_query_all_order(self):
        device, fake = await _connected()
        await device.query_all()
        assert fake.tags == [
            CommandTag.QUERY_DEVICE_PARAMS,
            CommandTag.QUERY_LIVE_MODE,
            CommandTag.QUERY_VOLUME,
            CommandTag.QUERY_BT_NAME,
            CommandTag.QUERY_VERSION,
        ]
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_cycle_colors_sequence(self):
        device, fake = await _connected()
        await device.cycle_colors(255, 0, 0)
        assert fake.tags == [CommandTag.SET_BRIGHTNESS, CommandTag.SET_LIGHT_MODE, CommandTag.SET_RGB]
        assert fake.payloads(CommandTag.SET_LIGHT_MODE)[0][1] == LightMode.STATIC
        assert fake.payloads(CommandTag.SET_RGB)[0][:5] == b"\xFF\xFF\x00\x00\x01"
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_all_parts_on_is_single_action(self):
        device, fake = await _connected()
        await device.set_movement()
        assert [p[0] for p in fake.payloads(CommandTag.SET_ACTION)] == [0xFF]
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_partial_movement_live(self):
        """Live mode ignores the file context and uses live torso codes."""
        device, fake = await _connected()
        await device.set_movement(head=True, arm=False, torso=True, cluster=5, name="x")
        payloads = fake.payloads(CommandTag.SET_ACTION)
        assert [p[0] for p in payloads] == [1, 4, 6]
        assert all(p[1:8] == b"\x00" * 7 for p in payloads)
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_partial_movement_file(self):
        device, fake = await _connected()
        await device.set_movement(head=False, arm=True, torso=True, context=MovementContext.FILE, cluster=5)
        assert [p[0] for p in fake.payloads(CommandTag.SET_ACTION)] == [2, 3, 7]
        await device.disconnect()


class TestNotifications:
    """Test notification fan-out."""

    @pytest.mark.asyncio
    async def test_status_and_listener(self):
        device, fake = await _connected()
        seen = []
        remove = device.add_notification_listener(seen.append)

        fake.emit(_notify("BBE550"))
        remove()
        fake.emit(_notify("BBE560"))

        assert device.status.volume == 0x60
        assert seen == [VolumeReport(raw=_notify("BBE550"), volume=0x50)]
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_malformed_notification_ignored(self):
        device, fake = await _connected()
        fake.emit(b"\xBB\xC0\x00")
        assert device.status.volume is None
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self):
        device, fake = await _connected()
        seen = []

        def broken(notification):
            raise ValueError("boom")

        device.add_notification_listener(broken)
        device.add_notification_listener(seen.append)
        fake.emit(_notify("BBE510"))

        assert len(seen) == 1
        await device.disconnect()


class TestFileCommands:
    """Test acknowledged file operations and catalog helpers."""

    @pytest.mark.asyncio
    async def test_delete_file_success_refreshes(self):
        device, fake = await _connected()
        entry = CatalogEntry(serial=2, cluster=9, total=2, length=0, attr=0, eye_icon=1, position=2, name="a")
        fake.handlers[CommandTag.DELETE_FILE] = lambda frame: [_notify("BBC700")]

        await device.delete_file(entry)

        assert fake.tags == [CommandTag.DELETE_FILE, CommandTag.QUERY_FILE_LIST]
        assert fake.payloads(CommandTag.DELETE_FILE)[0][:6] == b"\x00\x02\x00\x00\x00\x09"
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_delete_file_failure(self):
        device, fake = await _connected()
        entry = CatalogEntry(serial=2, cluster=9, total=2, length=0, attr=0, eye_icon=1, position=2, name="a")
        fake.handlers[CommandTag.DELETE_FILE] = lambda frame: [_notify("BBC701")]

        with pytest.raises(ProtocolError, match="delete"):
            await device.delete_file(entry)
        assert CommandTag.QUERY_FILE_LIST not in fake.tags
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_format_storage_returns_status(self):
        device, fake = await _connected()
        fake.handlers[CommandTag.FORMAT_STORAGE] = lambda frame: [_notify("BBC800")]

        assert await device.format_storage() == 0
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_fetch_files(self):
        device, fake = await _connected()
        fake.handlers[CommandTag.QUERY_FILE_LIST] = lambda frame: [
            catalog_entry_frame(2, 2, "Two.mp3"),
            catalog_entry_frame(1, 2, "One.mp3"),
        ]

        files = await device.fetch_files(timeout=1.0)

        assert [f.name for f in files] == ["One.mp3", "Two.mp3"]
        assert device.find_file("two.MP3").serial == 2
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_play_file_by_name(self):
        device, fake = await _connected()
        device.PLAY_BY_NAME_POLL = 0.01
        fake.handlers[CommandTag.QUERY_FILE_LIST] = lambda frame: [catalog_entry_frame(4, 1, "Boo.mp3")]

        entry = await device.play_file_by_name("boo.mp3", timeout=1.0)

        assert entry is not None and entry.serial == 4
        assert fake.payloads(CommandTag.PLAY_FILE) == [b"\x00\x04\x01" + b"\x00" * 5]
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_play_file_by_name_missing(self):
        device, fake = await _connected()
        device.PLAY_BY_NAME_POLL = 0.01

        assert await device.play_file_by_name("nope", timeout=0.05) is None
        assert CommandTag.PLAY_FILE not in fake.tags
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_cancel_upload_without_transfer(self):
        device, fake = await _connected()
        assert await device.cancel_upload() is False
        assert fake.written == []
        await device.disconnect()


class TestUpload:
    """Test uploads through the device API."""

    @staticmethod
    def _answer_transfer(fake: _FakeConnection) -> None:
        fake.handlers[CommandTag.START_TRANSFER] = lambda frame: [_notify("BBC00000000000")]
        fake.handlers[CommandTag.END_TRANSFER] = lambda frame: [_notify("BBC200")]
        fake.handlers[CommandTag.COMMIT_FILE] = lambda frame: [_notify("BBC300")]

    @pytest.mark.asyncio
    async def test_upload_then_refresh(self):
        device, fake = await _connected()
        self._answer_transfer(fake)
        progress = []

        result = await device.upload_file(b"x" * 1200, "new.mp3", lambda done, total: progress.append(done))

        assert result.chunk_count == 3
        assert progress[-1] == 3
        assert fake.tags[-1] == CommandTag.QUERY_FILE_LIST
        assert fake.tags.count(CommandTag.DATA_CHUNK) == 3
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_cancel_upload_sends_abort(self):
        device, fake = await _connected()
        self._answer_transfer(fake)
        fake.handlers[CommandTag.END_TRANSFER] = lambda frame: []

        task = asyncio.create_task(device.upload_file(b"x" * 5000, "big.mp3"))
        while CommandTag.DATA_CHUNK not in fake.tags:
            await asyncio.sleep(0.01)

        assert await device.cancel_upload() is True
        assert fake.tags[-1] == CommandTag.CANCEL_TRANSFER
        with pytest.raises(TransferCancelledError):
            await task
        await device.disconnect()
