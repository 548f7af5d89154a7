"""BLE notification decoding."""

from __future__ import annotations

import struct
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TypeVar, Union

from ..exceptions import InvalidResponseError
from ..models.catalog import CatalogEntry
from .commands import NAME_MARKER


class NotificationKind(IntEnum):
    """Two-byte notification prefixes sent by the device."""

    PARAMETERS = 0xBBE0
    LIVE_STATE = 0xBBE1
    VOLUME = 0xBBE5
    DEVICE_NAME = 0xBBE6
    MAC_ADDRESS = 0xBBCC
    START_ACK = 0xBBC0
    CHUNK_DROP = 0xBBC1
    END_ACK = 0xBBC2
    COMMIT_ACK = 0xBBC3
    CANCEL_ACK = 0xBBC4
    RESUME_WRITTEN = 0xBBC5
    PLAYBACK = 0xBBC6
    DELETE_ACK = 0xBBC7
    FORMAT_ACK = 0xBBC8
    CATALOG_ENTRY = 0xBBD0
    PLAY_ORDER = 0xBBD1
    CAPACITY = 0xBBD2
    KEEP_ALIVE = 0xFEDC
    UNKNOWN = 0x0000

    @property
    def prefix(self) -> bytes:
        """Prefix bytes as seen on the wire."""
        return self.value.to_bytes(2, "big")


@dataclass(frozen=True)
class LightChannelState:
    """One light channel descriptor from the live state report."""

    effect: int
    effect_group: int
    red: int
    green: int
    blue: int
    brightness: int
    channel: int


@dataclass(frozen=True)
class VolumeReport:
    volume: int
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.VOLUME


@dataclass(frozen=True)
class DeviceNameReport:
    """Classic Bluetooth name."""

    name: str
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.DEVICE_NAME


@dataclass(frozen=True)
class LiveStateReport:
    action: int
    eye_icon: int
    lights: tuple[LightChannelState, ...]
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.LIVE_STATE


@dataclass(frozen=True)
class ParameterReport:
    channels: tuple[int, ...]
    pin: str
    wifi_password: str
    show_mode: int
    name: str
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.PARAMETERS


@dataclass(frozen=True)
class MacReport:
    mac: str
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.MAC_ADDRESS


@dataclass(frozen=True)
class StartAck:
    """Transfer start acknowledgement (BBC0).

    bytes_written > 0 means the device already holds part of this file.
    """

    failed: bool
    bytes_written: int
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.START_ACK


@dataclass(frozen=True)
class ChunkDropNotice:
    """Device asks for a chunk to be sent again (BBC1)."""

    dropped: bool
    index: int
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.CHUNK_DROP


@dataclass(frozen=True)
class EndAck:
    failed: bool
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.END_ACK


@dataclass(frozen=True)
class CommitAck:
    failed: bool
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.COMMIT_ACK


@dataclass(frozen=True)
class CancelAck:
    failed: bool
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.CANCEL_ACK


@dataclass(frozen=True)
class ResumeWrittenReport:
    bytes_written: int
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.RESUME_WRITTEN


@dataclass(frozen=True)
class PlaybackReport:
    serial: int
    playing: bool
    duration: int
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.PLAYBACK


@dataclass(frozen=True)
class DeleteAck:
    failed: bool
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.DELETE_ACK


@dataclass(frozen=True)
class FormatAck:
    status: int
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.FORMAT_ACK


@dataclass(frozen=True)
class CapacityReport:
    capacity_kb: int
    file_count: int
    extra: int
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.CAPACITY


@dataclass(frozen=True)
class PlayOrderReport:
    serials: tuple[int, ...]
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.PLAY_ORDER


@dataclass(frozen=True)
class CatalogEntryReport:
    entry: CatalogEntry
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.CATALOG_ENTRY


@dataclass(frozen=True)
class KeepAlive:
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.KEEP_ALIVE


@dataclass(frozen=True)
class UnknownNotification:
    """Frame with a prefix outside the known set (ignored by consumers)."""

    prefix: bytes
    raw: bytes = field(default=b"", repr=False)
    kind = NotificationKind.UNKNOWN


Notification = Union[
    VolumeReport,
    DeviceNameReport,
    LiveStateReport,
    ParameterReport,
    MacReport,
    StartAck,
    ChunkDropNotice,
    EndAck,
    CommitAck,
    CancelAck,
    ResumeWrittenReport,
    PlaybackReport,
    DeleteAck,
    FormatAck,
    CapacityReport,
    PlayOrderReport,
    CatalogEntryReport,
    KeepAlive,
    UnknownNotification,
]

_N = TypeVar("_N", bound=Notification)


def extract_ascii(data: bytes) -> str:
    """Keep printable ASCII (0x20-0x7E) and trim."""
    return "".join(chr(b) for b in data if 0x20 <= b <= 0x7E).strip()


def decode_utf16le(data: bytes) -> str:
    """Decode UTF-16LE code units, skipping zero units.

    Surrogate pairs are combined; a trailing odd byte is ignored.
    """
    units = [
        data[i] | (data[i + 1] << 8)
        for i in range(0, len(data) - 1, 2)
    ]
    units = [unit for unit in units if unit != 0]
    if not units:
        return ""
    return struct.pack(f"<{len(units)}H", *units).decode("utf-16-le", errors="replace")


def _require(data: bytes, length: int, label: str) -> None:
    if len(data) < length:
        raise InvalidResponseError(
            f"{label} too short: {len(data)} bytes (need at least {length})"
        )


def _u16(data: bytes, offset: int) -> int:
    return struct.unpack(">H", data[offset:offset + 2])[0]


def _u32(data: bytes, offset: int) -> int:
    return struct.unpack(">I", data[offset:offset + 4])[0]


def _decode_volume(data: bytes) -> VolumeReport:
    _require(data, 3, "Volume report")
    return VolumeReport(volume=data[2], raw=data)


def _decode_device_name(data: bytes) -> DeviceNameReport:
    _require(data, 3, "Device name report")
    length = data[2]
    return DeviceNameReport(name=extract_ascii(data[3:3 + length]), raw=data)


def _decode_live_state(data: bytes) -> LiveStateReport:
    """Format: [prefix:2][action:1][6 x light:7][eye:1]"""
    _require(data, 46, "Live state report")
    lights = []
    for i in range(6):
        start = 3 + i * 7
        effect, group, red, green, blue, brightness, channel = data[start:start + 7]
        lights.append(LightChannelState(
            effect=effect,
            effect_group=group,
            red=red,
            green=green,
            blue=blue,
            brightness=brightness,
            channel=channel,
        ))
    return LiveStateReport(
        action=data[2],
        eye_icon=data[45],
        lights=tuple(lights),
        raw=data,
    )


def _decode_parameters(data: bytes) -> ParameterReport:
    """Format: [prefix:2][channels:6][pin:4][wifi:8][show_mode:1][...:7][name_len:1][name]"""
    _require(data, 29, "Parameter report")
    name_length = data[28]
    return ParameterReport(
        channels=tuple(data[2:8]),
        pin=extract_ascii(data[8:12]),
        wifi_password=extract_ascii(data[12:20]),
        show_mode=data[20],
        name=extract_ascii(data[29:29 + name_length]),
        raw=data,
    )


def _decode_mac(data: bytes) -> MacReport:
    _require(data, 8, "MAC report")
    return MacReport(mac=data[2:8].hex().upper(), raw=data)


def _decode_start_ack(data: bytes) -> StartAck:
    _require(data, 7, "Start ack")
    return StartAck(failed=data[2] != 0, bytes_written=_u32(data, 3), raw=data)


def _decode_chunk_drop(data: bytes) -> ChunkDropNotice:
    _require(data, 5, "Chunk drop notice")
    return ChunkDropNotice(dropped=data[2] == 1, index=_u16(data, 3), raw=data)


def _decode_end_ack(data: bytes) -> EndAck:
    _require(data, 3, "End ack")
    return EndAck(failed=data[2] != 0, raw=data)


def _decode_commit_ack(data: bytes) -> CommitAck:
    _require(data, 3, "Commit ack")
    return CommitAck(failed=data[2] != 0, raw=data)


def _decode_cancel_ack(data: bytes) -> CancelAck:
    _require(data, 3, "Cancel ack")
    return CancelAck(failed=data[2] != 0, raw=data)


def _decode_resume_written(data: bytes) -> ResumeWrittenReport:
    _require(data, 6, "Resume report")
    return ResumeWrittenReport(bytes_written=_u32(data, 2), raw=data)


def _decode_playback(data: bytes) -> PlaybackReport:
    _require(data, 7, "Playback report")
    return PlaybackReport(
        serial=_u16(data, 2),
        playing=data[4] != 0,
        duration=_u16(data, 5),
        raw=data,
    )


def _decode_delete_ack(data: bytes) -> DeleteAck:
    _require(data, 3, "Delete ack")
    return DeleteAck(failed=data[2] != 0, raw=data)


def _decode_format_ack(data: bytes) -> FormatAck:
    _require(data, 3, "Format ack")
    return FormatAck(status=data[2], raw=data)


def _decode_capacity(data: bytes) -> CapacityReport:
    _require(data, 11, "Capacity report")
    return CapacityReport(
        capacity_kb=_u32(data, 2),
        file_count=data[6],
        extra=_u32(data, 7),
        raw=data,
    )


def _decode_play_order(data: bytes) -> PlayOrderReport:
    """Format: [prefix:2][count:1][serial:2]*count

    A declared count larger than the payload is clamped to what is present.
    """
    _require(data, 3, "Play order report")
    count = data[2]
    body = data[3:]
    if len(body) < count * 2:
        count = len(body) // 2
    serials = tuple(_u16(body, i * 2) for i in range(count))
    return PlayOrderReport(serials=serials, raw=data)


def _decode_catalog_entry(data: bytes) -> CatalogEntryReport:
    """Format: [prefix:2][serial:2][cluster:4][total:2][length:2][attr:1]...

    Eye icon sits at byte 55 and position at byte 56. The filename follows the
    first 5C 55 marker found from byte 57 and runs up to the trailing checksum.
    """
    _require(data, 57, "Catalog entry")

    name = ""
    marker = data.find(NAME_MARKER, 57)
    if marker >= 0:
        name = decode_utf16le(data[marker + 2:len(data) - 1]).strip()

    entry = CatalogEntry(
        serial=_u16(data, 2),
        cluster=_u32(data, 4),
        total=_u16(data, 8),
        length=_u16(data, 10),
        attr=data[12],
        eye_icon=data[55],
        position=data[56],
        name=name,
    )
    return CatalogEntryReport(entry=entry, raw=data)


def _decode_keep_alive(data: bytes) -> KeepAlive:
    return KeepAlive(raw=data)


_DECODERS: dict[NotificationKind, Callable[[bytes], Notification]] = {
    NotificationKind.PARAMETERS: _decode_parameters,
    NotificationKind.LIVE_STATE: _decode_live_state,
    NotificationKind.VOLUME: _decode_volume,
    NotificationKind.DEVICE_NAME: _decode_device_name,
    NotificationKind.MAC_ADDRESS: _decode_mac,
    NotificationKind.START_ACK: _decode_start_ack,
    NotificationKind.CHUNK_DROP: _decode_chunk_drop,
    NotificationKind.END_ACK: _decode_end_ack,
    NotificationKind.COMMIT_ACK: _decode_commit_ack,
    NotificationKind.CANCEL_ACK: _decode_cancel_ack,
    NotificationKind.RESUME_WRITTEN: _decode_resume_written,
    NotificationKind.PLAYBACK: _decode_playback,
    NotificationKind.DELETE_ACK: _decode_delete_ack,
    NotificationKind.FORMAT_ACK: _decode_format_ack,
    NotificationKind.CATALOG_ENTRY: _decode_catalog_entry,
    NotificationKind.PLAY_ORDER: _decode_play_order,
    NotificationKind.CAPACITY: _decode_capacity,
    NotificationKind.KEEP_ALIVE: _decode_keep_alive,
}


def notification_kind(data: bytes) -> NotificationKind:
    """Identify a frame by its two-byte prefix (UNKNOWN if unrecognized)."""
    if len(data) < 2:
        return NotificationKind.UNKNOWN
    try:
        return NotificationKind(struct.unpack(">H", data[0:2])[0])
    except ValueError:
        return NotificationKind.UNKNOWN


def decode_notification(data: bytes) -> Notification:
    """Decode one notification frame into its typed variant.

    Args:
        data: Raw notification bytes

    Returns:
        Typed notification; UnknownNotification for unrecognized prefixes

    Raises:
        InvalidResponseError: If a known prefix carries a truncated layout
    """
    data = bytes(data)
    kind = notification_kind(data)
    decoder = _DECODERS.get(kind)
    if decoder is None:
        return UnknownNotification(prefix=data[:2], raw=data)
    return decoder(data)


def decode_as(data: bytes, variant: type[_N]) -> _N:
    """Decode a frame that must be of one specific variant.

    Raises:
        InvalidResponseError: If the frame decodes to a different variant
    """
    notification = decode_notification(data)
    if not isinstance(notification, variant):
        raise InvalidResponseError(
            f"Expected {variant.__name__}, got {type(notification).__name__}"
        )
    return notification
