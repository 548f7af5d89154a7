"""BLE protocol commands for Skelly devices."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum

from ..exceptions import MalformedFrameError


class CommandTag(IntEnum):
    """One-byte command tags for the Skelly protocol."""

    # File transfer commands
    START_TRANSFER = 0xC0     # Announce size, chunk count and filename
    DATA_CHUNK = 0xC1         # One chunk: [index:2][data]
    END_TRANSFER = 0xC2       # End of stream (8 zero bytes)
    COMMIT_FILE = 0xC3        # Rename/commit the uploaded file
    CANCEL_TRANSFER = 0xC4    # Abort the device-side write
    PLAY_FILE = 0xC6          # Play (01) or stop (00) a stored file
    DELETE_FILE = 0xC7        # Delete a stored file
    FORMAT_STORAGE = 0xC8     # Erase all stored files
    SET_ACTION = 0xCA         # Animation action code

    # File query commands
    QUERY_FILE_LIST = 0xD0    # Catalog: one BBD0 per stored file
    QUERY_FILE_ORDER = 0xD1   # Play order
    QUERY_CAPACITY = 0xD2     # Free capacity and file count

    # Device query commands
    QUERY_DEVICE_PARAMS = 0xE0
    QUERY_LIVE_MODE = 0xE1
    QUERY_VOLUME = 0xE5
    QUERY_BT_NAME = 0xE6
    QUERY_VERSION = 0xEE

    # Light commands
    SET_LIGHT_MODE = 0xF2
    SET_BRIGHTNESS = 0xF3
    SET_RGB = 0xF4
    SET_LIGHT_SPEED = 0xF6
    SET_EYE_ICON = 0xF9

    # Media commands
    SET_VOLUME = 0xFA
    PLAY_PAUSE = 0xFC
    ENABLE_CLASSIC_BT = 0xFD


# Protocol constants
SERVICE_UUID = "0000ae00-0000-1000-8000-00805f9b34fb"
WRITE_UUID = "0000ae01-0000-1000-8000-00805f9b34fb"
NOTIFY_UUID = "0000ae02-0000-1000-8000-00805f9b34fb"

PREAMBLE = 0xAA
NAME_MARKER = b"\x5c\x55"

# Minimum payload sizes (bytes)
PAD_DEFAULT = 8
PAD_QUERY = 8
PAD_MEDIA = 8
PAD_CHUNK = 0

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class CommandFrame:
    """A command frame parsed back from wire bytes."""

    tag: int
    payload: bytes

    def to_bytes(self) -> bytes:
        """Re-encode without additional padding."""
        return build_frame(self.tag, self.payload, min_payload=0)


def crc8(data: bytes) -> int:
    """Calculate CRC-8 (reflected polynomial 0x8C, initial value 0).

    Args:
        data: Bytes to checksum

    Returns:
        Checksum in range 0-255
    """
    crc = 0
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ 0x8C
            else:
                crc >>= 1
    return crc & 0xFF


def hex_to_bytes(payload: bytes | str) -> bytes:
    """Normalize a hex string (or pass bytes through).

    Raises:
        MalformedFrameError: If the string has odd length or non-hex digits
    """
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)

    clean = _WHITESPACE.sub("", payload)
    if len(clean) % 2 != 0:
        raise MalformedFrameError(f"Hex length must be even, got {len(clean)} digits")
    try:
        return bytes.fromhex(clean)
    except ValueError as e:
        raise MalformedFrameError(f"Invalid hex payload: {payload!r}") from e


def build_frame(tag: int, payload: bytes | str = b"", min_payload: int = PAD_DEFAULT) -> bytes:
    """Build a command frame.

    Format:
        [preamble:1][tag:1][payload:N >= min_payload][crc8:1]
        - preamble: 0xAA
        - payload: right-padded with zero bytes to min_payload
        - crc8: over preamble + tag + padded payload

    Args:
        tag: Command tag byte
        payload: Payload as bytes or hex string
        min_payload: Minimum payload length in bytes

    Returns:
        Complete frame bytes

    Raises:
        MalformedFrameError: If payload is malformed hex or tag out of range
    """
    if not 0 <= tag <= 0xFF:
        raise MalformedFrameError(f"Tag out of range: {tag}")

    body = hex_to_bytes(payload)
    if len(body) < min_payload:
        body += b"\x00" * (min_payload - len(body))

    base = bytes([PREAMBLE, tag]) + body
    return base + bytes([crc8(base)])


def parse_command_frame(data: bytes) -> CommandFrame:
    """Parse and verify a command frame produced by build_frame.

    Raises:
        MalformedFrameError: If too short, wrong preamble or checksum mismatch
    """
    if len(data) < 3:
        raise MalformedFrameError(f"Frame too short: {len(data)} bytes (need at least 3)")
    if data[0] != PREAMBLE:
        raise MalformedFrameError(f"Bad preamble: 0x{data[0]:02x}")

    expected = crc8(data[:-1])
    if data[-1] != expected:
        raise MalformedFrameError(
            f"Checksum mismatch: expected 0x{expected:02x}, got 0x{data[-1]:02x}"
        )

    return CommandFrame(tag=data[1], payload=bytes(data[2:-1]))


def encode_name(name: str) -> bytes:
    """Encode a filename as UTF-16LE (no terminator)."""
    return name.encode("utf-16-le") if name else b""


def build_name_block(name: str) -> bytes:
    """Build the per-file addressing name block.

    Format:
        [len:1][5C 55][UTF-16LE name]   (len = encoded name length + 2)
        or a single 0x00 byte when no name is given.
    """
    name = (name or "").strip()
    if not name:
        return b"\x00"
    encoded = encode_name(name)
    length = len(encoded) + len(NAME_MARKER)
    if length > 0xFF:
        raise ValueError(f"Filename too long: {len(name)} characters")
    return bytes([length]) + NAME_MARKER + encoded


def _check_u8(name: str, value: int) -> None:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} out of range: {value} (must be 0-255)")


def build_query_command(tag: CommandTag) -> bytes:
    """Build a payload-less query (E0/E1/E5/E6/EE/D0/D1/D2)."""
    return build_frame(tag, b"", PAD_QUERY)


def build_set_volume_command(volume: int) -> bytes:
    """Build volume command (FA).

    Args:
        volume: Wire volume 0-255
    """
    _check_u8("volume", volume)
    return build_frame(CommandTag.SET_VOLUME, bytes([volume]), PAD_MEDIA)


def build_play_pause_command(play: bool) -> bytes:
    """Build live play/pause command (FC)."""
    return build_frame(CommandTag.PLAY_PAUSE, b"\x01" if play else b"\x00", PAD_MEDIA)


def build_enable_classic_bt_command() -> bytes:
    """Build classic Bluetooth enable command (FD)."""
    return build_frame(CommandTag.ENABLE_CLASSIC_BT, b"\x01", PAD_MEDIA)


def _channel_setting(
        tag: CommandTag,
        channel: int,
        values: bytes,
        cluster: int,
        name: str,
) -> bytes:
    _check_u8("channel", channel)
    payload = bytes([channel]) + values + cluster.to_bytes(4, "big") + build_name_block(name)
    return build_frame(tag, payload, PAD_MEDIA)


def build_set_light_mode_command(mode: int, channel: int, cluster: int = 0, name: str = "") -> bytes:
    """Build lighting mode command (F2).

    Format:
        [channel:1][mode:1][cluster:4][name block]
    """
    _check_u8("mode", mode)
    return _channel_setting(CommandTag.SET_LIGHT_MODE, channel, bytes([mode]), cluster, name)


def build_set_brightness_command(brightness: int, channel: int, cluster: int = 0, name: str = "") -> bytes:
    """Build brightness command (F3).

    Format:
        [channel:1][brightness:1][cluster:4][name block]
    """
    _check_u8("brightness", brightness)
    return _channel_setting(CommandTag.SET_BRIGHTNESS, channel, bytes([brightness]), cluster, name)


def build_set_rgb_command(
        red: int,
        green: int,
        blue: int,
        channel: int,
        loop: bool = False,
        cluster: int = 0,
        name: str = "",
) -> bytes:
    """Build RGB colour command (F4).

    Format:
        [channel:1][r:1][g:1][b:1][loop:1][cluster:4][name block]
        - loop: 1 cycles through all colours starting from r/g/b
    """
    for label, value in (("red", red), ("green", green), ("blue", blue)):
        _check_u8(label, value)
    values = bytes([red, green, blue, 1 if loop else 0])
    return _channel_setting(CommandTag.SET_RGB, channel, values, cluster, name)


def build_set_light_speed_command(speed: int, channel: int, cluster: int = 0, name: str = "") -> bytes:
    """Build effect speed command (F6)."""
    _check_u8("speed", speed)
    return _channel_setting(CommandTag.SET_LIGHT_SPEED, channel, bytes([speed]), cluster, name)


def _file_setting(tag: CommandTag, value: int, cluster: int, name: str, min_payload: int) -> bytes:
    payload = bytes([value, 0x00]) + cluster.to_bytes(4, "big") + build_name_block(name)
    return build_frame(tag, payload, min_payload)


def build_set_eye_icon_command(eye: int, cluster: int = 0, name: str = "") -> bytes:
    """Build eye icon command (F9).

    Format:
        [eye:1][00][cluster:4][name block]
    """
    _check_u8("eye", eye)
    return _file_setting(CommandTag.SET_EYE_ICON, eye, cluster, name, PAD_DEFAULT)


def build_set_action_command(action: int, cluster: int = 0, name: str = "") -> bytes:
    """Build animation action command (CA).

    Format:
        [action:1][00][cluster:4][name block]
    """
    _check_u8("action", action)
    return _file_setting(CommandTag.SET_ACTION, action, cluster, name, PAD_MEDIA)


def build_play_file_command(serial: int, play: bool = True) -> bytes:
    """Build play/stop stored file command (C6).

    Format:
        [serial:2][play:1]
    """
    payload = serial.to_bytes(2, "big") + (b"\x01" if play else b"\x00")
    return build_frame(CommandTag.PLAY_FILE, payload, PAD_DEFAULT)


def build_delete_file_command(serial: int, cluster: int) -> bytes:
    """Build delete stored file command (C7).

    Format:
        [serial:2][cluster:4]
    """
    payload = serial.to_bytes(2, "big") + cluster.to_bytes(4, "big")
    return build_frame(CommandTag.DELETE_FILE, payload, PAD_DEFAULT)


def build_format_storage_command() -> bytes:
    """Build format storage command (C8)."""
    return build_frame(CommandTag.FORMAT_STORAGE, b"", PAD_DEFAULT)


def build_start_transfer_command(size: int, chunk_count: int, name: str) -> bytes:
    """Build transfer start command (C0).

    Format:
        [size:4][chunk_count:2][5C 55][UTF-16LE name]
        - size: Total file size in bytes (big-endian uint32)
        - chunk_count: Number of chunks (big-endian uint16)
    """
    payload = (
        size.to_bytes(4, "big")
        + chunk_count.to_bytes(2, "big")
        + NAME_MARKER
        + encode_name(name)
    )
    return build_frame(CommandTag.START_TRANSFER, payload, PAD_DEFAULT)


def build_chunk_payload(index: int, data: bytes) -> bytes:
    """Serialize one chunk: [index:2][data] (exact bytes, no MTU padding)."""
    return index.to_bytes(2, "big") + data


def build_data_chunk_command(chunk_payload: bytes) -> bytes:
    """Build data chunk command (C1) from a serialized chunk payload."""
    return build_frame(CommandTag.DATA_CHUNK, chunk_payload, PAD_CHUNK)


def build_end_transfer_command() -> bytes:
    """Build transfer end command (C2, 8 zero bytes)."""
    return build_frame(CommandTag.END_TRANSFER, b"", 8)


def build_commit_command(name: str) -> bytes:
    """Build commit/rename command (C3).

    Format:
        [5C 55][UTF-16LE name]
    """
    return build_frame(CommandTag.COMMIT_FILE, NAME_MARKER + encode_name(name), PAD_DEFAULT)


def build_cancel_transfer_command() -> bytes:
    """Build transfer cancel command (C4)."""
    return build_frame(CommandTag.CANCEL_TRANSFER, b"", PAD_DEFAULT)
