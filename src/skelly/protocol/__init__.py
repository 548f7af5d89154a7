"""BLE protocol implementation."""

from .commands import (
    NAME_MARKER,
    NOTIFY_UUID,
    PREAMBLE,
    SERVICE_UUID,
    WRITE_UUID,
    CommandFrame,
    CommandTag,
    build_frame,
    crc8,
    parse_command_frame,
)
from .correlation import ResponseWaiters
from .responses import (
    Notification,
    NotificationKind,
    UnknownNotification,
    decode_as,
    decode_notification,
)

__all__ = [
    "CommandTag",
    "CommandFrame",
    "SERVICE_UUID",
    "WRITE_UUID",
    "NOTIFY_UUID",
    "PREAMBLE",
    "NAME_MARKER",
    "build_frame",
    "parse_command_frame",
    "crc8",
    "ResponseWaiters",
    "Notification",
    "NotificationKind",
    "UnknownNotification",
    "decode_notification",
    "decode_as",
]
