"""BLE transport layer."""

from .base import FrameTransport
from .connection import BLEConnection

__all__ = ["BLEConnection", "FrameTransport"]
