"""Skelly BLE Protocol Package.

  Pure Python package for controlling Skelly animatronics over BLE.
  """

from .catalog import FileCatalog
from .config import TransferConfig
from .device import SkellyDevice
from .exceptions import (
    BLEConnectionError,
    BLETimeoutError,
    InvalidResponseError,
    MalformedFrameError,
    ProtocolError,
    SkellyError,
    TransferCancelledError,
    TransferDisconnectedError,
    TransferError,
    TransferMalformedError,
    TransferRejectedError,
    TransferTimeoutError,
)
from .models.catalog import CatalogEntry
from .models.enums import (
    ALL_CHANNELS,
    CatalogState,
    LightMode,
    MovementContext,
    MovementPart,
    TransferPhase,
    get_eye_number,
)
from .models.status import DeviceStatus
from .protocol import SERVICE_UUID, CommandTag, build_frame, decode_notification
from .transfer import PacingController, TransferEngine, TransferResult

__version__ = "0.1.0"

__all__ = [
    # Main API
    "SkellyDevice",
    "TransferEngine",
    "FileCatalog",
    "TransferConfig",
    # Exceptions
    "SkellyError",
    "BLEConnectionError",
    "BLETimeoutError",
    "ProtocolError",
    "InvalidResponseError",
    "MalformedFrameError",
    "TransferError",
    "TransferRejectedError",
    "TransferMalformedError",
    "TransferTimeoutError",
    "TransferCancelledError",
    "TransferDisconnectedError",
    # Models
    "CatalogEntry",
    "DeviceStatus",
    "TransferResult",
    "PacingController",
    # Enums
    "CatalogState",
    "CommandTag",
    "LightMode",
    "MovementContext",
    "MovementPart",
    "TransferPhase",
    "get_eye_number",
    # Utilities
    "build_frame",
    "decode_notification",
    # Constants
    "ALL_CHANNELS",
    "SERVICE_UUID",
]
