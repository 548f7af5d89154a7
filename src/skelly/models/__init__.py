"""Data models for Skelly devices."""

from .catalog import CatalogEntry, normalize_name
from .enums import (
    ACTION_ALL_ON,
    ALL_CHANNELS,
    CatalogState,
    LightMode,
    MovementContext,
    MovementPart,
    TransferPhase,
    get_eye_image,
    get_eye_number,
    get_movement_code,
)
from .status import DeviceStatus

__all__ = [
    "ACTION_ALL_ON",
    "ALL_CHANNELS",
    "CatalogEntry",
    "CatalogState",
    "DeviceStatus",
    "LightMode",
    "MovementContext",
    "MovementPart",
    "TransferPhase",
    "get_eye_image",
    "get_eye_number",
    "get_movement_code",
    "normalize_name",
]
