from __future__ import annotations

from enum import Enum, IntEnum
from typing import Final


class LightMode(IntEnum):
    """Lighting effect types accepted by the F2 command."""
    STATIC = 1
    STROBE = 2
    PULSING = 3


class MovementPart(Enum):
    """Animatronic parts addressable by the CA action command."""
    HEAD = "head"
    ARM = "arm"
    TORSO = "torso"


class MovementContext(Enum):
    """Whether an action applies to live mode or to a stored file.

    The device swaps the torso on/off codes between the two contexts.
    """
    LIVE = "live"
    FILE = "file"


ALL_CHANNELS: Final = 0xFF
ACTION_ALL_ON: Final = 0xFF

_MOVEMENT_CODES: Final[dict[MovementContext, dict[MovementPart, tuple[int, int]]]] = {
    MovementContext.LIVE: {
        MovementPart.HEAD: (1, 2),
        MovementPart.ARM: (3, 4),
        MovementPart.TORSO: (6, 7),
    },
    MovementContext.FILE: {
        MovementPart.HEAD: (1, 2),
        MovementPart.ARM: (3, 4),
        MovementPart.TORSO: (7, 6),
    },
}


def get_movement_code(context: MovementContext, part: MovementPart, enabled: bool) -> int:
    """Get the CA action code that switches one part on or off."""
    on_code, off_code = _MOVEMENT_CODES[context][part]
    return on_code if enabled else off_code


# Eye icon tile (1..18, as drawn in the vendor app) -> device eye number
EYE_IMAGE_TO_NUMBER: Final[dict[int, int]] = {
    1: 1, 2: 10, 3: 2, 4: 11, 5: 3, 6: 12,
    7: 4, 8: 13, 9: 5, 10: 14, 11: 6, 12: 15,
    13: 7, 14: 16, 15: 8, 16: 17, 17: 9, 18: 18,
}

_EYE_NUMBER_TO_IMAGE: Final[dict[int, int]] = {
    number: image for image, number in EYE_IMAGE_TO_NUMBER.items()
}


def get_eye_number(image_index: int) -> int:
    """Map an eye tile index to the device eye number (identity if unknown)."""
    return EYE_IMAGE_TO_NUMBER.get(image_index, image_index)


def get_eye_image(eye_number: int) -> int:
    """Map a device eye number back to its tile index (identity if unknown)."""
    return _EYE_NUMBER_TO_IMAGE.get(eye_number, eye_number)


class TransferPhase(IntEnum):
    """Phases of the chunked upload state machine, in order."""
    IDLE = 0
    STARTING = 1
    STREAMING = 2
    RETRANSMITTING = 3
    ENDING = 4
    RECOVERING = 5
    COMMITTING = 6
    COMPLETE = 7


class CatalogState(Enum):
    """File catalog fetch states."""
    IDLE = "idle"
    FETCHING = "fetching"
    COMPLETE = "complete"
    TIMED_OUT = "timed_out"
