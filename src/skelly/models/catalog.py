"""Stored file catalog entry model."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CatalogEntry:
    """Metadata for one audio file stored on the device.

    Attributes:
        serial: Unique file serial number (catalog key)
        cluster: Storage cluster the file starts at
        total: Total file count declared by the device
        length: Length field reported for this file
        attr: Attribute byte
        eye_icon: Eye icon number shown while playing
        position: On-device position (play order slot)
        name: Filename decoded from UTF-16LE
    """

    serial: int
    cluster: int
    total: int
    length: int
    attr: int
    eye_icon: int
    position: int
    name: str = ""

    @property
    def normalized_name(self) -> str:
        """Name used for case-insensitive comparisons."""
        return normalize_name(self.name)


def normalize_name(name: str | None) -> str:
    """Normalize a device filename for comparison."""
    return (name or "").strip().lower()
