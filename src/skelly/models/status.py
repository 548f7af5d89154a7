"""Device status snapshot assembled from notifications."""

from __future__ import annotations

from dataclasses import dataclass

from ..protocol.responses import (
    CapacityReport,
    DeviceNameReport,
    LightChannelState,
    LiveStateReport,
    MacReport,
    Notification,
    ParameterReport,
    PlaybackReport,
    PlayOrderReport,
    VolumeReport,
)


@dataclass
class DeviceStatus:
    """Latest known device state.

    Fields stay None until the corresponding notification has been seen.
    """

    device_name: str | None = None
    bt_name: str | None = None
    mac: str | None = None
    pin: str | None = None
    show_mode: int | None = None
    channels: tuple[int, ...] = ()
    volume: int | None = None
    action: int | None = None
    eye_icon: int | None = None
    lights: tuple[LightChannelState, ...] = ()
    capacity_kb: int | None = None
    files_reported: int | None = None
    play_order: tuple[int, ...] = ()
    playing_serial: int | None = None
    playing: bool = False
    duration: int | None = None

    def apply(self, notification: Notification) -> bool:
        """Fold a notification into the snapshot.

        Returns:
            True if the notification changed tracked state
        """
        if isinstance(notification, VolumeReport):
            self.volume = notification.volume
        elif isinstance(notification, DeviceNameReport):
            self.bt_name = notification.name
        elif isinstance(notification, ParameterReport):
            self.device_name = notification.name
            self.pin = notification.pin
            self.show_mode = notification.show_mode
            self.channels = notification.channels
        elif isinstance(notification, LiveStateReport):
            self.action = notification.action
            self.eye_icon = notification.eye_icon
            self.lights = notification.lights
        elif isinstance(notification, MacReport):
            self.mac = notification.mac
        elif isinstance(notification, CapacityReport):
            self.capacity_kb = notification.capacity_kb
            self.files_reported = notification.file_count
        elif isinstance(notification, PlayOrderReport):
            self.play_order = notification.serials
        elif isinstance(notification, PlaybackReport):
            self.playing_serial = notification.serial
            self.playing = notification.playing
            self.duration = notification.duration
        else:
            return False
        return True
