"""Test notification decoding."""

import pytest

from skelly.exceptions import InvalidResponseError
from skelly.protocol.commands import crc8
from skelly.protocol.responses import (
    CapacityReport,
    CatalogEntryReport,
    ChunkDropNotice,
    DeviceNameReport,
    EndAck,
    KeepAlive,
    LiveStateReport,
    NotificationKind,
    ParameterReport,
    PlaybackReport,
    PlayOrderReport,
    ResumeWrittenReport,
    StartAck,
    UnknownNotification,
    VolumeReport,
    decode_as,
    decode_notification,
    decode_utf16le,
    extract_ascii,
    notification_kind,
)


def _frame(hex_body: str) -> bytes:
    body = bytes.fromhex(hex_body)
    return body + bytes([crc8(body)])


def catalog_entry_frame(serial: int, total: int, name: str, cluster: int = 0, eye: int = 1) -> bytes:
    header = (
        b"\xBB\xD0"
        + serial.to_bytes(2, "big")
        + cluster.to_bytes(4, "big")
        + total.to_bytes(2, "big")
        + (100).to_bytes(2, "big")
        + b"\x00"
    )
    header = header.ljust(55, b"\x00") + bytes([eye, serial])
    body = header + b"\x5c\x55" + name.encode("utf-16-le")
    return body + bytes([crc8(body)])


class TestSimpleReports:
    """Test single-field notification variants."""

    def test_volume(self):
        report = decode_notification(_frame("BBE564"))
        assert isinstance(report, VolumeReport)
        assert report.volume == 100
        assert report.kind == NotificationKind.VOLUME

    def test_device_name_ascii_filtered(self):
        data = b"\xBB\xE6\x06" + b" Sk\x01y " + b"\x00"
        report = decode_notification(data)
        assert isinstance(report, DeviceNameReport)
        assert report.name == "Sky"

    def test_start_ack(self):
        report = decode_notification(_frame("BBC000000003E8"))
        assert isinstance(report, StartAck)
        assert report.failed is False
        assert report.bytes_written == 1000

    def test_start_ack_failed(self):
        assert decode_notification(_frame("BBC00100000000")).failed is True

    def test_chunk_drop(self):
        report = decode_notification(_frame("BBC1010102"))
        assert isinstance(report, ChunkDropNotice)
        assert report.dropped is True
        assert report.index == 258

    def test_end_ack(self):
        report = decode_notification(_frame("BBC201"))
        assert isinstance(report, EndAck)
        assert report.failed is True

    def test_resume_written(self):
        report = decode_notification(_frame("BBC5000001F4"))
        assert isinstance(report, ResumeWrittenReport)
        assert report.bytes_written == 500

    def test_playback(self):
        report = decode_notification(_frame("BBC60007010010"))
        assert isinstance(report, PlaybackReport)
        assert report.serial == 7
        assert report.playing is True
        assert report.duration == 16

    def test_capacity(self):
        report = decode_notification(_frame("BBD20000100003" + "00000000"))
        assert isinstance(report, CapacityReport)
        assert report.capacity_kb == 4096
        assert report.file_count == 3

    def test_keep_alive(self):
        assert isinstance(decode_notification(b"\xFE\xDC"), KeepAlive)


class TestStructuredReports:
    """Test multi-field notification variants."""

    def test_live_state(self):
        lights = "".join(f"01{i:02X}0A0B0C{0x40 + i:02X}{i:02X}" for i in range(6))
        report = decode_notification(_frame("BBE1" + "03" + lights + "07"))
        assert isinstance(report, LiveStateReport)
        assert report.action == 3
        assert report.eye_icon == 7
        assert len(report.lights) == 6
        assert report.lights[2].brightness == 0x42
        assert report.lights[5].channel == 5
        assert (report.lights[0].red, report.lights[0].green, report.lights[0].blue) == (10, 11, 12)

    def test_parameters(self):
        body = (
            "BBE0"
            + "010203040506"
            + b"1234".hex()
            + b"pass\x00\x00\x00\x00".hex()
            + "02"
            + "00" * 7
            + "05"
            + b"Skull".hex()
        )
        report = decode_notification(_frame(body))
        assert isinstance(report, ParameterReport)
        assert report.channels == (1, 2, 3, 4, 5, 6)
        assert report.pin == "1234"
        assert report.wifi_password == "pass"
        assert report.show_mode == 2
        assert report.name == "Skull"

    def test_play_order(self):
        report = decode_notification(_frame("BBD103000100020003"))
        assert isinstance(report, PlayOrderReport)
        assert report.serials == (1, 2, 3)

    def test_play_order_count_clamped(self):
        """A declared count beyond the payload uses what is present."""
        report = decode_notification(b"\xBB\xD1\x05\x00\x01\x00\x02")
        assert report.serials == (1, 2)

    def test_catalog_entry(self):
        report = decode_notification(catalog_entry_frame(4, 9, "Boo.mp3", cluster=0x1234, eye=3))
        assert isinstance(report, CatalogEntryReport)
        entry = report.entry
        assert entry.serial == 4
        assert entry.total == 9
        assert entry.cluster == 0x1234
        assert entry.length == 100
        assert entry.eye_icon == 3
        assert entry.position == 4
        assert entry.name == "Boo.mp3"
        assert entry.normalized_name == "boo.mp3"

    def test_catalog_entry_without_marker(self):
        body = catalog_entry_frame(1, 1, "")[:57]
        report = decode_notification(body + b"\x00")
        assert report.entry.name == ""


class TestDecoderEdgeCases:
    """Test unknown prefixes and truncated frames."""

    def test_unknown_prefix(self):
        report = decode_notification(b"\xBB\x99\x01\x02")
        assert isinstance(report, UnknownNotification)
        assert report.prefix == b"\xBB\x99"
        assert notification_kind(b"\xBB\x99") == NotificationKind.UNKNOWN

    def test_single_byte_is_unknown(self):
        assert isinstance(decode_notification(b"\xBB"), UnknownNotification)

    @pytest.mark.parametrize("data", [b"\xBB\xC0\x00", b"\xBB\xC1\x01", b"\xBB\xE1\x00", b"\xBB\xD0" + b"\x00" * 20])
    def test_truncated_known_prefix(self, data):
        with pytest.raises(InvalidResponseError, match="too short"):
            decode_notification(data)

    def test_decode_as_wrong_variant(self):
        with pytest.raises(InvalidResponseError, match="Expected EndAck"):
            decode_as(_frame("BBE564"), EndAck)


class TestTextHelpers:
    """Test ASCII and UTF-16LE helpers."""

    def test_extract_ascii(self):
        assert extract_ascii(b"\x00 abc\x7f\x80 ") == "abc"

    def test_utf16_skips_zero_units(self):
        assert decode_utf16le(b"a\x00\x00\x00b\x00") == "ab"

    def test_utf16_surrogate_pair(self):
        assert decode_utf16le("\U0001F480".encode("utf-16-le")) == "\U0001F480"

    def test_utf16_odd_trailing_byte(self):
        assert decode_utf16le(b"a\x00b") == "a"
