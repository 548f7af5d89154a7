import pytest

from skelly.exceptions import MalformedFrameError
from skelly.protocol.commands import (
    NAME_MARKER,
    PREAMBLE,
    CommandTag,
    build_chunk_payload,
    build_commit_command,
    build_data_chunk_command,
    build_delete_file_command,
    build_end_transfer_command,
    build_frame,
    build_name_block,
    build_play_file_command,
    build_query_command,
    build_set_action_command,
    build_set_eye_icon_command,
    build_set_rgb_command,
    build_set_volume_command,
    build_start_transfer_command,
    crc8,
    parse_command_frame,
)


class TestCrc8:
    """Test CRC-8 (reflected 0x8C, init 0)."""

    def test_empty_is_zero(self):
        assert crc8(b"") == 0

    def test_known_end_transfer_frame(self):
        """End-of-transfer frame captured from the vendor app."""
        assert build_end_transfer_command() == bytes.fromhex("AAC200000000000000004F")

    def test_frame_with_checksum_sums_to_zero(self):
        """Appending the CRC makes the checksum over the whole frame zero."""
        frame = build_frame(CommandTag.SET_VOLUME, "64")
        assert crc8(frame) == 0


class TestBuildFrame:
    """Test generic frame construction."""

    def test_query_padded_to_eight_bytes(self):
        frame = build_query_command(CommandTag.QUERY_FILE_LIST)
        assert frame[:2] == b"\xAA\xD0"
        assert frame[2:-1] == b"\x00" * 8
        assert len(frame) == 11

    def test_hex_payload_whitespace_and_case(self):
        assert build_frame(0xFA, "6 4") == build_frame(0xFA, "64") == build_frame(0xFA, b"\x64")
        assert build_frame(0xFA, "ab") == build_frame(0xFA, "AB")

    def test_long_payload_not_truncated(self):
        payload = bytes(range(20))
        frame = build_frame(0xC1, payload, min_payload=0)
        assert frame[2:-1] == payload

    def test_zero_padding_floor(self):
        frame = build_frame(0xC1, b"\x01", min_payload=0)
        assert frame == bytes([PREAMBLE, 0xC1, 0x01, crc8(bytes([PREAMBLE, 0xC1, 0x01]))])

    def test_odd_hex_rejected(self):
        with pytest.raises(MalformedFrameError, match="even"):
            build_frame(0xFA, "ABC")

    def test_non_hex_rejected(self):
        with pytest.raises(MalformedFrameError, match="Invalid hex"):
            build_frame(0xFA, "ZZ")

    def test_tag_out_of_range(self):
        with pytest.raises(MalformedFrameError):
            build_frame(0x100)

    def test_deterministic(self):
        assert build_set_volume_command(42) == build_set_volume_command(42)


class TestParseCommandFrame:
    """Test frame parsing and verification."""

    def test_parse_recovers_tag_and_payload(self):
        frame = build_frame(CommandTag.PLAY_PAUSE, "01")
        parsed = parse_command_frame(frame)
        assert parsed.tag == CommandTag.PLAY_PAUSE
        assert parsed.payload == b"\x01" + b"\x00" * 7
        assert parsed.to_bytes() == frame

    def test_bad_checksum(self):
        frame = bytearray(build_frame(CommandTag.PLAY_PAUSE, "01"))
        frame[-1] ^= 0xFF
        with pytest.raises(MalformedFrameError, match="Checksum"):
            parse_command_frame(bytes(frame))

    def test_bad_preamble(self):
        with pytest.raises(MalformedFrameError, match="preamble"):
            parse_command_frame(b"\xBB\xFA\x00\x00")

    def test_too_short(self):
        with pytest.raises(MalformedFrameError, match="too short"):
            parse_command_frame(b"\xAA")


class TestNameBlock:
    """Test per-file name blocks."""

    def test_empty_name(self):
        assert build_name_block("") == b"\x00"
        assert build_name_block("   ") == b"\x00"

    def test_name_block_layout(self):
        block = build_name_block("ab")
        assert block == bytes([6]) + NAME_MARKER + b"a\x00b\x00"


class TestTransferCommands:
    """Test transfer command layouts."""

    def test_start_transfer(self):
        frame = parse_command_frame(build_start_transfer_command(1234, 3, "a.mp3"))
        assert frame.tag == CommandTag.START_TRANSFER
        assert frame.payload[:4] == (1234).to_bytes(4, "big")
        assert frame.payload[4:6] == b"\x00\x03"
        assert frame.payload[6:8] == NAME_MARKER
        assert frame.payload[8:] == "a.mp3".encode("utf-16-le")

    def test_chunk_exact_bytes(self):
        payload = build_chunk_payload(258, b"xyz")
        assert payload == b"\x01\x02xyz"
        frame = parse_command_frame(build_data_chunk_command(payload))
        assert frame.tag == CommandTag.DATA_CHUNK
        assert frame.payload == payload

    def test_commit(self):
        frame = parse_command_frame(build_commit_command("b.mp3"))
        assert frame.tag == CommandTag.COMMIT_FILE
        assert frame.payload == NAME_MARKER + "b.mp3".encode("utf-16-le")


class TestSettingCommands:
    """Test setting and file command layouts."""

    def test_volume_range(self):
        with pytest.raises(ValueError, match="volume"):
            build_set_volume_command(256)

    def test_rgb_loop_with_file(self):
        frame = parse_command_frame(build_set_rgb_command(1, 2, 3, 0xFF, loop=True, cluster=7, name="x"))
        assert frame.payload == (
            b"\xFF\x01\x02\x03\x01" + b"\x00\x00\x00\x07" + bytes([4]) + NAME_MARKER + b"x\x00"
        )

    def test_eye_icon(self):
        frame = parse_command_frame(build_set_eye_icon_command(5))
        assert frame.tag == CommandTag.SET_EYE_ICON
        assert frame.payload == b"\x05\x00" + b"\x00" * 6

    def test_action(self):
        frame = parse_command_frame(build_set_action_command(0xFF, cluster=1))
        assert frame.payload[:7] == b"\xFF\x00\x00\x00\x00\x01\x00"

    def test_play_file(self):
        frame = parse_command_frame(build_play_file_command(3))
        assert frame.payload == b"\x00\x03\x01" + b"\x00" * 5

    def test_stop_file(self):
        frame = parse_command_frame(build_play_file_command(3, play=False))
        assert frame.payload[:3] == b"\x00\x03\x00"

    def test_delete_file(self):
        frame = parse_command_frame(build_delete_file_command(2, 0x01020304))
        assert frame.payload[:6] == b"\x00\x02\x01\x02\x03\x04"
