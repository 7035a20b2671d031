import unittest
import struct
from datetime import datetime, timezone
from pathlib import Path

# Adjust path to import the actual classes
import sys
src_path = str(Path(__file__).parent.parent / 'src')
if src_path not in sys.path:
    sys.path.append(src_path)

from rtp_qos.rtp_header import (
    RTPHeader, DecodeError, decode_rtp_header, get_header_value, format_packet_line
)


def build_header(b0: int, b1: int, sequence: int, timestamp: int, ssrc: int) -> bytes:
    return struct.pack('!BBHII', b0, b1, sequence, timestamp, ssrc)


class TestHeaderValue(unittest.TestCase):
    def test_single_bits_are_big_endian(self):
        self.assertEqual(get_header_value(b'\x80', 0, 0), 1)
        self.assertEqual(get_header_value(b'\x80', 7, 7), 0)
        self.assertEqual(get_header_value(b'\x01', 7, 7), 1)

    def test_range_spanning_bytes(self):
        # bits 4..11 of 0x0FF0 -> 0xFF
        self.assertEqual(get_header_value(b'\x0f\xf0', 4, 11), 0xFF)
        self.assertEqual(get_header_value(b'\x12\x34', 0, 15), 0x1234)

    def test_range_past_end_is_decode_error(self):
        with self.assertRaises(DecodeError):
            get_header_value(b'\x00\x00', 8, 16)

    def test_inverted_range_rejected(self):
        with self.assertRaises(ValueError):
            get_header_value(b'\x00\x00', 5, 3)


class TestDecodeRTPHeader(unittest.TestCase):
    def test_version_two(self):
        header = decode_rtp_header(build_header(0b10000000, 0, 1, 2, 3))
        self.assertEqual(header.version, 2)
        self.assertEqual(header.padding, 0)
        self.assertEqual(header.extension, 0)
        self.assertEqual(header.csrc_count, 0)

    def test_all_fields_hand_computed(self):
        # V=2 P=1 X=1 CC=5 | M=1 PT=97
        data = build_header(0b10110101, 0b11100001, 0xBEEF, 0xDEADBEEF, 0x12345678)
        self.assertEqual(decode_rtp_header(data), RTPHeader(
            version=2, padding=1, extension=1, csrc_count=5,
            marker=1, payload_type=97, sequence=48879,
            timestamp=3735928559, ssrc=305419896,
        ))

    def test_unsigned_32_bit_fields(self):
        header = decode_rtp_header(build_header(0x80, 0, 0xFFFF, 0xFFFFFFFF, 0xFFFFFFFF))
        self.assertEqual(header.sequence, 65535)
        self.assertEqual(header.timestamp, 2**32 - 1)
        self.assertEqual(header.ssrc, 2**32 - 1)

    def test_payload_is_ignored(self):
        base = build_header(0x80, 0x60, 100, 16000, 42)
        self.assertEqual(decode_rtp_header(base), decode_rtp_header(base + b'\xff' * 200))

    def test_short_datagram(self):
        for size in (0, 1, 11):
            with self.subTest(size=size):
                with self.assertRaises(DecodeError):
                    decode_rtp_header(b'\x80' * size)

    def test_decode_error_is_value_error(self):
        self.assertTrue(issubclass(DecodeError, ValueError))


class TestPacketLine(unittest.TestCase):
    def test_format(self):
        header = RTPHeader(version=2, padding=0, extension=0, csrc_count=0, marker=1,
                           payload_type=33, sequence=1234, timestamp=567890, ssrc=42)
        now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        self.assertEqual(
            format_packet_line(header, now),
            "[2024-01-02 03:04:05] Version: 2 Padding: 0 Extension: 0 CSR: 0 Marker: 1 "
            "PayloadType: 33 SequenceNumber:1234 TimeStamp: 567890 SsrcId: 42"
        )


if __name__ == '__main__':
    unittest.main()
