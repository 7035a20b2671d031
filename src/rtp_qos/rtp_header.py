#!/usr/bin/env python3
"""
RTP Fixed Header Decoder

Decodes the 12-byte fixed RTP header (RFC 3550) from a raw datagram.
Fields are read as inclusive big-endian bit ranges; nothing past bit 95
is inspected (CSRC list, extension header and payload are left alone).

    0                   1                   2                   3
    0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
   +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
   |V=2|P|X|  CC   |M|     PT      |       sequence number         |
   +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
   |                           timestamp                           |
   +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
   |           synchronization source (SSRC) identifier            |
   +=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+=+
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

RTP_HEADER_SIZE = 12  # bytes
RTP_HEADER_BITS = RTP_HEADER_SIZE * 8


class DecodeError(ValueError):
    """Datagram too short to hold a fixed RTP header."""


@dataclass(frozen=True)
class RTPHeader:
    """Parsed RTP header fields"""
    version: int
    padding: int
    extension: int
    csrc_count: int
    marker: int
    payload_type: int
    sequence: int
    timestamp: int
    ssrc: int


def get_header_value(packet: bytes, start_bit: int, end_bit: int) -> int:
    """
    Extract an unsigned value from an inclusive big-endian bit range.

    Args:
        packet: Raw datagram
        start_bit: First bit of the field (0 = MSB of byte 0)
        end_bit: Last bit of the field, inclusive

    Returns:
        Field value as an unsigned integer

    Raises:
        DecodeError: If the range reaches past the end of the packet
    """
    if start_bit < 0 or end_bit < start_bit:
        raise ValueError(f"Invalid bit range [{start_bit},{end_bit}]")
    if end_bit // 8 >= len(packet):
        raise DecodeError(
            f"Bit range [{start_bit},{end_bit}] exceeds {len(packet)}-byte packet"
        )

    length = end_bit - start_bit + 1
    result = 0
    for i in range(start_bit, end_bit + 1):
        byte_index = i // 8
        bit_shift = 7 - (i % 8)
        bit = (packet[byte_index] >> bit_shift) & 1
        result += bit << (length - (i - start_bit) - 1)
    return result


def decode_rtp_header(datagram: bytes) -> RTPHeader:
    """
    Decode the fixed RTP header of a datagram.

    Args:
        datagram: Raw UDP payload

    Returns:
        RTPHeader with all nine fixed fields

    Raises:
        DecodeError: If the datagram is shorter than 12 bytes
    """
    if len(datagram) < RTP_HEADER_SIZE:
        raise DecodeError(
            f"Datagram of {len(datagram)} bytes is shorter than the "
            f"{RTP_HEADER_SIZE}-byte RTP header"
        )

    return RTPHeader(
        version=get_header_value(datagram, 0, 1),
        padding=get_header_value(datagram, 2, 2),
        extension=get_header_value(datagram, 3, 3),
        csrc_count=get_header_value(datagram, 4, 7),
        marker=get_header_value(datagram, 8, 8),
        payload_type=get_header_value(datagram, 9, 15),
        sequence=get_header_value(datagram, 16, 31),
        timestamp=get_header_value(datagram, 32, 63),
        ssrc=get_header_value(datagram, 64, 95),
    )


def format_utc_timestamp(now: Optional[datetime] = None) -> str:
    """Bracketed-log timestamp, e.g. '2024-01-01 12:00:00' (UTC)."""
    if now is None:
        now = datetime.now(timezone.utc)
    return now.strftime('%Y-%m-%d %H:%M:%S')


def format_packet_line(header: RTPHeader, now: Optional[datetime] = None) -> str:
    """Format one packet-dump line for console and the packet log."""
    return (
        f"[{format_utc_timestamp(now)}] "
        f"Version: {header.version} "
        f"Padding: {header.padding} "
        f"Extension: {header.extension} "
        f"CSR: {header.csrc_count} "
        f"Marker: {header.marker} "
        f"PayloadType: {header.payload_type} "
        f"SequenceNumber:{header.sequence} "
        f"TimeStamp: {header.timestamp} "
        f"SsrcId: {header.ssrc}"
    )
