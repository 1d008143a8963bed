"""
DSU wire protocol header codec.

Provides functionality to:
- Validate inbound DSU frames (magic, protocol version, length, CRC-32)
- Build outbound frame buffers with the header written and CRC zeroed
- Finalize a frame by computing and storing its CRC-32

All fields are little-endian. The 16-byte header proper is followed by the
4-byte message type, which the protocol counts as payload.
"""

import struct
import zlib
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


MAGIC_CLIENT = b"DSUC"
MAGIC_SERVER = b"DSUS"

MAX_PROTOCOL_VERSION = 1001

# magic, protocol_version, packet_size, crc32, sender_id, message_type
HEADER_FMT = "<4sHHIII"
HEADER_SIZE = struct.calcsize(HEADER_FMT)  # 20

CRC_OFFSET = 8
CRC_SIZE = 4

# packet_size excludes the first 16 bytes of the frame
PACKET_SIZE_BASE = 16
MESSAGE_TYPE_SIZE = 4

# Rejection reasons
REJECT_UNDERSIZED = "undersized"
REJECT_BAD_MAGIC = "bad_magic"
REJECT_UNSUPPORTED_VERSION = "unsupported_version"
REJECT_OVERSIZED = "oversized"
REJECT_CRC_MISMATCH = "crc_mismatch"


class MessageType(IntEnum):
    """DSU message types (requests and responses share the same code)."""
    VERSION = 0x100000
    PORTS = 0x100001
    PAD_DATA = 0x100002


class FrameError(ValueError):
    """Raised when an inbound frame fails validation."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        super().__init__(f"{reason}: {detail}" if detail else reason)


@dataclass(frozen=True)
class Header:
    """Decoded DSU header fields."""
    magic: bytes
    protocol_version: int
    packet_size: int
    crc32: int
    sender_id: int
    message_type: int

    @property
    def frame_length(self) -> int:
        """Total frame length implied by packet_size."""
        return self.packet_size + PACKET_SIZE_BASE


@dataclass(frozen=True)
class DecodedFrame:
    """A validated frame: header plus the bytes following the 20-byte header."""
    header: Header
    payload: bytes

    @property
    def sender_id(self) -> int:
        return self.header.sender_id

    @property
    def message_type(self) -> int:
        return self.header.message_type


def compute_crc(buffer: bytes) -> int:
    """CRC-32 (IEEE 802.3) of a buffer, as an unsigned 32-bit integer."""
    return zlib.crc32(buffer) & 0xFFFFFFFF


def decode_frame(data: bytes, magic: bytes = MAGIC_CLIENT) -> DecodedFrame:
    """
    Validate and decode an inbound frame.

    Checks run in order: header present, magic, protocol version, declared
    length, CRC. A datagram longer than the declared length is truncated to
    it before the CRC check.

    Args:
        data: Raw datagram bytes
        magic: Expected 4-byte magic (``DSUC`` for client requests)

    Returns:
        DecodedFrame with the (possibly truncated) payload

    Raises:
        FrameError: If any check fails; ``reason`` names the failed check
    """
    if len(data) < PACKET_SIZE_BASE:
        raise FrameError(REJECT_UNDERSIZED, f"{len(data)} bytes")

    if data[:4] != magic:
        raise FrameError(REJECT_BAD_MAGIC, repr(bytes(data[:4])))

    protocol_version, packet_size = struct.unpack_from("<HH", data, 4)
    if protocol_version > MAX_PROTOCOL_VERSION:
        raise FrameError(REJECT_UNSUPPORTED_VERSION, str(protocol_version))

    frame_length = packet_size + PACKET_SIZE_BASE
    if frame_length > len(data):
        raise FrameError(
            REJECT_OVERSIZED, f"declared {frame_length} > received {len(data)}"
        )

    buffer = bytearray(data[:frame_length])
    # The message type sits in the last 4 bytes of the 20-byte header
    if len(buffer) < HEADER_SIZE:
        raise FrameError(REJECT_UNDERSIZED, f"declared {frame_length} bytes")

    stored_crc = struct.unpack_from("<I", buffer, CRC_OFFSET)[0]
    buffer[CRC_OFFSET:CRC_OFFSET + CRC_SIZE] = bytes(CRC_SIZE)
    calculated_crc = compute_crc(buffer)
    if stored_crc != calculated_crc:
        raise FrameError(
            REJECT_CRC_MISMATCH,
            f"stored 0x{stored_crc:08x} calculated 0x{calculated_crc:08x}",
        )

    sender_id, message_type = struct.unpack_from("<II", buffer, 12)
    header = Header(
        magic=bytes(buffer[:4]),
        protocol_version=protocol_version,
        packet_size=packet_size,
        crc32=stored_crc,
        sender_id=sender_id,
        message_type=message_type,
    )
    return DecodedFrame(header=header, payload=bytes(buffer[HEADER_SIZE:]))


def parse_frame(data: bytes, magic: bytes = MAGIC_CLIENT) -> Optional[DecodedFrame]:
    """Like decode_frame, but returns None for a rejected frame."""
    try:
        return decode_frame(data, magic=magic)
    except FrameError:
        return None


def build_header(
    message_type: int,
    sender_id: int,
    payload_length: int,
    magic: bytes = MAGIC_SERVER,
    version: int = MAX_PROTOCOL_VERSION,
) -> bytearray:
    """
    Allocate a frame buffer and write its header.

    The returned buffer is ``HEADER_SIZE + payload_length`` bytes long with the
    payload region and the CRC field zeroed. Fill the payload, then call
    write_crc() once.

    Args:
        message_type: DSU message type code
        sender_id: Server or client identifier echoed in the header
        payload_length: Bytes following the 20-byte header
        magic: 4-byte magic (``DSUS`` for server responses)
        version: Protocol version to advertise
    """
    buffer = bytearray(HEADER_SIZE + payload_length)
    struct.pack_into(
        HEADER_FMT,
        buffer,
        0,
        magic,
        version & 0xFFFF,
        (payload_length + MESSAGE_TYPE_SIZE) & 0xFFFF,
        0,
        sender_id & 0xFFFFFFFF,
        int(message_type) & 0xFFFFFFFF,
    )
    return buffer


def write_crc(buffer: bytearray) -> bytearray:
    """Compute the CRC over the whole buffer (CRC field zeroed) and store it."""
    buffer[CRC_OFFSET:CRC_OFFSET + CRC_SIZE] = bytes(CRC_SIZE)
    struct.pack_into("<I", buffer, CRC_OFFSET, compute_crc(buffer))
    return buffer


def build_frame(
    message_type: int,
    sender_id: int,
    payload: bytes = b"",
    magic: bytes = MAGIC_SERVER,
    version: int = MAX_PROTOCOL_VERSION,
) -> bytes:
    """Build a complete, CRC-finalized frame around an arbitrary payload."""
    buffer = build_header(message_type, sender_id, len(payload), magic=magic, version=version)
    buffer[HEADER_SIZE:] = payload
    return bytes(write_crc(buffer))


def build_request(message_type: int, client_id: int, payload: bytes = b"",
                  version: int = MAX_PROTOCOL_VERSION) -> bytes:
    """Build a client-side (``DSUC``) request frame."""
    return build_frame(message_type, client_id, payload, magic=MAGIC_CLIENT, version=version)
