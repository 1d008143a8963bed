"""
Packet builder for DSU server responses.

Provides functionality to:
- Pack the shared 11-byte controller information block
- Pack the 69-byte controller data block with neutral inputs and motion
- Build complete Version, Port and PadData response frames
"""

import struct
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

import numpy as np

from .protocol import (
    HEADER_SIZE,
    MAX_PROTOCOL_VERSION,
    MessageType,
    build_header,
    write_crc,
)
from .transform import PoseSample


SLOT_STATE_CONNECTED = 2
DEVICE_MODEL_FULL_GYRO = 2
CONNECTION_TYPE_NONE = 0

STICK_CENTER = 128

# Buttons (4), sticks (4), analog buttons (12)
NEUTRAL_INPUTS: Tuple[int, ...] = (
    (0, 0, 0, 0)
    + (STICK_CENTER,) * 4
    + (0,) * 12
)

CONTROLLER_INFO_FMT = "<BBBB6sB"
CONTROLLER_INFO_SIZE = struct.calcsize(CONTROLLER_INFO_FMT)  # 11

# connected, packet_number, inputs(20), touch(2 x 6), motion timestamp, accel(3), gyro(3)
CONTROLLER_DATA_FMT = "<BI20BBBHHBBHHQ6f"
CONTROLLER_DATA_SIZE = struct.calcsize(CONTROLLER_DATA_FMT)  # 69

VERSION_PAYLOAD_SIZE = 2
PORT_PAYLOAD_SIZE = CONTROLLER_INFO_SIZE + 1
PAD_DATA_PAYLOAD_SIZE = CONTROLLER_INFO_SIZE + CONTROLLER_DATA_SIZE


def to_float32(values: Iterable[float]) -> Tuple[float, ...]:
    """Round to single precision; magnitudes beyond float32 saturate to +/-inf."""
    with np.errstate(over="ignore"):
        return tuple(float(v) for v in np.asarray(list(values), dtype=np.float64).astype(np.float32))


def now_us() -> int:
    """Current wall-clock time in microseconds."""
    return time.time_ns() // 1000


@dataclass(frozen=True)
class ControllerInfo:
    """Shared controller description at the start of Port and PadData payloads."""
    slot: int = 0
    slot_state: int = SLOT_STATE_CONNECTED
    device_model: int = DEVICE_MODEL_FULL_GYRO
    connection_type: int = CONNECTION_TYPE_NONE
    mac_address: bytes = bytes(6)
    battery_status: int = 0

    def pack_into(self, buffer: bytearray, offset: int) -> int:
        """Write the block at offset; returns the offset just past it."""
        struct.pack_into(
            CONTROLLER_INFO_FMT,
            buffer,
            offset,
            self.slot,
            self.slot_state,
            self.device_model,
            self.connection_type,
            self.mac_address,
            self.battery_status,
        )
        return offset + CONTROLLER_INFO_SIZE

    @classmethod
    def unpack_from(cls, buffer: bytes, offset: int = 0) -> "ControllerInfo":
        slot, state, model, conn, mac, battery = struct.unpack_from(
            CONTROLLER_INFO_FMT, buffer, offset
        )
        return cls(slot, state, model, conn, mac, battery)


@dataclass(frozen=True)
class ControllerData:
    """
    Per-report controller state.

    Only the motion channels carry data; buttons, sticks and touch blocks are
    always neutral.
    """
    packet_number: int
    motion_timestamp: int  # microseconds
    accel: Tuple[float, float, float] = (0.0, 0.0, 0.0)  # x, y, z
    gyro: Tuple[float, float, float] = (0.0, 0.0, 0.0)  # pitch, yaw, roll
    connected: int = 1
    inputs: Tuple[int, ...] = field(default=NEUTRAL_INPUTS)

    @classmethod
    def from_sample(cls, packet_number: int, sample: PoseSample,
                    motion_timestamp: int) -> "ControllerData":
        """Map a pose sample onto the motion channels."""
        return cls(
            packet_number=packet_number,
            motion_timestamp=motion_timestamp,
            accel=(sample.x, sample.y, sample.z),
            gyro=(sample.pitch, sample.yaw, sample.roll),
        )

    def pack_into(self, buffer: bytearray, offset: int) -> int:
        struct.pack_into(
            CONTROLLER_DATA_FMT,
            buffer,
            offset,
            self.connected,
            self.packet_number & 0xFFFFFFFF,
            *self.inputs,
            0, 0, 0, 0,  # first touch: inactive
            0, 0, 0, 0,  # second touch: inactive
            self.motion_timestamp & 0xFFFFFFFFFFFFFFFF,
            *to_float32(self.accel),
            *to_float32(self.gyro),
        )
        return offset + CONTROLLER_DATA_SIZE

    @classmethod
    def unpack_from(cls, buffer: bytes, offset: int = 0) -> "ControllerData":
        values = struct.unpack_from(CONTROLLER_DATA_FMT, buffer, offset)
        connected, packet_number = values[0], values[1]
        inputs = tuple(values[2:22])
        # values[22:30] are the two touch blocks
        motion_timestamp = values[30]
        accel = tuple(values[31:34])
        gyro = tuple(values[34:37])
        return cls(
            packet_number=packet_number,
            motion_timestamp=motion_timestamp,
            accel=accel,
            gyro=gyro,
            connected=connected,
            inputs=inputs,
        )


VIRTUAL_CONTROLLER = ControllerInfo()


def build_version_response(server_id: int) -> bytes:
    """Version response: header + u16 max supported protocol version."""
    buffer = build_header(MessageType.VERSION, server_id, VERSION_PAYLOAD_SIZE)
    struct.pack_into("<H", buffer, HEADER_SIZE, MAX_PROTOCOL_VERSION)
    return bytes(write_crc(buffer))


def build_port_response(server_id: int,
                        info: ControllerInfo = VIRTUAL_CONTROLLER) -> bytes:
    """Port response: header + controller info + one reserved zero byte."""
    buffer = build_header(MessageType.PORTS, server_id, PORT_PAYLOAD_SIZE)
    info.pack_into(buffer, HEADER_SIZE)
    return bytes(write_crc(buffer))


def build_pad_data_response(
    server_id: int,
    packet_number: int,
    sample: PoseSample,
    motion_timestamp: Optional[int] = None,
    info: ControllerInfo = VIRTUAL_CONTROLLER,
) -> bytes:
    """
    PadData response carrying one pose sample.

    Args:
        server_id: Identifier written into the header
        packet_number: Per-client sequence number from the session registry
        sample: Motion to report (rates when bridging)
        motion_timestamp: Microseconds; defaults to now
        info: Controller description block
    """
    if motion_timestamp is None:
        motion_timestamp = now_us()

    buffer = build_header(MessageType.PAD_DATA, server_id, PAD_DATA_PAYLOAD_SIZE)
    offset = info.pack_into(buffer, HEADER_SIZE)
    ControllerData.from_sample(packet_number, sample, motion_timestamp).pack_into(buffer, offset)
    return bytes(write_crc(buffer))
