"""
Modbus TCP frame codec.

Handles encoding and decoding of Modbus application data units (ADU). An ADU
is an 8-byte header followed by the function specific data:

    transaction id  u16
    protocol id     u16, always 0
    length          u16, bytes following this field (unit id + function code + data)
    unit id         u8
    function code   u8

All multi-byte fields are big-endian. Nothing in this module does I/O.
"""

import struct
from dataclasses import dataclass
from typing import Dict, NamedTuple, Sequence

from .error import ModbusInvalidArgument, TruncatedFrameError
from .type import (
    COIL_OFF,
    COIL_ON,
    EXCEPTION_FLAG,
    HEADER_SIZE,
    MAX_ADU_SIZE,
    MAX_DATA_SIZE,
    MAX_READ_COUNT,
    PROTOCOL_ID,
    FunctionCode,
    RegisterKind,
)

HEADER_FORMAT = ">HHHBB"

# unit id and function code are counted by the length field
LENGTH_OVERHEAD = 2


class Header(NamedTuple):
    transaction_id: int
    protocol_id: int
    length: int
    unit_id: int
    function_code: int


@dataclass
class Frame:
    """A single Modbus TCP application data unit."""

    transaction_id: int
    unit_id: int
    function_code: int
    data: bytes = b""
    protocol_id: int = PROTOCOL_ID

    @property
    def length(self) -> int:
        """Value of the header length field."""
        return LENGTH_OVERHEAD + len(self.data)

    @property
    def size(self) -> int:
        """Total encoded size in bytes."""
        return HEADER_SIZE + len(self.data)


def _check_range(name: str, value: int, maximum: int) -> None:
    if not isinstance(value, int) or not 0 <= value <= maximum:
        raise ModbusInvalidArgument(f"{name} must be an integer between 0 and {maximum}, got {value!r}")


def encode(frame: Frame) -> bytes:
    """Serialize a frame into its wire representation.

    Args:
        frame: frame to encode.

    Returns:
        Header followed by the frame data.

    Raises:
        ModbusInvalidArgument: a field does not fit its width or the frame exceeds
            the maximum ADU size.
    """
    if frame.size > MAX_ADU_SIZE:
        raise ModbusInvalidArgument(f"Frame of {frame.size} bytes exceeds maximum ADU size of {MAX_ADU_SIZE} bytes")

    _check_range("transaction id", frame.transaction_id, 0xFFFF)
    _check_range("protocol id", frame.protocol_id, 0xFFFF)
    _check_range("unit id", frame.unit_id, 0xFF)
    _check_range("function code", frame.function_code, 0xFF)

    header = struct.pack(
        HEADER_FORMAT,
        frame.transaction_id,
        frame.protocol_id,
        frame.length,
        frame.unit_id,
        frame.function_code,
    )
    return header + bytes(frame.data)


def decode_header(buffer: bytes) -> Header:
    """Parse the 8-byte header at the start of ``buffer``.

    Raises:
        TruncatedFrameError: fewer than 8 bytes supplied.
    """
    if len(buffer) < HEADER_SIZE:
        raise TruncatedFrameError(f"Header needs {HEADER_SIZE} bytes, got {len(buffer)}")
    return Header(*struct.unpack(HEADER_FORMAT, bytes(buffer[:HEADER_SIZE])))


def decode(buffer: bytes) -> Frame:
    """Parse a complete frame, header and data."""
    header = decode_header(buffer)
    data_length = header.length - LENGTH_OVERHEAD
    if data_length < 0:
        raise TruncatedFrameError(f"Invalid length field: {header.length}")
    data = bytes(buffer[HEADER_SIZE : HEADER_SIZE + data_length])
    if len(data) < data_length:
        raise TruncatedFrameError(f"Frame announces {data_length} data bytes, got {len(data)}")
    return Frame(
        transaction_id=header.transaction_id,
        unit_id=header.unit_id,
        function_code=header.function_code,
        data=data,
        protocol_id=header.protocol_id,
    )


class BodyFormat(NamedTuple):
    """How the data of a successful response to a function code is framed."""

    byte_count_prefixed: bool
    fixed_size: int = 0


# reads answer with a byte count followed by the register bytes,
# writes echo address and quantity (or value) in four bytes
RESPONSE_BODY: Dict[int, BodyFormat] = {
    FunctionCode.READ_HOLDING_REGISTERS: BodyFormat(byte_count_prefixed=True),
    FunctionCode.READ_INPUT_REGISTERS: BodyFormat(byte_count_prefixed=True),
    FunctionCode.WRITE_SINGLE_COIL: BodyFormat(byte_count_prefixed=False, fixed_size=4),
    FunctionCode.WRITE_MULTIPLE_REGISTERS: BodyFormat(byte_count_prefixed=False, fixed_size=4),
}


def build_read_request(unit_id: int, kind: RegisterKind, base_address: int, count: int) -> Frame:
    """
    Build a read holding / input registers request.

    Args:
        unit_id: unit identifier of the addressed device
        kind: register space to read from
        base_address: address of the first register
        count: number of registers to read

    Returns:
        Request frame with transaction id 0, assigned by the session on exchange.
    """
    kind = RegisterKind(kind)
    _check_range("unit id", unit_id, 0xFF)
    _check_range("base address", base_address, 0xFFFF)
    if not isinstance(count, int) or not 1 <= count <= MAX_READ_COUNT:
        raise ModbusInvalidArgument(f"Register count must be between 1 and {MAX_READ_COUNT}, got {count}")

    data = struct.pack(">HH", base_address, count)
    return Frame(transaction_id=0, unit_id=unit_id, function_code=int(kind), data=data)


def build_write_registers_request(unit_id: int, base_address: int, values: Sequence[int]) -> Frame:
    """
    Build a write multiple holding registers request.

    Data layout: base address (u16), quantity (u16), byte count (u8), values (u16 each).
    """
    _check_range("unit id", unit_id, 0xFF)
    _check_range("base address", base_address, 0xFFFF)
    count = len(values)
    data_size = 5 + 2 * count
    if data_size > MAX_DATA_SIZE:
        raise ModbusInvalidArgument(f"Too many values: {count} registers do not fit in a {MAX_ADU_SIZE} byte frame")
    if count == 0:
        raise ModbusInvalidArgument("At least one register value is required")
    for value in values:
        _check_range("register value", value, 0xFFFF)

    data = struct.pack(f">HHB{count}H", base_address, count, 2 * count, *values)
    return Frame(
        transaction_id=0,
        unit_id=unit_id,
        function_code=FunctionCode.WRITE_MULTIPLE_REGISTERS,
        data=data,
    )


def build_write_coil_request(unit_id: int, address: int, value: bool) -> Frame:
    """Build a write single coil request. On is sent as 0xFF00, off as 0x0000."""
    _check_range("unit id", unit_id, 0xFF)
    _check_range("coil address", address, 0xFFFF)
    data = struct.pack(">HH", address, COIL_ON if value else COIL_OFF)
    return Frame(
        transaction_id=0,
        unit_id=unit_id,
        function_code=FunctionCode.WRITE_SINGLE_COIL,
        data=data,
    )


def build_exception_response(request: Frame, code: int) -> Frame:
    """Build the exception response a server sends back for ``request``."""
    return Frame(
        transaction_id=request.transaction_id,
        unit_id=request.unit_id,
        function_code=request.function_code | EXCEPTION_FLAG,
        data=bytes([code]),
    )
