"""
Helpers to interpret raw register bytes.

Modbus transfers registers as big-endian 16-bit words. Values wider than one
register (32-bit integers, floats) span consecutive registers; most devices
send the high word first, some the low word first, hence ``swap_words``.
"""

import struct
from typing import List


def _two_words(bytearray_: bytearray, byte_index: int, swap_words: bool) -> bytes:
    data = bytes(bytearray_[byte_index : byte_index + 4])
    if len(data) != 4:
        raise ValueError(f"Need 4 bytes at index {byte_index}, buffer has {len(bytearray_)}")
    if swap_words:
        data = data[2:] + data[:2]
    return data


def get_uint16(bytearray_: bytearray, byte_index: int) -> int:
    """Get an unsigned 16-bit register value.

    Examples:
        >>> get_uint16(bytearray([0x00, 0x64]), 0)
            100
    """
    value: int = struct.unpack_from(">H", bytearray_, byte_index)[0]
    return value


def get_int16(bytearray_: bytearray, byte_index: int) -> int:
    """Get a signed 16-bit register value.

    Examples:
        >>> get_int16(bytearray([0xFF, 0xFE]), 0)
            -2
    """
    value: int = struct.unpack_from(">h", bytearray_, byte_index)[0]
    return value


def get_uint32(bytearray_: bytearray, byte_index: int, swap_words: bool = False) -> int:
    """Get an unsigned 32-bit value spread over two registers."""
    value: int = struct.unpack(">I", _two_words(bytearray_, byte_index, swap_words))[0]
    return value


def get_int32(bytearray_: bytearray, byte_index: int, swap_words: bool = False) -> int:
    """Get a signed 32-bit value spread over two registers."""
    value: int = struct.unpack(">i", _two_words(bytearray_, byte_index, swap_words))[0]
    return value


def get_float32(bytearray_: bytearray, byte_index: int, swap_words: bool = False) -> float:
    """Get an IEEE 754 single precision float spread over two registers.

    Args:
        bytearray_: register bytes as returned by a read.
        byte_index: byte offset of the first register.
        swap_words: the device sends the low word first.

    Returns:
        The float value.

    Examples:
        >>> get_float32(bytearray([0x45, 0x7A, 0x00, 0x00]), 0)
            4000.0
    """
    value: float = struct.unpack(">f", _two_words(bytearray_, byte_index, swap_words))[0]
    return value


def get_string(bytearray_: bytearray, byte_index: int, size: int) -> str:
    """Get an ASCII string packed two characters per register, trailing NULs removed.

    SunSpec devices use this for manufacturer, model and serial number.
    """
    data = bytes(bytearray_[byte_index : byte_index + size])
    return data.split(b"\x00", 1)[0].decode("ascii", errors="replace").rstrip()


def get_words(bytearray_: bytearray) -> List[int]:
    """Split register bytes into a list of unsigned 16-bit values."""
    if len(bytearray_) % 2:
        raise ValueError(f"Register data must have an even length, got {len(bytearray_)}")
    count = len(bytearray_) // 2
    return list(struct.unpack(f">{count}H", bytes(bytearray_)))


def float32_to_words(value: float, swap_words: bool = False) -> List[int]:
    """Encode a float into the two register values a write needs.

    Examples:
        >>> float32_to_words(4000.0)
            [17786, 0]
    """
    high, low = struct.unpack(">HH", struct.pack(">f", value))
    if swap_words:
        return [low, high]
    return [high, low]


def set_float32(bytearray_: bytearray, byte_index: int, value: float, swap_words: bool = False) -> bytearray:
    """Set a float spread over two registers in a register buffer."""
    high, low = float32_to_words(value, swap_words)
    struct.pack_into(">HH", bytearray_, byte_index, high, low)
    return bytearray_


def set_uint16(bytearray_: bytearray, byte_index: int, value: int) -> bytearray:
    """Set an unsigned 16-bit register value in a register buffer."""
    struct.pack_into(">H", bytearray_, byte_index, value)
    return bytearray_
