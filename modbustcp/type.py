"""
Python equivalent for Modbus TCP specific types and constants.
"""

from enum import IntEnum
from typing import Union

RegisterValue = Union[int, float, str]

# framing
MAX_ADU_SIZE = 260
HEADER_SIZE = 8
MAX_DATA_SIZE = MAX_ADU_SIZE - HEADER_SIZE
PROTOCOL_ID = 0
EXCEPTION_FLAG = 0x80

# quantity limits per request
MAX_READ_COUNT = 125
MAX_WRITE_COUNT = 123

# coil values as transmitted on the wire
COIL_ON = 0xFF00
COIL_OFF = 0x0000

DEFAULT_PORT = 502

# Modbus devices are slow, never wait less than this many seconds
MIN_TIMEOUT = 10.0


class FunctionCode(IntEnum):
    READ_HOLDING_REGISTERS = 3
    READ_INPUT_REGISTERS = 4
    WRITE_SINGLE_COIL = 5
    WRITE_MULTIPLE_REGISTERS = 16


class RegisterKind(IntEnum):
    """Addressable register spaces. The value is the function code that reads the space."""

    HOLDING = FunctionCode.READ_HOLDING_REGISTERS
    INPUT = FunctionCode.READ_INPUT_REGISTERS


class ExceptionKind(IntEnum):
    """Modbus exception codes as returned in an exception response."""

    UNKNOWN = -1
    ILLEGAL_FUNCTION = 1
    ILLEGAL_DATA_ADDRESS = 2
    ILLEGAL_DATA_VALUE = 3
    SERVER_FAILURE = 4
    ACKNOWLEDGE = 5
    SERVER_BUSY = 6
    NEGATIVE_ACKNOWLEDGE = 7
    MEMORY_PARITY_ERROR = 8
    GATEWAY_PATH_UNAVAILABLE = 10
    GATEWAY_TARGET_FAILED_TO_RESPOND = 11


class SessionState(IntEnum):
    DISCONNECTED = 0
    IDLE = 1
    AWAITING_HEADER = 2
    AWAITING_BODY = 3
