"""
Modbus error handling and exception classes.

Maps Modbus exception codes to Python exceptions with meaningful messages.
"""

from dataclasses import dataclass
from typing import Optional

from .type import ExceptionKind


class ModbusError(Exception):
    """Base exception for all Modbus TCP errors."""

    def __init__(self, message: str, error_code: Optional[int] = None):
        super().__init__(message)
        self.error_code = error_code


class ModbusConnectionError(ModbusError):
    """Raised when the TCP connection to a device cannot be established or breaks."""

    pass


class ModbusTimeoutError(ModbusError):
    """Raised when a device does not answer within the configured timeout."""

    pass


class TruncatedFrameError(ModbusError):
    """Raised when the stream ends or times out in the middle of a frame."""

    pass


class UnexpectedResponseError(ModbusError):
    """Raised when a response does not match the request it answers."""

    pass


class ModbusInvalidArgument(ModbusError, ValueError):
    """Raised before any I/O when a request cannot be encoded."""

    pass


class SessionClosedError(ModbusError):
    """Raised when an operation is attempted on a disconnected session."""

    pass


exception_descriptions = {
    ExceptionKind.ILLEGAL_FUNCTION: "Illegal function",
    ExceptionKind.ILLEGAL_DATA_ADDRESS: "Illegal data address",
    ExceptionKind.ILLEGAL_DATA_VALUE: "Illegal data value",
    ExceptionKind.SERVER_FAILURE: "Server failure",
    ExceptionKind.ACKNOWLEDGE: "Acknowledge",
    ExceptionKind.SERVER_BUSY: "Server busy",
    ExceptionKind.NEGATIVE_ACKNOWLEDGE: "Negative acknowledge",
    ExceptionKind.MEMORY_PARITY_ERROR: "Memory parity error",
    ExceptionKind.GATEWAY_PATH_UNAVAILABLE: "Gateway path unavailable",
    ExceptionKind.GATEWAY_TARGET_FAILED_TO_RESPOND: "Gateway target device failed to respond",
}


@dataclass(frozen=True)
class ExceptionResponse:
    """An exception reported by a device, with the raw code it sent."""

    kind: ExceptionKind
    code: int

    @property
    def description(self) -> str:
        if self.kind == ExceptionKind.UNKNOWN:
            return f"Unknown exception code: {self.code:#04x}"
        return exception_descriptions[self.kind]


class ModbusProtocolError(ModbusError):
    """Raised when a device answers with a Modbus exception response."""

    def __init__(self, exception: ExceptionResponse, function_code: Optional[int] = None):
        message = exception.description
        if function_code is not None:
            message = f"Function {function_code}: {message}"
        super().__init__(message, exception.code)
        self.exception = exception
        self.function_code = function_code

    @property
    def kind(self) -> ExceptionKind:
        return self.exception.kind


def map_exception(code: int) -> ExceptionResponse:
    """Translate a one-byte exception code into an :class:`ExceptionResponse`.

    Unrecognised codes are not an error: they map to ``ExceptionKind.UNKNOWN``
    and keep the raw code for diagnostics.

    Examples:
        >>> map_exception(2).kind
        <ExceptionKind.ILLEGAL_DATA_ADDRESS: 2>
        >>> map_exception(0x42)
        ExceptionResponse(kind=<ExceptionKind.UNKNOWN: -1>, code=66)
    """
    try:
        kind = ExceptionKind(code)
    except ValueError:
        kind = ExceptionKind.UNKNOWN
    return ExceptionResponse(kind, code)
