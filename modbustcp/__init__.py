"""
The python-modbustcp library.

Pure Python, blocking client for the Modbus TCP protocol: read input and
holding registers, write holding registers and write single coils.
"""

from importlib.metadata import version, PackageNotFoundError

from . import util
from .client import Client
from .connection import Session, connect
from .devices import DeviceConfig, RegisterSpec
from .error import (
    ExceptionResponse,
    ModbusConnectionError,
    ModbusError,
    ModbusInvalidArgument,
    ModbusProtocolError,
    ModbusTimeoutError,
    SessionClosedError,
    TruncatedFrameError,
    UnexpectedResponseError,
    map_exception,
)
from .server import Server
from .type import ExceptionKind, FunctionCode, RegisterKind, SessionState

__all__ = [
    "Client",
    "Session",
    "Server",
    "connect",
    "util",
    "DeviceConfig",
    "RegisterSpec",
    "ExceptionKind",
    "ExceptionResponse",
    "FunctionCode",
    "RegisterKind",
    "SessionState",
    "map_exception",
    "ModbusError",
    "ModbusConnectionError",
    "ModbusTimeoutError",
    "TruncatedFrameError",
    "ModbusProtocolError",
    "UnexpectedResponseError",
    "ModbusInvalidArgument",
    "SessionClosedError",
]

try:
    __version__ = version("python-modbustcp")
except PackageNotFoundError:
    __version__ = "0.0rc0"
