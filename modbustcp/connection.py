"""
Modbus TCP transport session.

Owns one TCP connection to one device and performs the blocking
request/response exchange for a single frame pair. Exactly one request is in
flight at a time; the session is not safe for concurrent use.
"""

import socket
import struct
import logging
from dataclasses import replace
from types import TracebackType
from typing import Optional, Tuple, Type

from .error import (
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
from .protocol import LENGTH_OVERHEAD, RESPONSE_BODY, BodyFormat, Frame, Header, decode_header, encode
from .type import DEFAULT_PORT, EXCEPTION_FLAG, HEADER_SIZE, MIN_TIMEOUT, PROTOCOL_ID, SessionState

logger = logging.getLogger(__name__)


class Session:
    """
    A connection to a single Modbus TCP device.

    Lifecycle: ``DISCONNECTED`` until :meth:`connect` succeeds, then ``IDLE``
    between exchanges. During :meth:`exchange` the session moves through
    ``AWAITING_HEADER`` and ``AWAITING_BODY``. A timeout, short read or socket
    error tears the connection down and leaves the session ``DISCONNECTED``;
    there is no automatic reconnect.

    Examples:
        >>> session = Session("192.168.178.21", 502)
        >>> session.connect()
        >>> header, body = session.exchange(build_read_request(255, RegisterKind.INPUT, 100, 1))
        >>> session.disconnect()
    """

    def __init__(self, host: str, port: int = DEFAULT_PORT, timeout: float = MIN_TIMEOUT):
        """
        Initialize a session. No connection is made until :meth:`connect`.

        Args:
            host: device IP address or host name
            port: TCP port (default 502)
            timeout: read and write timeout in seconds, at least 10
        """
        self.host = host
        self.port = port
        self.timeout = timeout
        self.socket: Optional[socket.socket] = None
        self.state = SessionState.DISCONNECTED
        self._transaction_id = 0

    @property
    def connected(self) -> bool:
        return self.state != SessionState.DISCONNECTED

    def connect(self, timeout: Optional[float] = None) -> "Session":
        """
        Open the TCP connection.

        Args:
            timeout: overrides the timeout given at construction

        Returns:
            Self for method chaining
        """
        if timeout is not None:
            self.timeout = timeout
        if self.timeout < MIN_TIMEOUT:
            logger.warning(f"Timeout of {self.timeout}s is below the minimum, using {MIN_TIMEOUT}s")
            self.timeout = MIN_TIMEOUT

        if self.connected:
            self.disconnect()

        self.socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        # applies to connect, send and receive alike
        self.socket.settimeout(self.timeout)

        try:
            self.socket.connect((self.host, self.port))
        except OSError as e:
            self._close_socket()
            raise ModbusConnectionError(f"TCP connection to {self.host}:{self.port} failed: {e}")

        self.state = SessionState.IDLE
        logger.info(f"Connected to {self.host}:{self.port}")
        return self

    def disconnect(self) -> None:
        """Close the connection. Further exchanges raise :class:`SessionClosedError`."""
        if self.socket:
            self._close_socket()
            logger.info(f"Disconnected from {self.host}:{self.port}")
        self.state = SessionState.DISCONNECTED

    def next_transaction_id(self) -> int:
        """Return the transaction id for the next request and advance the counter, wrapping at 16 bits."""
        transaction_id = self._transaction_id
        self._transaction_id = (self._transaction_id + 1) & 0xFFFF
        return transaction_id

    def exchange(self, request: Frame) -> Tuple[Header, bytes]:
        """
        Send one request and read its response.

        The request is stamped with the next transaction id. For register reads the
        returned body is the register bytes without the byte count, for writes it is
        the four echo bytes.

        Args:
            request: request frame, its transaction id is overwritten

        Returns:
            Response header and body

        Raises:
            SessionClosedError: the session is not connected
            ModbusInvalidArgument: the request cannot be encoded, nothing was sent
            ModbusProtocolError: the device answered with an exception response
            ModbusTimeoutError: no response within the timeout
            TruncatedFrameError: the response ended early
            UnexpectedResponseError: the response does not belong to the request
        """
        body_format = RESPONSE_BODY.get(request.function_code)
        if body_format is None:
            raise ModbusInvalidArgument(f"Unsupported function code: {request.function_code}")

        # validate the frame before a transaction id is taken
        adu = bytearray(encode(replace(request, transaction_id=0)))

        if not self.connected:
            raise SessionClosedError(f"Session to {self.host}:{self.port} is closed")

        request.transaction_id = self.next_transaction_id()
        struct.pack_into(">H", adu, 0, request.transaction_id)

        try:
            self._send(bytes(adu))

            self.state = SessionState.AWAITING_HEADER
            header = decode_header(self._recv_exact(HEADER_SIZE, response_started=False))
            self._check_header(request, header)

            self.state = SessionState.AWAITING_BODY
            if header.function_code & EXCEPTION_FLAG:
                code = self._recv_exact(1)[0]
                if header.length != LENGTH_OVERHEAD + 1:
                    raise UnexpectedResponseError(
                        f"Length field {header.length} is invalid for an exception response"
                    )
                self.state = SessionState.IDLE
                raise ModbusProtocolError(map_exception(code), request.function_code)

            body, consumed = self._recv_body(body_format)
            if header.length != LENGTH_OVERHEAD + consumed:
                raise UnexpectedResponseError(
                    f"Length field {header.length} does not match {consumed} data bytes received"
                )
        except ModbusProtocolError:
            raise
        except ModbusError:
            self._teardown()
            raise

        self.state = SessionState.IDLE
        logger.debug(f"Received {HEADER_SIZE + consumed} bytes for transaction {header.transaction_id}")
        return header, body

    def _check_header(self, request: Frame, header: Header) -> None:
        if header.protocol_id != PROTOCOL_ID:
            raise UnexpectedResponseError(f"Invalid protocol id in response: {header.protocol_id}")
        if header.transaction_id != request.transaction_id:
            raise UnexpectedResponseError(
                f"Response transaction id {header.transaction_id} does not match request {request.transaction_id}"
            )
        if header.function_code & 0x7F != request.function_code:
            raise UnexpectedResponseError(
                f"Response function code {header.function_code} does not match request {request.function_code}"
            )

    def _recv_body(self, body_format: BodyFormat) -> Tuple[bytes, int]:
        """Read the data of a successful response. Returns the body and the number of bytes consumed."""
        if body_format.byte_count_prefixed:
            byte_count = self._recv_exact(1)[0]
            return self._recv_exact(byte_count), 1 + byte_count
        return self._recv_exact(body_format.fixed_size), body_format.fixed_size

    def _send(self, data: bytes) -> None:
        if self.socket is None:
            raise SessionClosedError("Not connected")
        try:
            self.socket.sendall(data)
            logger.debug(f"Sent {len(data)} bytes")
        except socket.timeout:
            raise ModbusTimeoutError(f"Send timeout after {self.timeout}s")
        except OSError as e:
            raise ModbusConnectionError(f"Send failed: {e}")

    def _recv_exact(self, size: int, response_started: bool = True) -> bytes:
        """
        Receive exactly the specified number of bytes.

        Args:
            size: number of bytes to receive
            response_started: part of the response was already received, so a
                timeout truncates the frame rather than meaning no answer at all

        Raises:
            ModbusTimeoutError: no byte of the response arrived in time
            TruncatedFrameError: the peer closed or went silent mid-frame
            ModbusConnectionError: socket error
        """
        if self.socket is None:
            raise SessionClosedError("Not connected")

        data = bytearray()
        while len(data) < size:
            try:
                chunk = self.socket.recv(size - len(data))
            except socket.timeout:
                if not data and not response_started:
                    raise ModbusTimeoutError(f"No response from {self.host}:{self.port} within {self.timeout}s")
                raise TruncatedFrameError(f"Receive timeout after {len(data)} of {size} bytes")
            except OSError as e:
                raise ModbusConnectionError(f"Receive error: {e}")
            if not chunk:
                raise TruncatedFrameError(f"Connection closed by peer after {len(data)} of {size} bytes")
            data.extend(chunk)

        return bytes(data)

    def _teardown(self) -> None:
        logger.warning(f"Dropping connection to {self.host}:{self.port} after failed exchange")
        self.disconnect()

    def _close_socket(self) -> None:
        if self.socket is None:
            return
        try:
            self.socket.close()
        except OSError as e:
            logger.debug(f"Error closing socket: {e}")
        finally:
            self.socket = None

    def __enter__(self) -> "Session":
        """Context manager entry."""
        return self

    def __exit__(
        self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        """Context manager exit."""
        self.disconnect()


def connect(host: str, port: int = DEFAULT_PORT, timeout: float = MIN_TIMEOUT) -> Session:
    """Open a session to a device."""
    return Session(host, port, timeout).connect()
