"""
Simulated Modbus TCP server.

Serves holding registers, input registers and coils from memory. Answers read
holding/input registers (3, 4), write single coil (5) and write multiple
registers (16) and replies with Modbus exception responses like a real device
would. Meant for tests and for trying the client without hardware.
"""

import socket
import struct
import threading
import time
import logging
from types import TracebackType
from typing import Dict, List, Optional, Tuple, Type

from . import util
from .error import ModbusConnectionError
from .protocol import LENGTH_OVERHEAD, Frame, build_exception_response, decode_header, encode
from .type import (
    COIL_OFF,
    COIL_ON,
    HEADER_SIZE,
    MAX_READ_COUNT,
    MAX_WRITE_COUNT,
    PROTOCOL_ID,
    ExceptionKind,
    FunctionCode,
    RegisterKind,
)

logger = logging.getLogger(__name__)


class Server:
    """
    In-memory Modbus TCP device.

    Examples:
        >>> import modbustcp
        >>> server = modbustcp.Server()
        >>> server.register_area(modbustcp.RegisterKind.HOLDING, 0, bytearray(200))
        >>> server.start(1502)
        >>> # ... connect clients
        >>> server.stop()
    """

    def __init__(self, unit_id: Optional[int] = None) -> None:
        """
        Initialize the server.

        Args:
            unit_id: only answer requests for this unit id, None answers all
        """
        self.unit_id = unit_id
        self.server_socket: Optional[socket.socket] = None
        self.server_thread: Optional[threading.Thread] = None
        self.running = False
        self.host = "127.0.0.1"
        self.port = 502

        # register areas: (kind, start address) -> register bytes
        self.areas: Dict[Tuple[RegisterKind, int], bytearray] = {}
        self.coils: Dict[int, bool] = {}
        self.area_lock = threading.Lock()

        self.clients: List[threading.Thread] = []
        self.client_lock = threading.Lock()
        self.client_count = 0
        self.request_count = 0

    def register_area(self, kind: RegisterKind, start: int, data: bytearray) -> None:
        """
        Register a block of registers.

        Args:
            kind: register space
            start: address of the first register in the block
            data: register bytes, two per register. Shared, not copied, so the
                caller sees writes and can change values while the server runs.
        """
        if len(data) % 2:
            raise ValueError("Register area must have an even number of bytes")
        if start + len(data) // 2 > 0x10000:
            raise ValueError("Register area exceeds the 16-bit address space")
        with self.area_lock:
            self.areas[(RegisterKind(kind), start)] = data
        logger.debug(f"Registered {RegisterKind(kind).name} area at {start}, {len(data) // 2} registers")

    def register_coils(self, start: int, count: int) -> None:
        """Register ``count`` coils from ``start``, all off."""
        with self.area_lock:
            for address in range(start, start + count):
                self.coils.setdefault(address, False)

    def get_coil(self, address: int) -> bool:
        return self.coils[address]

    def start(self, tcp_port: int = 502, host: str = "127.0.0.1") -> None:
        """
        Start listening in a background thread.

        Args:
            tcp_port: TCP port to listen on, 0 picks a free port
            host: interface to bind to
        """
        if self.running:
            raise ModbusConnectionError("Server is already running")

        self.host = host
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        try:
            self.server_socket.bind((host, tcp_port))
            self.server_socket.listen(5)
        except OSError as e:
            self.server_socket.close()
            self.server_socket = None
            raise ModbusConnectionError(f"Failed to start server: {e}")

        self.port = self.server_socket.getsockname()[1]
        self.running = True
        self.server_thread = threading.Thread(target=self._server_loop, daemon=True)
        self.server_thread.start()
        logger.info(f"Modbus server started on {self.host}:{self.port}")

    def stop(self) -> None:
        """Stop the server and wait for client threads to finish."""
        if not self.running:
            return

        self.running = False

        if self.server_socket:
            self.server_socket.close()
            self.server_socket = None

        if self.server_thread and self.server_thread.is_alive():
            self.server_thread.join(timeout=5.0)

        with self.client_lock:
            clients = self.clients[:]
        for client_thread in clients:
            if client_thread.is_alive():
                client_thread.join(timeout=2.0)

        logger.info("Modbus server stopped")

    def get_status(self) -> Tuple[str, int]:
        """Return the server status ("Running" or "Stopped") and the number of connected clients."""
        return ("Running" if self.running else "Stopped"), self.client_count

    def _server_loop(self) -> None:
        while self.running:
            # stop() clears the attribute from another thread
            server_socket = self.server_socket
            if server_socket is None:
                break
            try:
                server_socket.settimeout(1.0)
                client_socket, address = server_socket.accept()
            except socket.timeout:
                continue
            except OSError:
                if self.running:
                    logger.warning("Server socket error in accept loop")
                break

            logger.info(f"Client connected from {address}")
            client_thread = threading.Thread(target=self._handle_client, args=(client_socket, address), daemon=True)
            with self.client_lock:
                self.clients.append(client_thread)
                self.client_count += 1
            client_thread.start()

    def _handle_client(self, client_socket: socket.socket, address: Tuple[str, int]) -> None:
        client_socket.settimeout(1.0)
        try:
            while self.running:
                header_bytes = self._recv_exact(client_socket, HEADER_SIZE)
                if header_bytes is None:
                    break
                header = decode_header(header_bytes)
                if header.protocol_id != PROTOCOL_ID or header.length < LENGTH_OVERHEAD:
                    logger.warning(f"Dropping client {address}: invalid header {header}")
                    break
                data = self._recv_exact(client_socket, header.length - LENGTH_OVERHEAD)
                if data is None:
                    break

                request = Frame(header.transaction_id, header.unit_id, header.function_code, data)
                response = self.process_request(request)
                client_socket.sendall(encode(response))
        except OSError as e:
            logger.info(f"Client {address} connection error: {e}")
        finally:
            client_socket.close()
            with self.client_lock:
                current_thread = threading.current_thread()
                if current_thread in self.clients:
                    self.clients.remove(current_thread)
                self.client_count = max(0, self.client_count - 1)
            logger.info(f"Client {address} disconnected")

    def _recv_exact(self, client_socket: socket.socket, size: int) -> Optional[bytes]:
        """Receive exactly ``size`` bytes. Returns None when the peer closed or the server stops."""
        data = bytearray()
        while len(data) < size:
            try:
                chunk = client_socket.recv(size - len(data))
            except socket.timeout:
                if not self.running:
                    return None
                continue
            if not chunk:
                return None
            data.extend(chunk)
        return bytes(data)

    def process_request(self, request: Frame) -> Frame:
        """
        Build the response to a request.

        Requests for another unit are answered the way a gateway does when the
        target device is missing.
        """
        with self.client_lock:
            self.request_count += 1
        if self.unit_id is not None and request.unit_id != self.unit_id:
            logger.debug(f"No device with unit id {request.unit_id}")
            return build_exception_response(request, ExceptionKind.GATEWAY_TARGET_FAILED_TO_RESPOND)

        if request.function_code in (FunctionCode.READ_HOLDING_REGISTERS, FunctionCode.READ_INPUT_REGISTERS):
            return self._handle_read(request)
        elif request.function_code == FunctionCode.WRITE_MULTIPLE_REGISTERS:
            return self._handle_write_registers(request)
        elif request.function_code == FunctionCode.WRITE_SINGLE_COIL:
            return self._handle_write_coil(request)

        logger.warning(f"Unsupported function code: {request.function_code}")
        return build_exception_response(request, ExceptionKind.ILLEGAL_FUNCTION)

    def _find_area(self, kind: RegisterKind, address: int, count: int) -> Optional[Tuple[bytearray, int]]:
        """Find the area holding ``count`` registers from ``address``. Returns the area and the byte offset."""
        for (area_kind, start), data in self.areas.items():
            if area_kind == kind and start <= address and address + count <= start + len(data) // 2:
                return data, 2 * (address - start)
        return None

    def _handle_read(self, request: Frame) -> Frame:
        if len(request.data) != 4:
            return build_exception_response(request, ExceptionKind.ILLEGAL_DATA_VALUE)
        address, count = struct.unpack(">HH", request.data)
        if not 1 <= count <= MAX_READ_COUNT:
            return build_exception_response(request, ExceptionKind.ILLEGAL_DATA_VALUE)

        with self.area_lock:
            found = self._find_area(RegisterKind(request.function_code), address, count)
            if found is None:
                return build_exception_response(request, ExceptionKind.ILLEGAL_DATA_ADDRESS)
            area, offset = found
            values = bytes(area[offset : offset + 2 * count])

        logger.debug(f"Read {count} registers at {address}")
        return Frame(request.transaction_id, request.unit_id, request.function_code, bytes([len(values)]) + values)

    def _handle_write_registers(self, request: Frame) -> Frame:
        if len(request.data) < 5:
            return build_exception_response(request, ExceptionKind.ILLEGAL_DATA_VALUE)
        address, count, byte_count = struct.unpack(">HHB", request.data[:5])
        values = request.data[5:]
        if not 1 <= count <= MAX_WRITE_COUNT or byte_count != 2 * count or len(values) != byte_count:
            return build_exception_response(request, ExceptionKind.ILLEGAL_DATA_VALUE)

        with self.area_lock:
            found = self._find_area(RegisterKind.HOLDING, address, count)
            if found is None:
                return build_exception_response(request, ExceptionKind.ILLEGAL_DATA_ADDRESS)
            area, offset = found
            area[offset : offset + byte_count] = values

        logger.debug(f"Wrote {count} registers at {address}")
        return Frame(request.transaction_id, request.unit_id, request.function_code, struct.pack(">HH", address, count))

    def _handle_write_coil(self, request: Frame) -> Frame:
        if len(request.data) != 4:
            return build_exception_response(request, ExceptionKind.ILLEGAL_DATA_VALUE)
        address, value = struct.unpack(">HH", request.data)
        if value not in (COIL_ON, COIL_OFF):
            return build_exception_response(request, ExceptionKind.ILLEGAL_DATA_VALUE)

        with self.area_lock:
            if address not in self.coils:
                return build_exception_response(request, ExceptionKind.ILLEGAL_DATA_ADDRESS)
            self.coils[address] = value == COIL_ON

        logger.debug(f"Coil {address} set to {value == COIL_ON}")
        return Frame(request.transaction_id, request.unit_id, request.function_code, request.data)

    def __enter__(self) -> "Server":
        """Context manager entry."""
        return self

    def __exit__(
        self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        """Context manager exit."""
        self.stop()


def init_standard_values(server: Server) -> None:
    """Register the areas of the known device profiles and fill them with plausible values."""
    holding = bytearray(2 * 1000)
    util.set_uint16(holding, 2 * 300, 16)  # wallbox current setting
    util.set_uint16(holding, 2 * 528, 16)  # wallbox desired current
    server.register_area(RegisterKind.HOLDING, 0, holding)

    inputs = bytearray(2 * 200)
    util.set_uint16(inputs, 2 * 100, ord("C"))  # wallbox EV status: charging
    util.set_uint16(inputs, 2 * 101, 32)  # wallbox max current
    server.register_area(RegisterKind.INPUT, 0, inputs)

    # inverter SunSpec float map from 40000
    sunspec = bytearray(2 * 300)
    util.set_float32(sunspec, 2 * 91, 4000.0)  # W
    util.set_float32(sunspec, 2 * 101, 12345678.0)  # WH
    util.set_uint16(sunspec, 2 * 242, 10000)  # WMaxLimPct, 100.00 %
    server.register_area(RegisterKind.HOLDING, 40000, sunspec)

    server.register_coils(0, 1000)


def mainloop(tcp_port: int = 1502, init_values: bool = True) -> None:
    """
    Run a simulated server until interrupted.

    Args:
        tcp_port: port the server will listen on
        init_values: register the areas of the known device profiles
    """
    server = Server()
    if init_values:
        logger.info("Initializing with standard values")
        init_standard_values(server)

    server.start(tcp_port, host="0.0.0.0")

    try:
        logger.info(f"Modbus server running on port {server.port}")
        logger.info("Press Ctrl+C to stop")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Stopping server...")
    finally:
        server.stop()
