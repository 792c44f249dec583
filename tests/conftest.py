import socket
import threading
from typing import Callable, List, Optional

import pytest

from modbustcp.client import Client
from modbustcp.protocol import LENGTH_OVERHEAD, Frame, decode_header, encode
from modbustcp.server import Server
from modbustcp.type import HEADER_SIZE, RegisterKind
from modbustcp.util import set_uint16

ip = "127.0.0.1"

Responder = Callable[[Frame], bytes]


def pytest_configure(config: pytest.Config) -> None:
    for marker in ("protocol", "error", "connection", "client", "server", "util", "devices", "cli"):
        config.addinivalue_line("markers", f"{marker}: tests for modbustcp.{marker}")


def reply(function_code: int, data: bytes) -> Responder:
    """Responder answering with ``function_code`` and ``data`` under the request's transaction id."""

    def respond(request: Frame) -> bytes:
        return encode(Frame(request.transaction_id, request.unit_id, function_code, data))

    return respond


def _recv_exact(conn: socket.socket, size: int) -> Optional[bytes]:
    data = bytearray()
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            return None
        data.extend(chunk)
    return bytes(data)


class ScriptedDevice:
    """Accepts one connection, answers each request with the next responder, then closes."""

    def __init__(self, responders: List[Responder]) -> None:
        self.responders = responders
        self.requests: List[Frame] = []
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.listener.bind((ip, 0))
        self.listener.listen(1)
        self.listener.settimeout(10.0)
        self.port = self.listener.getsockname()[1]
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self) -> None:
        try:
            conn, _ = self.listener.accept()
        except OSError:
            return
        with conn:
            conn.settimeout(10.0)
            for respond in self.responders:
                header_bytes = _recv_exact(conn, HEADER_SIZE)
                if header_bytes is None:
                    return
                header = decode_header(header_bytes)
                data = _recv_exact(conn, header.length - LENGTH_OVERHEAD)
                if data is None:
                    return
                request = Frame(header.transaction_id, header.unit_id, header.function_code, data)
                self.requests.append(request)
                conn.sendall(respond(request))

    def close(self) -> None:
        self.listener.close()
        self.thread.join(timeout=2.0)


@pytest.fixture
def scripted_device():
    devices = []

    def factory(*responders: Responder) -> ScriptedDevice:
        device = ScriptedDevice(list(responders))
        devices.append(device)
        return device

    yield factory
    for device in devices:
        device.close()


@pytest.fixture
def testserver():
    server = Server()

    holding = bytearray(2 * 1000)
    set_uint16(holding, 2 * 300, 100)
    server.register_area(RegisterKind.HOLDING, 0, holding)

    inputs = bytearray(2 * 200)
    set_uint16(inputs, 2 * 100, ord("B"))
    set_uint16(inputs, 2 * 101, 32)
    server.register_area(RegisterKind.INPUT, 0, inputs)

    server.register_coils(400, 10)
    server.start(0, host=ip)
    yield server
    server.stop()


@pytest.fixture
def testclient(testserver: Server):
    client = Client()
    client.connect(ip, testserver.port)
    yield client
    client.disconnect()
