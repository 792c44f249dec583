import struct
from unittest.mock import Mock

import pytest

from modbustcp.client import Client
from modbustcp.devices import RegisterSpec
from modbustcp.error import (
    ModbusConnectionError,
    ModbusInvalidArgument,
    ModbusProtocolError,
    SessionClosedError,
    TruncatedFrameError,
    UnexpectedResponseError,
)
from modbustcp.server import Server
from modbustcp.type import ExceptionKind, RegisterKind, SessionState
from modbustcp.util import get_uint16, get_words

from .conftest import ip, reply


@pytest.mark.client
class TestClient:
    def test_client_initialization(self) -> None:
        client = Client()
        assert not client.get_connected()

    def test_operations_not_connected(self) -> None:
        client = Client()
        with pytest.raises(SessionClosedError):
            client.read_registers(1, RegisterKind.HOLDING, 0, 1)
        with pytest.raises(SessionClosedError):
            client.write_holding_registers(1, 0, [1])
        with pytest.raises(SessionClosedError):
            client.write_coil(1, 0, True)

    def test_invalid_arguments_checked_before_connection(self) -> None:
        client = Client()
        client.session = Mock()
        with pytest.raises(ModbusInvalidArgument):
            client.write_holding_registers(1, 0, list(range(200)))
        with pytest.raises(ModbusInvalidArgument):
            client.read_registers(1, RegisterKind.INPUT, 0, 0)
        client.session.exchange.assert_not_called()

    def test_connect_failure(self) -> None:
        with pytest.raises(ModbusConnectionError):
            Client().connect(ip, 1)

    def test_context_manager(self, testserver: Server) -> None:
        with Client().connect(ip, testserver.port) as client:
            assert client.get_connected()
        assert not client.get_connected()


@pytest.mark.client
class TestRegisterOperations:
    def test_read_holding_register(self, testclient: Client) -> None:
        data = testclient.read_registers(1, RegisterKind.HOLDING, 300, 1)
        assert isinstance(data, bytearray)
        assert data == bytearray([0x00, 0x64])
        assert get_uint16(data, 0) == 100

    def test_read_input_registers(self, testclient: Client) -> None:
        data = testclient.read_input_registers(255, 100, 2)
        assert get_words(data) == [ord("B"), 32]

    def test_read_holding_and_input_are_distinct(self, testclient: Client) -> None:
        assert testclient.read_holding_registers(1, 100, 1) == bytearray(2)
        assert testclient.read_input_registers(1, 100, 1) != bytearray(2)

    def test_write_then_read_back(self, testclient: Client) -> None:
        testclient.write_holding_registers(255, 528, [17, 0xBEEF])
        assert get_words(testclient.read_holding_registers(255, 528, 2)) == [17, 0xBEEF]

    def test_write_coil(self, testclient: Client, testserver: Server) -> None:
        testclient.write_coil(255, 402, True)
        assert testserver.get_coil(402) is True
        testclient.write_coil(255, 402, False)
        assert testserver.get_coil(402) is False

    def test_read_spec(self, testclient: Client) -> None:
        data = testclient.read_spec(1, RegisterSpec(101, 1, RegisterKind.INPUT))
        assert get_uint16(data, 0) == 32

    def test_illegal_data_address(self, testclient: Client) -> None:
        with pytest.raises(ModbusProtocolError) as excinfo:
            testclient.read_registers(1, RegisterKind.HOLDING, 5000, 1)
        assert excinfo.value.kind == ExceptionKind.ILLEGAL_DATA_ADDRESS
        assert excinfo.value.error_code == 2

    def test_session_survives_exception_response(self, testclient: Client) -> None:
        with pytest.raises(ModbusProtocolError):
            testclient.write_coil(1, 9000, True)
        assert testclient.get_connected()
        assert get_uint16(testclient.read_holding_registers(1, 300, 1), 0) == 100

    def test_many_sequential_requests(self, testclient: Client) -> None:
        for value in range(20):
            testclient.write_holding_registers(1, 10, [value])
            assert get_uint16(testclient.read_holding_registers(1, 10, 1), 0) == value


@pytest.mark.client
class TestResponseValidation:
    def test_read_returns_raw_bytes(self, scripted_device) -> None:
        device = scripted_device(reply(3, b"\x02\x00\x64"))
        with Client().connect(ip, device.port) as client:
            data = client.read_registers(1, RegisterKind.HOLDING, 300, 1)
        assert get_uint16(data, 0) == 100
        request = device.requests[0]
        assert request.function_code == 3
        assert struct.unpack(">HH", request.data) == (300, 1)

    def test_read_input_uses_function_code_4(self, scripted_device) -> None:
        device = scripted_device(reply(4, b"\x02\x00\x43"))
        with Client().connect(ip, device.port) as client:
            client.read_registers(255, RegisterKind.INPUT, 100, 1)
        assert device.requests[0].function_code == 4
        assert device.requests[0].unit_id == 255

    def test_read_wrong_byte_count(self, scripted_device) -> None:
        device = scripted_device(reply(3, b"\x04\x00\x64\x00\x00"))
        with Client().connect(ip, device.port) as client:
            with pytest.raises(UnexpectedResponseError):
                client.read_registers(1, RegisterKind.HOLDING, 300, 1)

    def test_exception_response(self, scripted_device) -> None:
        device = scripted_device(reply(0x83, b"\x02"))
        with Client().connect(ip, device.port) as client:
            with pytest.raises(ModbusProtocolError) as excinfo:
                client.read_registers(1, RegisterKind.HOLDING, 300, 1)
            assert client.session is not None
            assert client.session.state == SessionState.IDLE
        assert excinfo.value.kind == ExceptionKind.ILLEGAL_DATA_ADDRESS
        assert excinfo.value.error_code == 2
        assert excinfo.value.function_code == 3

    def test_unknown_exception_code(self, scripted_device) -> None:
        device = scripted_device(reply(0x90, b"\x42"))
        with Client().connect(ip, device.port) as client:
            with pytest.raises(ModbusProtocolError) as excinfo:
                client.write_holding_registers(1, 528, [5])
        assert excinfo.value.kind == ExceptionKind.UNKNOWN
        assert excinfo.value.error_code == 0x42

    def test_write_echo_matches(self, scripted_device) -> None:
        device = scripted_device(reply(16, struct.pack(">HH", 528, 1)))
        with Client().connect(ip, device.port) as client:
            client.write_holding_registers(1, 528, [5])
        assert device.requests[0].data == bytes([0x02, 0x10, 0x00, 0x01, 0x02, 0x00, 0x05])

    def test_write_echo_wrong_address(self, scripted_device) -> None:
        device = scripted_device(reply(16, struct.pack(">HH", 529, 1)))
        with Client().connect(ip, device.port) as client:
            with pytest.raises(UnexpectedResponseError):
                client.write_holding_registers(1, 528, [5])

    def test_write_echo_wrong_count(self, scripted_device) -> None:
        device = scripted_device(reply(16, struct.pack(">HH", 528, 2)))
        with Client().connect(ip, device.port) as client:
            with pytest.raises(UnexpectedResponseError):
                client.write_holding_registers(1, 528, [5])

    def test_coil_echo_wrong_value(self, scripted_device) -> None:
        device = scripted_device(reply(5, struct.pack(">HH", 402, 0x0000)))
        with Client().connect(ip, device.port) as client:
            with pytest.raises(UnexpectedResponseError):
                client.write_coil(1, 402, True)

    def test_coil_echo_wrong_address(self, scripted_device) -> None:
        device = scripted_device(reply(5, struct.pack(">HH", 400, 0xFF00)))
        with Client().connect(ip, device.port) as client:
            with pytest.raises(UnexpectedResponseError):
                client.write_coil(1, 402, True)

    def test_truncated_header_disconnects(self, scripted_device) -> None:
        device = scripted_device(lambda request: bytes(5))
        client = Client().connect(ip, device.port)
        with pytest.raises(TruncatedFrameError):
            client.read_registers(1, RegisterKind.HOLDING, 300, 1)
        assert not client.get_connected()
        with pytest.raises(SessionClosedError):
            client.read_registers(1, RegisterKind.HOLDING, 300, 1)
