"""
Modbus TCP client.

Register operations on top of a :class:`~modbustcp.connection.Session`:
read input or holding registers, write multiple holding registers and write a
single coil. Register data is returned as raw big-endian bytes, use
:mod:`modbustcp.util` to interpret it.
"""

import struct
import logging
from types import TracebackType
from typing import TYPE_CHECKING, Optional, Sequence, Type

from .connection import Session
from .error import SessionClosedError, UnexpectedResponseError
from .protocol import build_read_request, build_write_coil_request, build_write_registers_request
from .type import COIL_OFF, COIL_ON, DEFAULT_PORT, MIN_TIMEOUT, RegisterKind

if TYPE_CHECKING:
    from .devices import DeviceConfig, RegisterSpec

logger = logging.getLogger(__name__)


class Client:
    """
    A Modbus TCP client talking to one device.

    Examples:
        >>> import modbustcp
        >>> client = modbustcp.Client()
        >>> client.connect("192.168.178.21", 502)
        >>> data = client.read_registers(255, modbustcp.RegisterKind.HOLDING, 300, 1)
        >>> modbustcp.util.get_uint16(data, 0)
        16
        >>> client.write_holding_registers(255, 528, [17])
        >>> client.disconnect()
    """

    def __init__(self) -> None:
        self.session: Optional[Session] = None

    @classmethod
    def from_config(cls, config: "DeviceConfig") -> "Client":
        """Create a client and connect it to the device described by ``config``."""
        return cls().connect(config.host, config.port, config.timeout)

    def connect(self, host: str, port: int = DEFAULT_PORT, timeout: float = MIN_TIMEOUT) -> "Client":
        """
        Connect to a Modbus TCP device.

        Args:
            host: device IP address
            port: TCP port (default 502)
            timeout: read and write timeout in seconds

        Returns:
            Self for method chaining
        """
        if self.session is not None:
            self.session.disconnect()
        self.session = Session(host, port, timeout)
        self.session.connect()
        return self

    def disconnect(self) -> None:
        """Disconnect from the device."""
        if self.session is not None:
            self.session.disconnect()

    def get_connected(self) -> bool:
        """Check if the client is connected to the device."""
        return self.session is not None and self.session.connected

    def _get_session(self) -> Session:
        if self.session is None:
            raise SessionClosedError("Not connected to a device")
        return self.session

    def read_registers(self, unit_id: int, kind: RegisterKind, base_address: int, count: int) -> bytearray:
        """
        Read a block of registers.

        Args:
            unit_id: unit identifier of the device
            kind: ``RegisterKind.INPUT`` (function 4) or ``RegisterKind.HOLDING`` (function 3)
            base_address: address of the first register
            count: number of registers

        Returns:
            ``2 * count`` bytes, one big-endian word per register.
        """
        request = build_read_request(unit_id, kind, base_address, count)
        logger.debug(f"read_registers: unit={unit_id}, kind={RegisterKind(kind).name}, address={base_address}, count={count}")

        _, body = self._get_session().exchange(request)

        if len(body) != 2 * count:
            raise UnexpectedResponseError(f"Expected {2 * count} bytes for {count} registers, got {len(body)}")
        return bytearray(body)

    def read_holding_registers(self, unit_id: int, base_address: int, count: int) -> bytearray:
        return self.read_registers(unit_id, RegisterKind.HOLDING, base_address, count)

    def read_input_registers(self, unit_id: int, base_address: int, count: int) -> bytearray:
        return self.read_registers(unit_id, RegisterKind.INPUT, base_address, count)

    def read_spec(self, unit_id: int, spec: "RegisterSpec") -> bytearray:
        """Read the register block described by a :class:`~modbustcp.devices.RegisterSpec`."""
        return self.read_registers(unit_id, spec.kind, spec.address, spec.count)

    def write_holding_registers(self, unit_id: int, base_address: int, values: Sequence[int]) -> None:
        """
        Write consecutive holding registers.

        Args:
            unit_id: unit identifier of the device
            base_address: address of the first register
            values: 16-bit register values

        Raises:
            ModbusInvalidArgument: too many values for one frame, checked before sending
            UnexpectedResponseError: the device echoed a different address or quantity
        """
        request = build_write_registers_request(unit_id, base_address, values)
        logger.debug(f"write_holding_registers: unit={unit_id}, address={base_address}, count={len(values)}")

        _, body = self._get_session().exchange(request)

        echo_address, echo_count = struct.unpack(">HH", body)
        if echo_address != base_address:
            raise UnexpectedResponseError(f"Incorrect base register returned: {echo_address}, expected {base_address}")
        if echo_count != len(values):
            raise UnexpectedResponseError(
                f"Incorrect number of registers written returned: {echo_count}, expected {len(values)}"
            )

    def write_coil(self, unit_id: int, address: int, value: bool) -> None:
        """
        Switch a single coil on or off.

        Raises:
            UnexpectedResponseError: the device echoed a different address or value
        """
        request = build_write_coil_request(unit_id, address, value)
        logger.debug(f"write_coil: unit={unit_id}, address={address}, value={value}")

        _, body = self._get_session().exchange(request)

        echo_address, echo_value = struct.unpack(">HH", body)
        expected = COIL_ON if value else COIL_OFF
        if echo_address != address:
            raise UnexpectedResponseError(f"Incorrect coil address returned: {echo_address}, expected {address}")
        if echo_value != expected:
            raise UnexpectedResponseError(f"Incorrect coil value returned: {echo_value:#06x}, expected {expected:#06x}")

    def __enter__(self) -> "Client":
        """Context manager entry."""
        return self

    def __exit__(
        self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        """Context manager exit."""
        self.disconnect()
