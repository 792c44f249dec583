"""
The :code:`__main__` module is used as an entrypoint when calling the module from the terminal using python -m flag.
It contains functions providing a commandline interface to the client and the simulated server.

Its :code:`main()` function is also exported as a console entrypoint.
"""

import logging
from dataclasses import replace
from typing import Optional, Tuple

try:
    import click
except ImportError as e:
    print(e)
    print("Try using 'pip install python-modbustcp[cli]'")
    exit()

from click.core import ParameterSource

from modbustcp import __version__, util
from modbustcp.client import Client
from modbustcp.devices import DeviceConfig, RegisterSpec, profiles
from modbustcp.error import ModbusError
from modbustcp.server import mainloop
from modbustcp.type import DEFAULT_PORT, MIN_TIMEOUT, RegisterKind

logger = logging.getLogger("modbustcp.cli")

formats = ("uint16", "int16", "uint32", "int32", "float32", "hex")


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(format="[%(levelname)s]: %(message)s", level=logging.DEBUG)
    else:
        logging.basicConfig(format="[%(levelname)s]: %(message)s", level=logging.INFO)


def _format_registers(data: bytearray, fmt: str) -> str:
    if fmt == "hex":
        return " ".join(f"0x{word:04X}" for word in util.get_words(data))
    if fmt == "uint16":
        return " ".join(str(word) for word in util.get_words(data))
    if fmt == "int16":
        return " ".join(str(util.get_int16(data, i)) for i in range(0, len(data), 2))
    getter = {"uint32": util.get_uint32, "int32": util.get_int32, "float32": util.get_float32}[fmt]
    return " ".join(str(getter(data, i)) for i in range(0, len(data) - 3, 4))


@click.group()
@click.option("-H", "--host", envvar="MODBUSTCP_HOST", help="Device IP address or host name.")
@click.option("-p", "--port", envvar="MODBUSTCP_PORT", default=DEFAULT_PORT, show_default=True, help="Device TCP port.")
@click.option("-u", "--unit", envvar="MODBUSTCP_UNIT", default=1, show_default=True, help="Unit identifier.")
@click.option(
    "-t", "--timeout", envvar="MODBUSTCP_TIMEOUT", default=MIN_TIMEOUT, show_default=True, help="Timeout in seconds."
)
@click.option("-v", "--verbose", is_flag=True, help="Also print debug-output.")
@click.version_option(__version__)
@click.help_option("-h", "--help")
@click.pass_context
def main(ctx: click.Context, host: Optional[str], port: int, unit: int, timeout: float, verbose: bool) -> None:
    """Talk to Modbus TCP devices."""
    _setup_logging(verbose)
    ctx.obj = DeviceConfig(host=host or "", port=port, unit_id=unit, timeout=timeout)


def _connect(config: DeviceConfig) -> Client:
    if not config.host:
        raise click.UsageError("No device host given, use --host or MODBUSTCP_HOST")
    logger.debug(f"Connecting to {config.host}:{config.port}, unit {config.unit_id}")
    try:
        return Client.from_config(config)
    except ModbusError as e:
        raise click.ClickException(str(e))


@main.command()
@click.argument("address", type=click.IntRange(0, 0xFFFF))
@click.argument("count", type=click.IntRange(1), default=1)
@click.option("--input", "input_registers", is_flag=True, help="Read input registers instead of holding registers.")
@click.option("-f", "--format", "fmt", type=click.Choice(formats), default="uint16", show_default=True)
@click.pass_obj
def read(config: DeviceConfig, address: int, count: int, input_registers: bool, fmt: str) -> None:
    """Read COUNT registers starting at ADDRESS."""
    kind = RegisterKind.INPUT if input_registers else RegisterKind.HOLDING
    with _connect(config) as client:
        try:
            data = client.read_registers(config.unit_id, kind, address, count)
        except ModbusError as e:
            raise click.ClickException(str(e))
    click.echo(_format_registers(data, fmt))


@main.command()
@click.argument("address", type=click.IntRange(0, 0xFFFF))
@click.argument("values", type=click.IntRange(0, 0xFFFF), nargs=-1, required=True)
@click.pass_obj
def write(config: DeviceConfig, address: int, values: Tuple[int, ...]) -> None:
    """Write VALUES to consecutive holding registers starting at ADDRESS."""
    with _connect(config) as client:
        try:
            client.write_holding_registers(config.unit_id, address, list(values))
        except ModbusError as e:
            raise click.ClickException(str(e))
    click.echo(f"Wrote {len(values)} register(s) at {address}")


@main.command()
@click.argument("address", type=click.IntRange(0, 0xFFFF))
@click.argument("state", type=click.Choice(["on", "off"]))
@click.pass_obj
def coil(config: DeviceConfig, address: int, state: str) -> None:
    """Switch the coil at ADDRESS on or off."""
    with _connect(config) as client:
        try:
            client.write_coil(config.unit_id, address, state == "on")
        except ModbusError as e:
            raise click.ClickException(str(e))
    click.echo(f"Coil {address} {state}")


@main.command()
@click.argument("name", type=click.Choice(sorted(profiles)))
@click.pass_context
def profile(ctx: click.Context, name: str) -> None:
    """Read every register of a known device profile.

    --host, --port and --unit override the profile when given on the command line.
    """
    config: DeviceConfig = ctx.obj
    device = profiles[name]
    overrides = {}
    for option, attribute in (("host", "host"), ("port", "port"), ("unit", "unit_id"), ("timeout", "timeout")):
        if ctx.parent is not None and ctx.parent.get_parameter_source(option) != ParameterSource.DEFAULT:
            overrides[attribute] = getattr(config, attribute)
    device = replace(device, **overrides)

    with _connect(device) as client:
        for register_name, spec in device.registers.items():
            click.echo(f"{register_name}: {_read_value(client, device.unit_id, spec)}")


def _read_value(client: Client, unit_id: int, spec: RegisterSpec) -> str:
    try:
        return str(spec.decode(client.read_spec(unit_id, spec)))
    except ModbusError as e:
        raise click.ClickException(str(e))


@main.command()
@click.option("-p", "--port", default=1502, show_default=True, help="Port the server will listen on.")
def server(port: int) -> None:
    """Start a simulated Modbus TCP device with the known profiles' registers."""
    mainloop(port, init_values=True)


if __name__ == "__main__":
    main()
