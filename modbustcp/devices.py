"""
Device configuration and known device register maps.

A :class:`DeviceConfig` tells the client where a device lives (host, port,
unit identifier) and which register blocks to read. Addresses are zero based
protocol addresses, as put on the wire.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Union

from . import util
from .type import DEFAULT_PORT, MIN_TIMEOUT, RegisterKind, RegisterValue

# number of registers each data type occupies
datatype_sizes = {
    "uint16": 1,
    "int16": 1,
    "uint32": 2,
    "int32": 2,
    "float32": 2,
}


@dataclass(frozen=True)
class RegisterSpec:
    """A block of registers and how to interpret it."""

    address: int
    count: int = 1
    kind: RegisterKind = RegisterKind.HOLDING
    datatype: str = "uint16"

    def __post_init__(self) -> None:
        if self.datatype != "string" and self.datatype not in datatype_sizes:
            raise ValueError(f"Unknown register data type: {self.datatype}")
        if self.datatype in datatype_sizes and self.count != datatype_sizes[self.datatype]:
            raise ValueError(f"{self.datatype} needs {datatype_sizes[self.datatype]} registers, got {self.count}")

    def decode(self, data: bytearray) -> RegisterValue:
        """Interpret the bytes read for this block."""
        if self.datatype == "uint16":
            return util.get_uint16(data, 0)
        if self.datatype == "int16":
            return util.get_int16(data, 0)
        if self.datatype == "uint32":
            return util.get_uint32(data, 0)
        if self.datatype == "int32":
            return util.get_int32(data, 0)
        if self.datatype == "float32":
            return util.get_float32(data, 0)
        return util.get_string(data, 0, 2 * self.count)


@dataclass
class DeviceConfig:
    """Where a device is reachable and what to read from it."""

    host: str
    port: int = DEFAULT_PORT
    unit_id: int = 1
    timeout: float = MIN_TIMEOUT
    registers: Dict[str, RegisterSpec] = field(default_factory=dict)
    coils: Dict[str, int] = field(default_factory=dict)


# Fronius Symo inverter, SunSpec float register map
FRONIUS_SYMO_MAX_POWER = 8200.0
FRONIUS_W = RegisterSpec(40091, 2, RegisterKind.HOLDING, "float32")
FRONIUS_WH = RegisterSpec(40101, 2, RegisterKind.HOLDING, "float32")
# immediate controls: WMaxLimPct, WMaxLimPct_WinTms, WMaxLimPct_RvrtTms, WMaxLimPct_RmpTms, WMaxLim_Ena
FRONIUS_WMAX_LIM_PCT = RegisterSpec(40242, 1, RegisterKind.HOLDING, "uint16")

FRONIUS_SYMO = DeviceConfig(
    host="192.168.178.31",
    unit_id=1,
    registers={
        "ac_power": FRONIUS_W,
        "lifetime_energy": FRONIUS_WH,
        "power_limit_pct": FRONIUS_WMAX_LIM_PCT,
    },
)

# Wallbe wallbox
WALLBE = DeviceConfig(
    host="192.168.178.21",
    unit_id=255,
    registers={
        "ev_status": RegisterSpec(100, 1, RegisterKind.INPUT),
        "max_current": RegisterSpec(101, 1, RegisterKind.INPUT),
        "current_setting": RegisterSpec(300, 1, RegisterKind.HOLDING),
        "desired_current": RegisterSpec(528, 1, RegisterKind.HOLDING),
    },
    coils={
        "charging_approved": 400,
        "available": 402,
    },
)

profiles = {
    "fronius-symo": FRONIUS_SYMO,
    "wallbe": WALLBE,
}


def power_limit_words(percent: float) -> List[int]:
    """
    Register values that set the inverter output limit with immediate effect.

    Writes WMaxLimPct (scaled by 100), no window, no revert timeout, no ramp and
    enables the limit.
    """
    if not 0 <= percent <= 100:
        raise ValueError(f"Power limit must be between 0 and 100 percent, got {percent}")
    return [int(percent * 100), 0, 0, 0, 1]


def ev_charging_in_progress(status: Union[int, str]) -> bool:
    """
    Interpret the wallbox EV status register.

    A: no vehicle, B: vehicle connected not charging, C: charging, D: charging
    with ventilation, E: no power, F: wallbox not available.
    """
    if isinstance(status, int):
        status = chr(status & 0xFF)
    return status in ("C", "D")
