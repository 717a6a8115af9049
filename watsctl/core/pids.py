"""OBD-II Mode 01 PID table and capability bitmask interpretation.

Bit order follows SAE J1979: the first byte's most significant bit flags PID
0x01, so table position ``i`` is read from character ``i`` of the MSB-first
bit string (integer bit ``31 - i``).
"""

from __future__ import annotations

from collections.abc import Mapping

from watsctl.core.errors import MetricSelectionError
from watsctl.core.model import CapabilityBitmask, CapabilitySet, MetricDescriptor

_PID_NAMES = (
    "Monitor status since DTCs cleared",
    "Freeze DTC",
    "Fuel system status",
    "Calculated engine load",
    "Engine coolant temperature",
    "Short term fuel trim (bank 1)",
    "Long term fuel trim (bank 1)",
    "Short term fuel trim (bank 2)",
    "Long term fuel trim (bank 2)",
    "Fuel pressure",
    "Intake manifold absolute pressure",
    "Engine speed",
    "Vehicle speed",
    "Timing advance",
    "Intake air temperature",
    "Mass air flow rate",
    "Throttle position",
    "Commanded secondary air status",
    "Oxygen sensors present (2 banks)",
    "Oxygen sensor 1",
    "Oxygen sensor 2",
    "Oxygen sensor 3",
    "Oxygen sensor 4",
    "Oxygen sensor 5",
    "Oxygen sensor 6",
    "Oxygen sensor 7",
    "Oxygen sensor 8",
    "OBD standards this vehicle conforms to",
    "Oxygen sensors present (4 banks)",
    "Auxiliary input status",
    "Run time since engine start",
    "PIDs supported [21 - 40]",
)

METRICS: tuple[MetricDescriptor, ...] = tuple(
    MetricDescriptor(name=name, code=f"{position + 1:02X}", position=position)
    for position, name in enumerate(_PID_NAMES)
)

_BY_NAME = {metric.name.lower(): metric for metric in METRICS}
_BY_CODE = {metric.code: metric for metric in METRICS}


def lookup(name_or_code: str) -> MetricDescriptor:
    """Resolve a metric by name (case-insensitive) or two-digit PID code."""
    key = name_or_code.strip()
    metric = _BY_NAME.get(key.lower()) or _BY_CODE.get(key.upper())
    if metric is None:
        raise MetricSelectionError(
            f"Unknown metric '{name_or_code}'. Use 'watsctl pids' to list known metrics."
        )
    return metric


def interpret(bitmask: CapabilityBitmask) -> CapabilitySet:
    if len(bitmask.bits) != len(METRICS):
        raise ValueError(f"Capability bitmask must have {len(METRICS)} bits, got {len(bitmask.bits)}")
    return CapabilitySet(
        flags=tuple((metric.name, bitmask.bits[metric.position] == "1") for metric in METRICS)
    )


def encode(capabilities: Mapping[str, bool]) -> CapabilityBitmask:
    return CapabilityBitmask(
        bits="".join("1" if capabilities.get(metric.name, False) else "0" for metric in METRICS)
    )
