"""Sensor readings and fixed information of amdgpu devices."""

from __future__ import annotations

import math
import re
from functools import partial
from gettext import gettext as _
from pathlib import Path
from typing import Callable, Optional, Union

from .amd_assignables import _write
from .amd_utils import (
    AMDGPUData,
    PciData,
    Sensor,
    from_uevent_file,
    query_sensor,
    query_vram_total,
    query_vram_usage,
)
from .crypto import md5
from .device import (
    Assignable,
    AssignmentArgument,
    AssignmentError,
    AssignmentFailure,
    DeviceNode,
    DynamicReadable,
    Range,
    ReadableValue,
    ReadFailure,
    StaticReadable,
)
from .utils import file_contents, has_readable_value

PCI_IDS_PATHS = (
    Path("/usr/share/hwdata/pci.ids"),
    Path("/usr/share/misc/pci.ids"),
    Path("/usr/share/pci.ids"),
)
AMD_PCI_VENDOR = "1002"

_MICRO = 1_000_000
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _read_int(path: Union[str, Path]) -> Optional[int]:
    contents = file_contents(path)
    if contents is None:
        return None
    match = _LEADING_INT.match(contents)
    return int(match.group(1)) if match else None


def _per_thousand(value: int) -> int:
    # Integer division truncating toward zero
    return int(value / 1000)


def _sensor_nodes(
    data: AMDGPUData,
    sensor: Sensor,
    name: str,
    unit: str,
    hash_key: str,
    convert: Callable[[int], ReadableValue] = lambda value: value,
) -> list[DeviceNode]:
    def read() -> ReadableValue:
        return convert(query_sensor(data, sensor))

    if not has_readable_value(read):
        return []
    return [
        DeviceNode(
            name=name,
            interface=DynamicReadable(read, unit),
            hash=md5(data.identifier + hash_key),
        )
    ]


def get_temperature(data: AMDGPUData) -> list[DeviceNode]:
    """GPU temperature in °C."""
    # millicelsius -> celsius
    return _sensor_nodes(
        data, Sensor.GPU_TEMP, _("Temperature"), _("°C"), "Temperature", lambda v: v // 1000
    )


def get_power_limit(data: AMDGPUData) -> list[DeviceNode]:
    """Power cap setting in W."""
    hwmon = Path(data.hwmon_path)
    minimum = _read_int(hwmon / "power1_cap_min")
    if minimum is None:
        return []
    maximum = _read_int(hwmon / "power1_cap_max")
    if maximum is None:
        return []
    # uW -> W
    value_range = Range(minimum / _MICRO, maximum / _MICRO)
    path = hwmon / "power1_cap"

    def current() -> Optional[AssignmentArgument]:
        value = _read_int(path)
        return None if value is None else value / _MICRO

    def assign(value: AssignmentArgument) -> None:
        if isinstance(value, bool) or not isinstance(value, float):
            raise AssignmentFailure(AssignmentError.INVALID_TYPE)
        if value not in value_range:
            raise AssignmentFailure(AssignmentError.OUT_OF_RANGE)
        # W -> uW
        _write(path, str(math.floor(value * _MICRO + 0.5)))

    return [
        DeviceNode(
            name=_("Power Limit"),
            interface=Assignable(assign, value_range, current, _("W")),
            hash=md5(data.identifier + "Power Limit"),
        )
    ]


def get_power_usage(data: AMDGPUData) -> list[DeviceNode]:
    """Average power usage in W."""
    return _sensor_nodes(data, Sensor.GPU_AVG_POWER, _("Power Usage"), _("W"), "Power Usage")


def get_core_clock_read(data: AMDGPUData) -> list[DeviceNode]:
    """Current core clock in MHz."""
    return _sensor_nodes(data, Sensor.GFX_SCLK, _("Core Clock"), _("MHz"), "Core Clock")


def get_memory_clock_read(data: AMDGPUData) -> list[DeviceNode]:
    """Current memory clock in MHz."""
    return _sensor_nodes(data, Sensor.GFX_MCLK, _("Memory Clock"), _("MHz"), "Memory Clock")


def get_voltage_read(data: AMDGPUData) -> list[DeviceNode]:
    """Core voltage in mV; the northbridge voltage is preferred when readable."""
    chosen: Optional[Sensor] = None
    for sensor in (Sensor.VDDGFX, Sensor.VDDNB):
        if has_readable_value(partial(query_sensor, data, sensor)):
            chosen = sensor
    if chosen is None:
        return []
    return [
        DeviceNode(
            name=_("Core Voltage"),
            interface=DynamicReadable(partial(query_sensor, data, chosen), _("mV")),
            hash=md5(data.identifier + "Core Voltage"),
        )
    ]


def get_core_utilization(data: AMDGPUData) -> list[DeviceNode]:
    """GPU load in percent."""
    return _sensor_nodes(
        data, Sensor.GPU_LOAD, _("Core Utilization"), _("%"), "Core Utilization"
    )


def get_memory_utilization(data: AMDGPUData) -> list[DeviceNode]:
    """Memory controller load in percent."""
    path = Path(data.hwmon_path) / "mem_busy_percent"

    def read() -> ReadableValue:
        value = _read_int(path)
        if value is None:
            raise ReadFailure()
        return value

    if not has_readable_value(read):
        return []
    return [
        DeviceNode(
            name=_("Memory Utilization"),
            interface=DynamicReadable(read, _("%")),
            hash=md5(data.identifier + "Memory Utilization"),
        )
    ]


def _threshold_nodes(data: AMDGPUData, filename: str, name: str) -> list[DeviceNode]:
    value = _read_int(Path(data.hwmon_path) / filename)
    if value is None:
        return []
    # millicelsius -> celsius
    return [
        DeviceNode(
            name=_(name),
            interface=StaticReadable(_per_thousand(value), _("°C")),
            hash=md5(data.identifier + name),
        )
    ]


def get_slowdown_temperature(data: AMDGPUData) -> list[DeviceNode]:
    """Temperature at which the GPU throttles."""
    return _threshold_nodes(data, "temp1_crit", "Slowdown Temperature")


def get_shutdown_temperature(data: AMDGPUData) -> list[DeviceNode]:
    """Temperature at which the GPU shuts down."""
    return _threshold_nodes(data, "temp1_emergency", "Shutdown Temperature")


def get_used_vram(data: AMDGPUData) -> list[DeviceNode]:
    """Used video memory in MB."""

    def read() -> ReadableValue:
        # B -> MB
        return query_vram_usage(data) // _MICRO

    if not has_readable_value(read):
        return []
    return [
        DeviceNode(
            name=_("Used Memory"),
            interface=DynamicReadable(read, _("MB")),
            hash=md5(data.identifier + "Used VRAM"),
        )
    ]


def get_total_vram(data: AMDGPUData) -> list[DeviceNode]:
    """Total video memory in MB."""
    try:
        total = query_vram_total(data)
    except ReadFailure:
        return []
    return [
        DeviceNode(
            name="Total Memory",
            interface=StaticReadable(total // _MICRO, _("MB")),
            hash=md5(data.identifier + "Total VRAM"),
        )
    ]


def _hwdata_name(pci_ids: str, pci: PciData) -> Optional[str]:
    """AMD board name from a pci.ids database: subsystem name, else device name."""
    wanted_subsystem = pci.subsystem.replace(":", " ").lower()
    in_vendor = False
    in_device = False
    device_name: Optional[str] = None
    subsystem_name: Optional[str] = None
    for line in pci_ids.splitlines():
        if not line.strip() or line.startswith("#"):
            continue
        if not line.startswith("\t"):
            if in_vendor:
                break
            in_vendor = line.split(None, 1)[0].lower() == AMD_PCI_VENDOR
            continue
        if not in_vendor:
            continue
        if line.startswith("\t\t"):
            if in_device:
                fields = line.strip().split(None, 2)
                if len(fields) == 3 and f"{fields[0]} {fields[1]}".lower() == wanted_subsystem:
                    subsystem_name = fields[2].strip()
                    break
            continue
        if in_device:
            break
        ident, _sep, name = line.strip().partition(" ")
        in_device = ident.lower() == pci.device.lower()
        if in_device:
            device_name = name.strip()
    name = subsystem_name or device_name
    return f"AMD {name}" if name else None


def _hwdata_gpu_name(data: AMDGPUData) -> Optional[str]:
    pci = from_uevent_file(data.device_filename)
    if pci is None:
        return None
    for path in PCI_IDS_PATHS:
        contents = file_contents(path)
        if contents:
            return _hwdata_name(contents, pci)
    return None


def get_gpu_name(data: AMDGPUData) -> list[DeviceNode]:
    """The GPU's own node, named from the PCI database or the driver."""
    name = _hwdata_gpu_name(data)
    if name is None:
        marketing_name = getattr(data.handle, "marketing_name", None)
        name = marketing_name() if callable(marketing_name) else None
    if not name:
        return []
    return [DeviceNode(name=name, interface=None, hash=md5(data.identifier))]