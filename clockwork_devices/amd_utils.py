"""Parsing of amdgpu power-play tables and discovery of amdgpu devices."""

from __future__ import annotations

import array
import fcntl
import os
import re
import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Optional, Union

from .device import Range, ReadFailure
from .utils import file_contents

DRM_DIR_NAME = "/dev/dri"
DRM_RENDER_MINOR_NAME = "renderD"
AMDGPU_NAME = "amdgpu"
SYSFS_DRM_DIR = Path("/sys/class/drm")
PP_TABLE_FILENAME = "pp_od_clk_voltage"

# amdgpu info query ids
AMDGPU_INFO_VRAM_USAGE = 0x10
AMDGPU_INFO_VRAM_GTT = 0x14
AMDGPU_INFO_DEV_INFO = 0x16
AMDGPU_INFO_SENSOR = 0x1D

AMDGPU_VRAM_TYPE_GDDR6 = 9

_DEV_INFO_SIZE = 256
_DEV_INFO_DEVICE_ID_OFFSET = 0
_DEV_INFO_VRAM_TYPE_OFFSET = 176

_IOC_WRITE = 1
_IOC_READ = 2
_DRM_IOCTL_BASE = ord("d")
_DRM_COMMAND_BASE = 0x40
_DRM_AMDGPU_INFO = 0x05

_INFO_REQUEST_FORMAT = "=QII16s"
_VERSION_FORMAT = "@iiiNPNPNP"


def _ioc(direction: int, number: int, size: int) -> int:
    return (direction << 30) | (size << 16) | (_DRM_IOCTL_BASE << 8) | number


DRM_IOCTL_VERSION = _ioc(_IOC_READ | _IOC_WRITE, 0x00, struct.calcsize(_VERSION_FORMAT))
DRM_IOCTL_AMDGPU_INFO = _ioc(
    _IOC_WRITE, _DRM_COMMAND_BASE + _DRM_AMDGPU_INFO, struct.calcsize(_INFO_REQUEST_FORMAT)
)


class PPTableType(Enum):
    """Layout of the pp_od_clk_voltage table."""

    VEGA10 = "vega10"
    NAVI = "navi"
    SMU13 = "smu13"  # RDNA 3
    VEGA20_OTHER = "vega20_other"  # has at least clock limits


class Sensor(IntEnum):
    """amdgpu sensor ids for :func:`query_sensor`."""

    GFX_SCLK = 0x1
    GFX_MCLK = 0x2
    GPU_TEMP = 0x3
    GPU_LOAD = 0x4
    GPU_AVG_POWER = 0x5
    VDDNB = 0x6
    VDDGFX = 0x7


@dataclass(frozen=True)
class VFPoint:
    """A voltage-frequency point."""

    voltage: int
    clock: int


@dataclass
class AMDGPUData:
    """What is known about one amdgpu device.

    ``handle`` answers ``query(query_id, size, sensor=0) -> bytes`` and raises
    OSError when the query fails.
    """

    hwmon_path: Path
    dev_path: Path
    handle: Any
    pci_id: str
    device_filename: str
    identifier: str
    pp_table_type: Optional[PPTableType] = None


@dataclass(frozen=True)
class PciData:
    """PCI device and subsystem ids, lower case."""

    device: str
    subsystem: str


class _DrmDevice:
    """An open DRM render node answering amdgpu info queries."""

    def __init__(self, fd: int) -> None:
        self.fd = fd

    def query(self, query: int, size: int, sensor: int = 0) -> bytes:
        out = array.array("B", bytes(size))
        address, _ = out.buffer_info()
        union = struct.pack("=I", sensor).ljust(16, b"\0")
        request = bytearray(struct.pack(_INFO_REQUEST_FORMAT, address, size, query, union))
        fcntl.ioctl(self.fd, DRM_IOCTL_AMDGPU_INFO, request, True)
        return out.tobytes()

    def close(self) -> None:
        os.close(self.fd)


def _drm_driver_name(fd: int) -> str:
    name = array.array("B", bytes(64))
    address, _ = name.buffer_info()
    request = bytearray(struct.pack(_VERSION_FORMAT, 0, 0, 0, len(name), address, 0, 0, 0, 0))
    fcntl.ioctl(fd, DRM_IOCTL_VERSION, request, True)
    name_len = struct.unpack(_VERSION_FORMAT, request)[3]
    return name.tobytes()[: min(name_len, len(name))].decode("utf-8", errors="replace")


_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _stoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    if match is None:
        raise ValueError(f"no integer at start of {text!r}")
    return int(match.group(1))


def _lines(contents: str) -> list[str]:
    return [line for line in contents.split("\n") if line]


def _words(line: str) -> list[str]:
    return [word for word in line.split(" ") if word]


def _pp_table(data: AMDGPUData) -> Optional[str]:
    return file_contents(Path(data.dev_path) / PP_TABLE_FILENAME)


def pstate_section_lines(header: str, contents: str) -> list[str]:
    """Lines of the section after the first line containing ``header``."""
    lines = _lines(contents)
    start = next((i + 1 for i, line in enumerate(lines) if header in line), None)
    if start is None:
        return []
    section = []
    for line in lines[start:]:
        if not line[0].isdigit():
            # Another section has started
            break
        section.append(line)
    return section


def pstate_section_lines_with_read(header: str, data: AMDGPUData) -> list[str]:
    """Like :func:`pstate_section_lines`, reading the device's table."""
    contents = _pp_table(data)
    if contents is None:
        return []
    return pstate_section_lines(header, contents)


def parse_pstate_range_line(title: str, contents: str) -> Optional[Range]:
    """Range from a line such as ``MCLK:     625Mhz        930Mhz``."""
    for line in _lines(contents):
        if line.startswith(title):
            words = _words(line)
            if len(words) >= 3:
                return Range(_stoi(words[1]), _stoi(words[2]))
    return None


def parse_pstate_range_line_with_read(title: str, data: AMDGPUData) -> Optional[Range]:
    """Like :func:`parse_pstate_range_line`, reading the device's table."""
    contents = _pp_table(data)
    if contents is None:
        return None
    return parse_pstate_range_line(title, contents)


def speed_range_from_contents(contents: str) -> Optional[Range]:
    """Allowed fan speed range of an RX 7000 fan curve file."""
    return parse_pstate_range_line(
        "FAN_CURVE(fan_speed)", contents.replace("fan speed", "fan_speed")
    )


def temp_range_from_contents(contents: str) -> Optional[Range]:
    """Allowed temperature range of an RX 7000 fan curve file."""
    return parse_pstate_range_line(
        "FAN_CURVE(hotspot_temp)", contents.replace("hotspot temp", "hotspot_temp")
    )


def fan_curve_temps_from_contents(contents: str) -> list[int]:
    """Temperatures of the fan curve points; empty if any point is malformed."""
    temps = []
    for line in pstate_section_lines("OD_FAN_CURVE", contents):
        value = parse_line_value(line)
        if value is None:
            return []
        temps.append(value)
    return temps


def parse_line_value_pair(line: str) -> Optional[tuple[int, int]]:
    """Second and third words of ``line`` as integers."""
    words = _words(line)
    if len(words) >= 3:
        return _stoi(words[1]), _stoi(words[2])
    return None


def parse_line_value(line: str) -> Optional[int]:
    """Second word of ``line`` as an integer."""
    words = _words(line)
    if len(words) >= 2:
        return _stoi(words[1])
    return None


def vf_point(section: str, index: int, table: str) -> Optional[VFPoint]:
    """The ``index``th voltage-frequency point of ``section``."""
    lines = pstate_section_lines(section, table)
    if not 0 <= index < len(lines):
        return None
    pair = parse_line_value_pair(lines[index])
    if pair is None:
        return None
    clock, voltage = pair
    return VFPoint(voltage=voltage, clock=clock)


def vf_point_with_read(section: str, index: int, data: AMDGPUData) -> Optional[VFPoint]:
    """Like :func:`vf_point`, reading the device's table."""
    contents = _pp_table(data)
    if contents is None:
        return None
    return vf_point(section, index, contents)


def from_pp_table_contents(contents: str) -> Optional[PPTableType]:
    """Detect the table layout from its contents."""
    clock_section = pstate_section_lines("OD_SCLK", contents)
    if not clock_section:
        return None
    first_line = clock_section[0]
    # Vega 10 has the voltage-frequency curve labeled OD_SCLK
    if parse_line_value_pair(first_line) is not None:
        return PPTableType.VEGA10
    # On Vega 20 it's a section of single values
    if parse_line_value(first_line) is not None:
        first = parse_pstate_range_line("VDDC_CURVE_VOLT[0]", contents)
        fourth = parse_pstate_range_line("VDDC_CURVE_VOLT[3]", contents)
        if first is not None and fourth is None:
            return PPTableType.NAVI
        if first is not None and fourth is not None:
            return PPTableType.SMU13
        return PPTableType.VEGA20_OTHER
    return None


def _device_info(data: AMDGPUData) -> Optional[bytes]:
    try:
        return data.handle.query(AMDGPU_INFO_DEV_INFO, _DEV_INFO_SIZE)
    except OSError:
        return None


def from_render_d_file(path: Union[str, Path], gpu_index: int) -> Optional[AMDGPUData]:
    """Open a render node and describe it if it is driven by amdgpu."""
    path = Path(path)
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return None
    device = _DrmDevice(fd)
    try:
        if AMDGPU_NAME not in _drm_driver_name(fd):
            raise OSError("not an amdgpu device")
        filename = path.name
        dev_path = SYSFS_DRM_DIR / filename / "device"
        hwmon_path = next(
            (entry for entry in sorted((dev_path / "hwmon").iterdir()) if "hwmon" in entry.name),
            None,
        )
        if hwmon_path is None:
            raise OSError("no hwmon directory")
        info = device.query(AMDGPU_INFO_DEV_INFO, _DEV_INFO_SIZE)
    except OSError:
        device.close()
        return None

    (device_id,) = struct.unpack_from("=I", info, _DEV_INFO_DEVICE_ID_OFFSET)
    contents = file_contents(dev_path / PP_TABLE_FILENAME)
    table_type = from_pp_table_contents(contents) if contents is not None else None
    return AMDGPUData(
        hwmon_path=hwmon_path,
        dev_path=dev_path,
        handle=device,
        pci_id=str(device_id),
        device_filename=filename,
        identifier=f"{device_id}{gpu_index}",
        pp_table_type=table_type,
    )


def from_filesystem(drm_dir: Union[str, Path] = DRM_DIR_NAME) -> list[AMDGPUData]:
    """All amdgpu render nodes in ``drm_dir``, indexed in the order found."""
    found: list[AMDGPUData] = []
    for entry in sorted(Path(drm_dir).iterdir()):
        if DRM_RENDER_MINOR_NAME in str(entry):
            data = from_render_d_file(entry, len(found))
            if data is not None:
                found.append(data)
    return found


def _is_gddr6(data: AMDGPUData) -> bool:
    info = _device_info(data)
    if info is None:
        return False
    (vram_type,) = struct.unpack_from("=I", info, _DEV_INFO_VRAM_TYPE_OFFSET)
    return vram_type == AMDGPU_VRAM_TYPE_GDDR6


def to_memory_clock(controller_clock: int, data: AMDGPUData) -> int:
    """Memory clock for a memory controller clock (doubled on GDDR6)."""
    return controller_clock * 2 if _is_gddr6(data) else controller_clock


def to_controller_clock(memory_clock: int, data: AMDGPUData) -> int:
    """Memory controller clock for a memory clock (halved on GDDR6)."""
    return int(memory_clock / 2) if _is_gddr6(data) else memory_clock


def query_sensor(data: AMDGPUData, sensor: Sensor) -> int:
    """Raw sensor reading; raises ReadFailure if unavailable."""
    try:
        raw = data.handle.query(AMDGPU_INFO_SENSOR, 4, int(sensor))
    except OSError as error:
        raise ReadFailure() from error
    return struct.unpack_from("=I", raw)[0]


def query_vram_usage(data: AMDGPUData) -> int:
    """Used video memory in bytes; raises ReadFailure if unavailable."""
    try:
        raw = data.handle.query(AMDGPU_INFO_VRAM_USAGE, 8)
    except OSError as error:
        raise ReadFailure() from error
    return struct.unpack_from("=Q", raw)[0]


def query_vram_total(data: AMDGPUData) -> int:
    """Total video memory in bytes; raises ReadFailure if unavailable."""
    try:
        raw = data.handle.query(AMDGPU_INFO_VRAM_GTT, 24)
    except OSError as error:
        raise ReadFailure() from error
    return struct.unpack_from("=Q", raw)[0]


def _parse_uevent(contents: str) -> Optional[PciData]:
    lines = _lines(contents)
    if len(lines) <= 5:
        return None
    id_words = [w for w in re.split(r"[=:]", lines[2]) if w]
    subsys_words = [w for w in lines[3].split("=") if w]
    if len(id_words) > 2 and len(subsys_words) > 1:
        return PciData(device=id_words[2].lower(), subsystem=subsys_words[1].lower())
    return None


def from_uevent_file(device_filename: str) -> Optional[PciData]:
    """PCI ids from the device's uevent file."""
    contents = file_contents(SYSFS_DRM_DIR / device_filename / "device" / "uevent")
    if contents is None:
        return None
    return _parse_uevent(contents)