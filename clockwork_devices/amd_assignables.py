"""Assignable settings backed by the amdgpu pp_od_clk_voltage table."""

from __future__ import annotations

import os
import re
from enum import Enum
from gettext import gettext as _
from pathlib import Path
from typing import Callable, Optional, Union

from .amd_utils import (
    PP_TABLE_FILENAME,
    AMDGPUData,
    parse_line_value,
    pstate_section_lines,
    to_controller_clock,
    to_memory_clock,
    vf_point_with_read,
)
from .device import (
    Assignable,
    AssignmentArgument,
    AssignmentError,
    AssignmentFailure,
    Enumeration,
    Range,
)
from .utils import file_contents, has_enum

PERFORMANCE_LEVEL_FILENAME = "power_dpm_force_performance_level"

PERFORMANCE_LEVELS = [
    Enumeration(_("Automatic"), 0),
    Enumeration(_("Lowest"), 1),
    Enumeration(_("Highest"), 2),
    Enumeration(_("Manual"), 3),
    Enumeration(_("Base Levels"), 4),
    Enumeration(_("Lowest Core Clock"), 5),
    Enumeration(_("Lowest Memory Clock"), 6),
    Enumeration(_("Highest Clocks"), 7),
]

PERFORMANCE_LEVEL_SYSFS_NAMES = (
    "auto",
    "low",
    "high",
    "manual",
    "profile_standard",
    "profile_min_sclk",
    "profile_min_mclk",
    "profile_peak",
)

MANUAL_PERFORMANCE_LEVEL = 3


class VoltFreqType(Enum):
    """Kind of voltage-frequency point, with its command letter and table section."""

    MEMORY_PSTATE = ("m", "OD_MCLK")
    CORE_PSTATE = ("s", "OD_SCLK")
    CORE_VF_CURVE = ("vc", "OD_VDDC_CURVE")

    def __init__(self, type_string: str, section_header: str) -> None:
        self.type_string = type_string
        self.section_header = section_header


class SingleAssignableType(Enum):
    """Kind of single clock limit, with its command letter and table section."""

    CORE_CLOCK = ("s", "OD_SCLK")
    MEMORY_CLOCK = ("m", "OD_MCLK")

    def __init__(self, type_string: str, section_header: str) -> None:
        self.type_string = type_string
        self.section_header = section_header


def _pp_table_path(data: AMDGPUData) -> Path:
    return Path(data.dev_path) / PP_TABLE_FILENAME


def _require_int(value: AssignmentArgument) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise AssignmentFailure(AssignmentError.INVALID_TYPE)
    return value


def _require_in_range(value: AssignmentArgument, value_range: Range) -> int:
    target = _require_int(value)
    if target not in value_range:
        raise AssignmentFailure(AssignmentError.OUT_OF_RANGE)
    return target


def _require_writable(path: Union[str, Path]) -> None:
    path = Path(path)
    target = path if path.exists() else path.parent
    if not os.access(target, os.W_OK):
        raise AssignmentFailure(AssignmentError.UNKNOWN_ERROR)


def _write(path: Union[str, Path], *pieces: str) -> None:
    try:
        with open(path, "w", encoding="utf-8") as file:
            for piece in pieces:
                file.write(piece)
    except OSError as error:
        raise AssignmentFailure(AssignmentError.UNKNOWN_ERROR) from error


def set_performance_level(value: AssignmentArgument, data: AMDGPUData) -> None:
    """Force the performance level to the enumeration key ``value``."""
    path = Path(data.dev_path) / PERFORMANCE_LEVEL_FILENAME
    _require_writable(path)
    key = _require_int(value)
    if not has_enum(key, PERFORMANCE_LEVELS):
        raise AssignmentFailure(AssignmentError.OUT_OF_RANGE)
    _write(path, PERFORMANCE_LEVEL_SYSFS_NAMES[key])


def with_manual_performance_level(
    func: Callable[[AssignmentArgument], None], value: AssignmentArgument, data: AMDGPUData
) -> None:
    """Set the performance level to manual, then call ``func`` with ``value``."""
    set_performance_level(MANUAL_PERFORMANCE_LEVEL, data)
    func(value)


def vf_point_clock_assignable(
    vf_type: VoltFreqType, point_index: int, value_range: Range, data: AMDGPUData
) -> Optional[Assignable]:
    """Clock of a voltage-frequency point; None if the point cannot be read."""
    is_memory = vf_type is VoltFreqType.MEMORY_PSTATE

    def current() -> Optional[AssignmentArgument]:
        point = vf_point_with_read(vf_type.section_header, point_index, data)
        if point is None:
            return None
        # Controller clock -> memory clock
        return to_memory_clock(point.clock, data) if is_memory else point.clock

    if current() is None:
        return None

    def assign_point(value: AssignmentArgument) -> None:
        target = _require_in_range(value, value_range)
        point = vf_point_with_read(vf_type.section_header, point_index, data)
        if point is None:
            raise AssignmentFailure(AssignmentError.UNKNOWN_ERROR)
        if is_memory:
            target = to_controller_clock(target, data)
        command = f"{vf_type.type_string} {point_index} {target} {point.voltage}"
        _write(_pp_table_path(data), command, "c")

    def assign(value: AssignmentArgument) -> None:
        with_manual_performance_level(assign_point, value, data)

    return Assignable(assign, value_range, current, _("MHz"))


def single_value_assignable(
    kind: SingleAssignableType,
    point_index: int,
    value_range: Range,
    unit: Optional[str],
    data: AMDGPUData,
) -> Optional[Assignable]:
    """A single clock value such as a minimum or maximum clock."""
    path = _pp_table_path(data)
    contents = file_contents(path)
    if contents is None:
        return None

    lines = pstate_section_lines(kind.section_header, contents)
    if len(lines) < point_index + 1:
        return None

    # The index in sysfs can be '1' even if there's only one point
    match = re.match(r"\d+", lines[point_index])
    if match is None:
        return None
    sysfs_index = int(match.group())
    is_memory = kind is SingleAssignableType.MEMORY_CLOCK

    def current() -> Optional[AssignmentArgument]:
        text = file_contents(path)
        if text is None:
            return None
        section = pstate_section_lines(kind.section_header, text)
        if len(section) < point_index + 1:
            return None
        value = parse_line_value(section[point_index])
        if value is None:
            return None
        return to_memory_clock(value, data) if is_memory else value

    def assign_value(value: AssignmentArgument) -> None:
        target = _require_in_range(value, value_range)
        if is_memory:
            target = to_controller_clock(target, data)
        _write(path, f"{kind.type_string} {sysfs_index} {target}", "c")

    def assign(value: AssignmentArgument) -> None:
        with_manual_performance_level(assign_value, value, data)

    return Assignable(assign, value_range, current, unit)


def vf_point_voltage_assignable(
    vf_type: VoltFreqType, point_index: int, value_range: Range, data: AMDGPUData
) -> Optional[Assignable]:
    """Voltage of a voltage-frequency point; None if the point cannot be read."""

    def current() -> Optional[AssignmentArgument]:
        point = vf_point_with_read(vf_type.section_header, point_index, data)
        return None if point is None else point.voltage

    if current() is None:
        return None

    def assign_point(value: AssignmentArgument) -> None:
        target = _require_in_range(value, value_range)
        point = vf_point_with_read(vf_type.section_header, point_index, data)
        if point is None:
            raise AssignmentFailure(AssignmentError.UNKNOWN_ERROR)
        command = f"{vf_type.type_string} {point_index} {point.clock} {target}"
        _write(_pp_table_path(data), command, "c")

    def assign(value: AssignmentArgument) -> None:
        with_manual_performance_level(assign_point, value, data)

    return Assignable(assign, value_range, current, _("mV"))