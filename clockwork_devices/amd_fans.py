"""Fan nodes of amdgpu devices, for both the hwmon and the RX 7000 interfaces."""

from __future__ import annotations

import math
import os
import re
from gettext import gettext as _
from pathlib import Path
from typing import Optional, Union

from .amd_assignables import _require_in_range, _require_int, _write
from .amd_utils import (
    AMDGPUData,
    fan_curve_temps_from_contents,
    speed_range_from_contents,
    temp_range_from_contents,
)
from .crypto import md5
from .device import (
    Assignable,
    AssignmentArgument,
    AssignmentError,
    AssignmentFailure,
    DeviceNode,
    DynamicReadable,
    Enumeration,
    Range,
    ReadableValue,
    ReadFailure,
)
from .utils import file_contents, has_enum, has_readable_value

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_FAN_SPEED_RANGE = Range(0, 100)
_PWM_MAX = 255


def _fan_curve_path(data: AMDGPUData) -> Path:
    return Path(data.dev_path) / "gpu_od" / "fan_ctrl" / "fan_curve"


def _readable(path: Union[str, Path]) -> bool:
    return os.access(path, os.R_OK)


def _read_int(path: Union[str, Path]) -> Optional[int]:
    contents = file_contents(path)
    if contents is None:
        return None
    match = _LEADING_INT.match(contents)
    return int(match.group(1)) if match else None


def _round(value: float) -> float:
    # Halfway cases round away from zero
    return math.copysign(math.floor(abs(value) + 0.5), value)


def get_fan_mode(data: AMDGPUData) -> list[DeviceNode]:
    """Fan mode through hwmon, for cards without the RX 7000 fan curve."""
    if _readable(_fan_curve_path(data)):
        return []
    path = Path(data.hwmon_path) / "pwm1_enable"
    if not _readable(path):
        return []

    enumerations = [Enumeration(_("Manual"), 1), Enumeration(_("Automatic"), 2)]

    def current() -> Optional[AssignmentArgument]:
        # Only automatic mode is reported
        return 2 if _read_int(path) == 2 else None

    def assign(value: AssignmentArgument) -> None:
        key = _require_int(value)
        if not has_enum(key, enumerations):
            raise AssignmentFailure(AssignmentError.OUT_OF_RANGE)
        # Writing '2' without a fan speed afterwards resets to automatic
        _write(path, "2")

    return [
        DeviceNode(
            name=_("Fan Mode"),
            interface=Assignable(assign, enumerations, current, None),
            hash=md5(data.identifier + "Fan Mode"),
        )
    ]


def get_fan_mode_rx7000(data: AMDGPUData) -> list[DeviceNode]:
    """Fan mode reset for cards with the RX 7000 fan curve interface."""
    path = _fan_curve_path(data)
    if not _readable(path):
        return []

    # Only offered to reset the fan curve in a sensible manner
    enumerations = [Enumeration(_("Automatic"), 0)]

    def current() -> Optional[AssignmentArgument]:
        return 0

    def assign(value: AssignmentArgument) -> None:
        key = _require_int(value)
        if not has_enum(key, enumerations):
            raise AssignmentFailure(AssignmentError.OUT_OF_RANGE)
        _write(path, "r")

    return [
        DeviceNode(
            name=_("Fan Mode"),
            interface=Assignable(assign, enumerations, current, None),
            hash=md5("RX 7000 Fan Mode" + data.identifier),
        )
    ]


def get_fan_speed_write(data: AMDGPUData) -> list[DeviceNode]:
    """Fan speed setting in percent through hwmon PWM."""
    if _readable(_fan_curve_path(data)):
        return []
    path = Path(data.hwmon_path) / "pwm1"
    if not _readable(path):
        return []

    def current() -> Optional[AssignmentArgument]:
        pwm = _read_int(path)
        if pwm is None:
            return None
        # PWM -> %
        return _round(pwm / _PWM_MAX * 100)

    def assign(value: AssignmentArgument) -> None:
        target = _require_in_range(value, _FAN_SPEED_RANGE)
        # % -> PWM
        _write(path, str(math.floor(target / 100 * _PWM_MAX)))

    return [
        DeviceNode(
            name=_("Fan Speed"),
            interface=Assignable(assign, _FAN_SPEED_RANGE, current, _("%")),
            hash=md5(data.identifier + "Fan Speed Write"),
        )
    ]


def get_fan_speed_write_rx7000(data: AMDGPUData) -> list[DeviceNode]:
    """Fan speed setting that flattens the RX 7000 fan curve to one speed."""
    path = _fan_curve_path(data)
    if not _readable(path):
        return []
    contents = file_contents(path)
    if contents is None:
        return []

    # The current curve can hold invalid temperatures, so use the allowed minimum
    temp_range = temp_range_from_contents(contents)
    speed_range = speed_range_from_contents(contents)
    point_count = len(fan_curve_temps_from_contents(contents))
    if temp_range is None or speed_range is None or point_count == 0:
        return []

    def current() -> Optional[AssignmentArgument]:
        return None

    def assign(value: AssignmentArgument) -> None:
        target = _require_in_range(value, speed_range)
        commands = [f"{index} {temp_range.min} {target}" for index in range(point_count)]
        _write(path, *commands, "c")

    return [
        DeviceNode(
            name=_("Fan Speed"),
            interface=Assignable(assign, speed_range, current, _("%")),
            hash=md5(data.identifier + "RX7000 Fan Speed"),
        )
    ]


def get_fan_speed_read(data: AMDGPUData) -> list[DeviceNode]:
    """Fan speed in percent of the maximum RPM."""
    hwmon = Path(data.hwmon_path)
    max_rpm = _read_int(hwmon / "fan1_max")
    if max_rpm is None:
        return []
    path = hwmon / "fan1_input"

    def read() -> ReadableValue:
        rpm = _read_int(path)
        if rpm is None or max_rpm == 0:
            raise ReadFailure()
        return _round(rpm / max_rpm * 100)

    if not has_readable_value(read):
        return []
    return [
        DeviceNode(
            name=_("Fan Speed"),
            interface=DynamicReadable(read, _("%")),
            hash=md5(data.identifier + "Fan Speed Read"),
        )
    ]