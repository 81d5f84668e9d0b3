"""Parsing of /proc/cpuinfo and /proc/stat, and CPU utilization sampling."""

from __future__ import annotations

import itertools
import math
import os
import re
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Union

from .utils import file_contents

CPUINFO_PATH = "/proc/cpuinfo"
STAT_PATH = "/proc/stat"

_UINT64_MASK = (1 << 64) - 1
_IDENTIFIER_MAX_LEN = 19
_CPUINFO_TITLES = (
    "processor",
    "vendor_id",
    "cpu family",
    "model",
    "model name",
    "physical id",
    "cpu cores",
)
_VALUE_PATTERN = re.compile(r":\s(.*)")
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


@dataclass(frozen=True)
class CPUInfoData:
    """One processor (thread) section of /proc/cpuinfo."""

    processor: int
    vendor_id: str
    family: int
    model: int
    name: str
    physical_id: int
    cores: int


@dataclass(frozen=True)
class CPUData:
    """One physical CPU, as used to build the device tree."""

    # physical id/family/model/, eg. 0/6/158/
    identifier: str
    first_core_index: int
    core_count: int
    name: str
    cpu_index: int
    vendor_id: str


@dataclass(frozen=True)
class CPUTimeStat:
    """A CPU time sample: total and idle time in clock ticks."""

    total_time: int
    idle_time: int


def _stoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    if match is None:
        raise ValueError(f"no integer at start of {text!r}")
    return int(match.group(1))


def utilization_percentage(stat: CPUTimeStat) -> int:
    """Share of non-idle time in percent, rounded; 0 when no time has passed."""
    if stat.total_time == 0:
        return 0
    active = 1 - stat.idle_time / stat.total_time
    return int(math.floor(active * 100 + 0.5))


def from_stat_line(line: str) -> Optional[CPUTimeStat]:
    """Parse a ``cpuN`` line of /proc/stat; None if it has too few fields."""
    words = line.split(" ")[1:]
    if len(words) < 4:
        return None
    values = [int(word) for word in words]
    return CPUTimeStat(total_time=sum(values) & _UINT64_MASK, idle_time=values[3])


def read_msr(address: int, mask: int, core_index: int) -> Optional[int]:
    """Model-specific register of a core masked with ``mask``; None if unreadable."""
    try:
        fd = os.open(f"/dev/cpu/{core_index}/msr", os.O_RDONLY)
    except OSError:
        return None
    try:
        raw = os.pread(fd, 8, address)
    except OSError:
        return None
    finally:
        os.close(fd)
    if len(raw) < 8:
        return None
    (value,) = struct.unpack("=Q", raw)
    return value & mask


def from_cpu_info_data(infos: Iterable[CPUInfoData]) -> list[CPUData]:
    """Group adjacent processors sharing a physical id into CPUs."""
    cpus = []
    for physical_id, group in itertools.groupby(infos, key=lambda info: info.physical_id):
        threads = list(group)
        first_core = min(thread.processor for thread in threads)
        last_core = max(thread.processor for thread in threads)
        first = threads[0]
        identifier = f"{physical_id}/{first.family}/{first.model}/"[:_IDENTIFIER_MAX_LEN]
        cpus.append(
            CPUData(
                identifier=identifier,
                first_core_index=first_core,
                core_count=last_core - first_core + 1,
                name=first.name,
                cpu_index=physical_id,
                vendor_id=first.vendor_id,
            )
        )
    return cpus


def parse_cpu_info_line(title: str, line: str) -> Optional[str]:
    """Value after ``': '`` if ``line`` starts with ``title``."""
    if not line.startswith(title):
        return None
    match = _VALUE_PATTERN.search(line)
    if match is None:
        return None
    return match.group(1)


def split_at(delimiter: str, text: str) -> list[str]:
    """Pieces of ``text`` that end with ``delimiter``; the unterminated rest is dropped."""
    if not delimiter:
        raise ValueError("empty delimiter")
    return text.split(delimiter)[:-1]


def parse_cpu_info_section(section: str) -> Optional[CPUInfoData]:
    """Parse one processor section; None if a required field is missing."""
    parsed: list[str] = []
    titles = iter(_CPUINFO_TITLES)
    title = next(titles)
    for line in split_at("\n", section):
        value = parse_cpu_info_line(title, line)
        if value is None:
            continue
        parsed.append(value)
        next_title = next(titles, None)
        if next_title is None:
            break
        title = next_title

    if len(parsed) != len(_CPUINFO_TITLES):
        return None

    return CPUInfoData(
        processor=_stoi(parsed[0]),
        vendor_id=parsed[1],
        family=_stoi(parsed[2]),
        model=_stoi(parsed[3]),
        name=parsed[4],
        physical_id=_stoi(parsed[5]),
        cores=_stoi(parsed[6]),
    )


def parse_cpu_info(path: Union[str, Path] = CPUINFO_PATH) -> list[CPUInfoData]:
    """All processor sections of a cpuinfo file; empty if it cannot be read."""
    contents = file_contents(path)
    if contents is None:
        return []
    return [
        data
        for data in (parse_cpu_info_section(section) for section in split_at("\n\n", contents))
        if data is not None
    ]


def read_cpu_stats_from_range(
    min_id: int, max_id: int, path: Union[str, Path] = STAT_PATH
) -> list[CPUTimeStat]:
    """Time samples of cores ``min_id`` to ``max_id``; empty if any is missing."""
    contents = file_contents(path)
    if contents is None:
        return []
    lines = contents.split("\n")
    stats = []
    # cpu0 is on the second line
    for index in range(min_id + 1, max_id + 2):
        line = lines[index] if index < len(lines) else ""
        stat = from_stat_line(line)
        if stat is None:
            return []
        stats.append(stat)
    return stats


def time_stat_delta(prev: CPUTimeStat, cur: CPUTimeStat) -> CPUTimeStat:
    """Time passed between two samples."""
    return CPUTimeStat(
        total_time=(cur.total_time - prev.total_time) & _UINT64_MASK,
        idle_time=(cur.idle_time - prev.idle_time) & _UINT64_MASK,
    )


@dataclass
class UtilizationSampler:
    """Computes per-core utilization from successive samples of a stat file."""

    stat_path: Union[str, Path] = STAT_PATH
    _samples: dict[int, CPUTimeStat] = field(default_factory=dict, init=False, repr=False)

    def utilizations_from_range(self, min_id: int, max_id: int) -> list[int]:
        """Utilization of cores ``min_id`` to ``max_id`` since the previous call.

        The first call for a range gives utilization since boot.
        """
        new_stats = read_cpu_stats_from_range(min_id, max_id, self.stat_path)
        if not new_stats:
            return []

        utilizations = []
        if min_id in self._samples:
            for core_id, current in enumerate(new_stats, start=min_id):
                previous = self._samples.get(core_id)
                if previous is None:
                    return []
                utilizations.append(utilization_percentage(time_stat_delta(previous, current)))
                self._samples[core_id] = current
        else:
            for core_id, current in enumerate(new_stats, start=min_id):
                self._samples[core_id] = current
                utilizations.append(utilization_percentage(current))
        return utilizations