import errno
import struct
from pathlib import Path

import pytest

from clockwork_devices import amd_utils
from clockwork_devices.amd_utils import (
    AMDGPUData,
    PciData,
    PPTableType,
    Sensor,
    VFPoint,
    fan_curve_temps_from_contents,
    from_filesystem,
    from_pp_table_contents,
    from_render_d_file,
    from_uevent_file,
    parse_line_value,
    parse_line_value_pair,
    parse_pstate_range_line,
    parse_pstate_range_line_with_read,
    pstate_section_lines,
    pstate_section_lines_with_read,
    query_sensor,
    query_vram_total,
    query_vram_usage,
    speed_range_from_contents,
    temp_range_from_contents,
    to_controller_clock,
    to_memory_clock,
    vf_point,
    vf_point_with_read,
)
from clockwork_devices.device import Range, ReadFailure

FAN_CURVE = """OD_FAN_CURVE:
0: 0C 0%
1: 45C 15%
2: 50C 30%
3: 55C 70%
4: 65C 100%
OD_RANGE:
FAN_CURVE(hotspot temp): 25C 100C
FAN_CURVE(fan speed): 15% 100%
"""

VEGA10_TABLE = """OD_SCLK:
0:        852Mhz        800mV
1:        991Mhz        900mV
OD_MCLK:
0:        167Mhz        800mV
1:        500Mhz        850mV
OD_RANGE:
SCLK:     852Mhz        2400Mhz
MCLK:     167Mhz        1500Mhz
VDDC:     800mV         1200mV
"""

NAVI_TABLE = """OD_SCLK:
0: 300MHz
1: 2000MHz
OD_MCLK:
1: 875MHz
OD_VDDC_CURVE:
0: 700MHz 750mV
1: 1400MHz 800mV
2: 2000MHz 1050mV
OD_RANGE:
SCLK:     300MHz       2150MHz
MCLK:     625MHz       950MHz
VDDC_CURVE_SCLK[0]:     300MHz       2150MHz
VDDC_CURVE_VOLT[0]:     750mV        1200mV
VDDC_CURVE_VOLT[1]:     750mV        1200mV
VDDC_CURVE_VOLT[2]:     750mV        1200mV
"""

SMU13_TABLE = NAVI_TABLE + "VDDC_CURVE_VOLT[3]:     750mV        1200mV\n"

VEGA20_OTHER_TABLE = """OD_SCLK:
0: 500Mhz
1: 1800Mhz
OD_MCLK:
1: 1000Mhz
OD_RANGE:
SCLK:     500Mhz       2000Mhz
"""


class FakeHandle:
    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def query(self, query, size, sensor=0):
        self.calls.append((query, size, sensor))
        key = (query, sensor)
        if key not in self.responses:
            raise OSError(errno.EINVAL, "unsupported query")
        return self.responses[key].ljust(size, b"\0")[:size]


def dev_info(device_id, vram_type):
    info = bytearray(256)
    struct.pack_into("=I", info, 0, device_id)
    struct.pack_into("=I", info, 176, vram_type)
    return bytes(info)


def make_data(tmp_path, handle=None, table=None):
    if table is not None:
        (tmp_path / "pp_od_clk_voltage").write_text(table)
    return AMDGPUData(
        hwmon_path=tmp_path / "hwmon" / "hwmon0",
        dev_path=tmp_path,
        handle=handle if handle is not None else FakeHandle(),
        pci_id="1234",
        device_filename="renderD128",
        identifier="12340",
    )


# Cases carried over from the source's own tests
def test_fan_curve_speed_range_parse():
    assert speed_range_from_contents(FAN_CURVE) == Range(15, 100)


def test_fan_curve_temp_range_parse():
    assert temp_range_from_contents(FAN_CURVE) == Range(25, 100)


def test_fan_curve_point_parse():
    assert fan_curve_temps_from_contents(FAN_CURVE) == [0, 45, 50, 55, 65]


def test_fan_curve_temps_missing_section():
    assert fan_curve_temps_from_contents(NAVI_TABLE) == []


def test_pstate_section_lines():
    assert pstate_section_lines("OD_MCLK", VEGA10_TABLE) == [
        "0:        167Mhz        800mV",
        "1:        500Mhz        850mV",
    ]


def test_pstate_section_lines_missing_header():
    assert pstate_section_lines("OD_VDDC_CURVE", VEGA10_TABLE) == []


def test_pstate_section_lines_with_read(tmp_path):
    data = make_data(tmp_path, table=NAVI_TABLE)
    assert pstate_section_lines_with_read("OD_SCLK", data) == ["0: 300MHz", "1: 2000MHz"]


def test_pstate_section_lines_with_read_no_file(tmp_path):
    assert pstate_section_lines_with_read("OD_SCLK", make_data(tmp_path)) == []


def test_parse_pstate_range_line():
    assert parse_pstate_range_line("MCLK", VEGA10_TABLE) == Range(167, 1500)
    assert parse_pstate_range_line("VDDC", VEGA10_TABLE) == Range(800, 1200)
    assert parse_pstate_range_line("VDDC_CURVE_SCLK[0]", NAVI_TABLE) == Range(300, 2150)


def test_parse_pstate_range_line_missing():
    assert parse_pstate_range_line("FOO", VEGA10_TABLE) is None


def test_parse_pstate_range_line_with_read(tmp_path):
    data = make_data(tmp_path, table=VEGA10_TABLE)
    assert parse_pstate_range_line_with_read("SCLK", data) == Range(852, 2400)
    assert parse_pstate_range_line_with_read("SCLK", make_data(tmp_path / "x")) is None


def test_parse_line_value_pair():
    assert parse_line_value_pair("1:   991Mhz   900mV") == (991, 900)
    assert parse_line_value_pair("1: 991Mhz") is None


def test_parse_line_value():
    assert parse_line_value("0: -200mV") == -200
    assert parse_line_value("OD_SCLK:") is None


def test_parse_line_value_rejects_non_numbers():
    with pytest.raises(ValueError):
        parse_line_value("0: abc")


def test_vf_point():
    assert vf_point("OD_VDDC_CURVE", 1, NAVI_TABLE) == VFPoint(voltage=800, clock=1400)
    assert vf_point("OD_VDDC_CURVE", 3, NAVI_TABLE) is None
    assert vf_point("OD_SCLK", 0, NAVI_TABLE) is None


def test_vf_point_with_read(tmp_path):
    data = make_data(tmp_path, table=VEGA10_TABLE)
    assert vf_point_with_read("OD_SCLK", 1, data) == VFPoint(voltage=900, clock=991)


@pytest.mark.parametrize(
    "table, expected",
    [
        (VEGA10_TABLE, PPTableType.VEGA10),
        (NAVI_TABLE, PPTableType.NAVI),
        (SMU13_TABLE, PPTableType.SMU13),
        (VEGA20_OTHER_TABLE, PPTableType.VEGA20_OTHER),
        ("OD_MCLK:\n0: 100Mhz\n", None),
    ],
)
def test_from_pp_table_contents(table, expected):
    assert from_pp_table_contents(table) is expected


def test_memory_clock_conversion_gddr6(tmp_path):
    handle = FakeHandle({(amd_utils.AMDGPU_INFO_DEV_INFO, 0): dev_info(0x1234, 9)})
    data = make_data(tmp_path, handle)
    assert to_memory_clock(875, data) == 1750
    assert to_controller_clock(1750, data) == 875


def test_memory_clock_conversion_other_memory(tmp_path):
    handle = FakeHandle({(amd_utils.AMDGPU_INFO_DEV_INFO, 0): dev_info(0x1234, 6)})
    data = make_data(tmp_path, handle)
    assert to_memory_clock(875, data) == 875
    assert to_controller_clock(875, data) == 875


def test_memory_clock_conversion_query_failure(tmp_path):
    data = make_data(tmp_path)
    assert to_memory_clock(500, data) == 500
    assert to_controller_clock(500, data) == 500


def test_query_sensor(tmp_path):
    handle = FakeHandle({(0x1D, 3): struct.pack("=I", 45000)})
    data = make_data(tmp_path, handle)
    assert query_sensor(data, Sensor.GPU_TEMP) == 45000
    assert handle.calls == [(0x1D, 4, 3)]


def test_query_sensor_failure(tmp_path):
    with pytest.raises(ReadFailure):
        query_sensor(make_data(tmp_path), Sensor.VDDGFX)


def test_query_vram(tmp_path):
    gtt = struct.pack("=QQQ", 8_000_000_000, 256_000_000, 16_000_000_000)
    handle = FakeHandle(
        {
            (0x10, 0): struct.pack("=Q", 1_500_000_000),
            (0x14, 0): gtt,
        }
    )
    data = make_data(tmp_path, handle)
    assert query_vram_usage(data) == 1_500_000_000
    assert query_vram_total(data) == 8_000_000_000


def test_query_vram_failure(tmp_path):
    data = make_data(tmp_path)
    with pytest.raises(ReadFailure):
        query_vram_usage(data)
    with pytest.raises(ReadFailure):
        query_vram_total(data)


def test_from_uevent_file(tmp_path, monkeypatch):
    device = tmp_path / "renderD128" / "device"
    device.mkdir(parents=True)
    (device / "uevent").write_text(
        "DRIVER=amdgpu\n"
        "PCI_CLASS=30000\n"
        "PCI_ID=1002:ABCD\n"
        "PCI_SUBSYS_ID=1DA2:E123\n"
        "PCI_SLOT_NAME=0000:03:00.0\n"
        "MODALIAS=pci:v00001002d0000ABCDsv00001DA2sd0000E123bc03sc00i00\n"
    )
    monkeypatch.setattr(amd_utils, "SYSFS_DRM_DIR", tmp_path)
    assert from_uevent_file("renderD128") == PciData(device="abcd", subsystem="1da2:e123")


def test_from_uevent_file_too_short(tmp_path, monkeypatch):
    device = tmp_path / "renderD128" / "device"
    device.mkdir(parents=True)
    (device / "uevent").write_text("DRIVER=amdgpu\nPCI_ID=1002:ABCD\n")
    monkeypatch.setattr(amd_utils, "SYSFS_DRM_DIR", tmp_path)
    assert from_uevent_file("renderD128") is None
    assert from_uevent_file("renderD129") is None


def test_from_render_d_file_missing(tmp_path):
    assert from_render_d_file(tmp_path / "renderD128", 0) is None


def test_from_render_d_file_not_a_drm_device(tmp_path):
    node = tmp_path / "renderD128"
    node.write_bytes(b"")
    assert from_render_d_file(node, 0) is None


def test_from_filesystem_skips_non_amdgpu(tmp_path):
    (tmp_path / "card0").write_bytes(b"")
    (tmp_path / "renderD128").write_bytes(b"")
    assert from_filesystem(tmp_path) == []


def test_from_filesystem_missing_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        from_filesystem(Path(tmp_path) / "missing")