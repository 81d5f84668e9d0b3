# clockwork_devices

A library for reading and tuning hardware parameters on Linux. AMD GPUs are
reached through the amdgpu driver (render nodes in `/dev/dri` and the sysfs
files under `/sys/class/drm/renderD*/device`); CPU information and load come
from `/proc/cpuinfo` and `/proc/stat`. Everything is expressed as device
nodes that can be arranged in a tree.

No third-party libraries are needed.

## The device model (`clockwork_devices.device`)

A `DeviceNode` has a `name`, a `hash` and optionally one `interface`:

- `StaticReadable` – a fixed `value` with an optional `unit`
- `DynamicReadable` – a sensor; `read()` returns the current value or raises
  `ReadFailure`
- `Assignable` – a setting; `assign(value)` changes it, `current_value()`
  returns what it is set to (or `None` if unknown). Its `info` is either a
  `Range` (inclusive `min`/`max`, supports `in`) or a list of `Enumeration`s
  (`name`, `key`).

A rejected assignment raises `AssignmentFailure`, whose `error` member is an
`AssignmentError` (`INVALID_ARGUMENT`, `INVALID_TYPE`, `NO_PERMISSION`,
`OUT_OF_RANGE`, `UNKNOWN_ERROR`). Settings that take a range of integers
reject floats with `INVALID_TYPE`, and the power limit takes only floats.

## Trees (`clockwork_devices.tree`)

`TreeNode` holds a `value` and a list of `children`. `append_child()` takes a
node or a bare value and returns the appended node; `preorder()` yields the
values in preorder. `to_flat_tree()` turns a tree into a `FlatTree` of
`FlatTreeNode`s linked by child indices, and `FlatTree.to_tree()` rebuilds it.

`TreeConstructor` describes a tree declaratively: a function that returns the
nodes to attach for some input, plus sub-constructors applied under each
attached node. `construct_tree(constructor, node, data)` runs it. Since every
node function returns an empty list when its hardware feature is missing, the
tree only contains what the machine actually offers.

## AMD GPUs

```python
from clockwork_devices.amd_utils import from_filesystem
from clockwork_devices.amd_sensors import (
    get_gpu_name, get_temperature, get_power_usage, get_power_limit, get_used_vram,
)
from clockwork_devices.amd_fans import get_fan_speed_read, get_fan_speed_write
from clockwork_devices.tree import TreeConstructor, TreeNode, construct_tree

recipe = TreeConstructor(get_gpu_name, [
    TreeConstructor(get_temperature),
    TreeConstructor(get_power_usage),
    TreeConstructor(get_power_limit),
    TreeConstructor(get_used_vram),
    TreeConstructor(get_fan_speed_read),
    TreeConstructor(get_fan_speed_write),
])

root = TreeNode()
for gpu in from_filesystem():
    construct_tree(recipe, root, gpu)

for node in list(root.preorder())[1:]:   # the root itself holds no value
    print(node.name, node.hash)
```

- `clockwork_devices.amd_utils` – `from_filesystem()` finds render nodes
  driven by amdgpu and returns an `AMDGPUData` for each; `query_sensor()`,
  `query_vram_usage()` and `query_vram_total()` ask the driver directly.
  Parsers for the `pp_od_clk_voltage` table: `pstate_section_lines()`,
  `parse_pstate_range_line()`, `parse_line_value()`,
  `parse_line_value_pair()`, `vf_point()`, and `from_pp_table_contents()`,
  which tells the table layout (`PPTableType`: `VEGA10`, `NAVI`, `SMU13`,
  `VEGA20_OTHER`). RX 7000 fan curve files are parsed by
  `speed_range_from_contents()`, `temp_range_from_contents()` and
  `fan_curve_temps_from_contents()`. `to_memory_clock()` and
  `to_controller_clock()` convert memory clocks (doubled on GDDR6).
- `clockwork_devices.amd_sensors` – temperature, slowdown and shutdown
  temperatures, power usage and limit, core and memory clocks, core voltage,
  core and memory utilization, used and total video memory, and the GPU name
  (from a `pci.ids` database if one is installed, otherwise from the driver
  handle).
- `clockwork_devices.amd_fans` – fan mode and fan speed through hwmon, or
  through the RX 7000 fan curve file, where setting a speed flattens the
  whole curve to it.
- `clockwork_devices.amd_assignables` – `set_performance_level()` and
  builders for table-backed settings: `vf_point_clock_assignable()`,
  `vf_point_voltage_assignable()` and `single_value_assignable()`. Every
  write through these first forces the performance level to manual.

Writing settings usually needs root:

```python
from clockwork_devices.device import Assignable, AssignmentFailure

node = get_power_limit(gpu)[0]
try:
    node.interface.assign(150.0)
except AssignmentFailure as err:
    print("could not set the power limit:", err.error)
```

## CPUs (`clockwork_devices.cpu_stats`)

`parse_cpu_info()` reads the processor sections of `/proc/cpuinfo` into
`CPUInfoData`, and `from_cpu_info_data()` groups them into one `CPUData` per
physical CPU. `UtilizationSampler.utilizations_from_range(min_id, max_id)`
returns the load of each core in percent since its previous call (since boot
on the first call). `read_msr()` reads a model-specific register from
`/dev/cpu/N/msr`.

## Other helpers

- `clockwork_devices.crypto` – `md5()` and `sha256()` hex digests, used for
  node hashes.
- `clockwork_devices.utils` – `file_contents()`, `file_words()`,
  `has_enum()` and `has_readable_value()`.

## What this package does not do

- There is no ready-made plugin object that assembles the complete tree for
  a machine, and no loading of plugins from a directory; you build the tree
  yourself with `TreeConstructor` as shown above.
- For CPUs it only parses `/proc/cpuinfo` and samples load. It does not build
  CPU device nodes for frequencies, temperatures, governors, energy
  preferences or power usage.
- For AMD GPUs it has no node functions for the voltage-frequency curve
  points, performance states, minimum/maximum clock limits, voltage offset or
  performance level; only the underlying assignable builders in
  `amd_assignables` are provided.
- NVIDIA GPUs are not supported.
- There is no command-line tool or service.

## Tests

```
pip install .[test]
pytest
```