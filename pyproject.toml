[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "clockwork_devices"
version = "0.1.0"
description = "Read and tune AMD GPU and CPU hardware parameters on Linux as trees of readable and assignable device nodes"
requires-python = ">=3.10"
dependencies = []
keywords = ["hardware", "gpu", "cpu", "amdgpu", "sysfs", "overclocking", "monitoring"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Hardware",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["clockwork_devices"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
