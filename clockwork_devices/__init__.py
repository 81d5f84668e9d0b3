"""Device nodes and trees for AMD GPU sensors and settings and CPU statistics on Linux."""

__version__ = "0.1.0"