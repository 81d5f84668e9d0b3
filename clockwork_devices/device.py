"""Core device model: assignable settings, readable sensors and device nodes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Generic, Optional, TypeVar, Union

T = TypeVar("T", int, float)


class AssignmentError(Enum):
    """Reasons an assignment can fail."""

    INVALID_ARGUMENT = auto()
    INVALID_TYPE = auto()
    NO_PERMISSION = auto()
    OUT_OF_RANGE = auto()
    UNKNOWN_ERROR = auto()


class ReadError(Enum):
    """Reasons a read can fail."""

    UNKNOWN_ERROR = auto()


class AssignmentFailure(Exception):
    """Raised when a value cannot be assigned."""

    def __init__(self, error: AssignmentError, message: Optional[str] = None) -> None:
        super().__init__(message or error.name.lower().replace("_", " "))
        self.error = error


class ReadFailure(Exception):
    """Raised when a value cannot be read."""

    def __init__(
        self, error: ReadError = ReadError.UNKNOWN_ERROR, message: Optional[str] = None
    ) -> None:
        super().__init__(message or error.name.lower().replace("_", " "))
        self.error = error


@dataclass(frozen=True)
class Range(Generic[T]):
    """Inclusive range of allowed values."""

    min: T
    max: T

    def __contains__(self, value: object) -> bool:
        return self.min <= value <= self.max  # type: ignore[operator]


@dataclass(frozen=True)
class Enumeration:
    """A named option with a numeric key."""

    name: str
    key: int


AssignmentArgument = Union[int, float]
ReadableValue = Union[int, float, str]
AssignableInfo = Union[Range, "list[Enumeration]"]


@dataclass
class Assignable:
    """A setting that can be assigned a value.

    ``assign_func`` raises :class:`AssignmentFailure` when the value is rejected;
    ``value_func`` returns the current value or ``None`` when it is unknown.
    """

    assign_func: Callable[[AssignmentArgument], None]
    info: AssignableInfo
    value_func: Callable[[], Optional[AssignmentArgument]]
    unit: Optional[str] = None

    def assign(self, value: AssignmentArgument) -> None:
        """Assign ``value``, raising AssignmentFailure on error."""
        self.assign_func(value)

    def current_value(self) -> Optional[AssignmentArgument]:
        """What the setting is currently set to, if known."""
        return self.value_func()


@dataclass
class DynamicReadable:
    """A value that changes over time, such as a sensor.

    ``read_func`` raises :class:`ReadFailure` when the value is unavailable.
    """

    read_func: Callable[[], ReadableValue]
    unit: Optional[str] = None

    def read(self) -> ReadableValue:
        """Read the current value, raising ReadFailure on error."""
        return self.read_func()


@dataclass(frozen=True)
class StaticReadable:
    """A value that does not change."""

    value: ReadableValue
    unit: Optional[str] = None


DeviceInterface = Union[Assignable, DynamicReadable, StaticReadable]


@dataclass
class DeviceNode:
    """A named node that optionally implements one interface."""

    name: str
    interface: Optional[DeviceInterface] = None
    hash: str = ""