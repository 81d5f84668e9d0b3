"""Helpers shared by device plugins."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .device import Enumeration, ReadableValue, ReadFailure


def has_enum(key: int, enumerations: Iterable[Enumeration]) -> bool:
    """Whether any enumeration has ``key``."""
    return any(e.key == key for e in enumerations)


def has_readable_value(read: Callable[[], ReadableValue]) -> bool:
    """Whether calling ``read`` yields a value instead of raising ReadFailure."""
    try:
        read()
    except ReadFailure:
        return False
    return True


def file_contents(path: Union[str, Path]) -> Optional[str]:
    """Whole text of the file at ``path``, or None if it cannot be read."""
    try:
        with open(path, encoding="utf-8", errors="replace", newline="") as file:
            return file.read()
    except OSError:
        return None


def file_words(path: Union[str, Path]) -> list[str]:
    """Words of the file split on spaces and newlines; empty if unreadable."""
    contents = file_contents(path)
    if contents is None:
        return []
    return [word for word in re.split(r"[\n ]", contents) if word]