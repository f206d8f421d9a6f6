"""
Environment merging for stacks.

The merge itself is pure: ordered key/value pairs in, ordered mapping out,
later sources winning on duplicate keys while keeping the position of the
first occurrence.
"""

from pathlib import Path
from typing import Iterable, Mapping

from dotenv import dotenv_values

from ..errors import ErrorKind, HarbormasterError

Pairs = Iterable[tuple[str, str]]


def merge_env(*sources: Pairs | Mapping[str, str]) -> dict[str, str]:
    """Last-write-wins merge of ordered key/value sources.

    Example:
        >>> merge_env([("A", "1"), ("B", "2")], {"A": "3"})
        {'A': '3', 'B': '2'}
    """
    merged: dict[str, str] = {}
    for source in sources:
        items = source.items() if isinstance(source, Mapping) else source
        for key, value in items:
            merged[key] = value
    return merged


def read_env_file(path: Path) -> list[tuple[str, str]]:
    """Read a dotenv file into ordered pairs.

    Keys without a value are dropped. Variable interpolation is disabled so
    values are taken literally.

    Raises:
        HarbormasterError: not_found when the file does not exist
    """
    path = Path(path)
    if not path.is_file():
        raise HarbormasterError("drift.read_env_file", ErrorKind.NOT_FOUND, f"env file {path} not found")
    values = dotenv_values(path, interpolate=False)
    return [(key, value) for key, value in values.items() if value is not None]
