"""Shape-checked building blocks shared by the engine-specific output parsers."""

import re
from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

from ..errors import MalformedOutput


NODES_RANGE_REGEX = re.compile(r"[a-zA-Z]+\[\d+-\d+]")
_RANGE_PARTS = re.compile(r"^\s*(?P<name>[^\[]*)\[(?P<low>\d+)-(?P<high>\d+)]\s*$")
_WHITESPACE = re.compile(r"\s+")
# Commas outside square brackets separate hostlist entries: "a[1-2],b" -> "a[1-2]", "b"
_HOSTLIST_SEPARATOR = re.compile(r",(?![^\[]*\])")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def split_fields(line: str, delimiter: str, expected: int) -> list[str]:
    """Split a delimited line, insisting on exactly ``expected`` fields."""
    fields = line.split(delimiter)
    if len(fields) != expected:
        raise MalformedOutput(
            f"Output line is inconsistent: waiting for {expected} fields, but {len(fields)} were fetched",
            line=line,
            expected=expected,
            actual=len(fields),
        )
    return fields


def non_blank(lines: Iterable[str]) -> list[str]:
    return [line for line in lines if line.strip()]


def parse_header_table(lines: Sequence[str]) -> dict[str, str]:
    """Zip the whitespace tokens of a header line with those of the value line below it."""
    if len(lines) < 2:
        raise MalformedOutput(
            "Header/value table is incomplete",
            line=lines[0] if lines else None,
            expected=2,
            actual=len(lines),
        )
    keys = lines[0].split()
    values = lines[1].split()
    if len(keys) != len(values):
        raise MalformedOutput(
            f"Header has {len(keys)} columns but the value line has {len(values)}",
            line=lines[1],
            expected=len(keys),
            actual=len(values),
        )
    return dict(zip(keys, values))


def parse_key_values(text: str) -> dict[str, str]:
    """Build a mapping from whitespace separated ``key=value`` segments.

    Only the first ``=`` of a segment separates key and value; segments
    without ``=`` are ignored.
    """
    result: dict[str, str] = {}
    for segment in text.split():
        if "=" not in segment:
            continue
        key, value = segment.split("=", 1)
        result[key] = value
    return result


def require_keys(mapping: Mapping[str, str], keys: Iterable[str], line: Optional[str] = None) -> None:
    for key in keys:
        if key not in mapping:
            raise MalformedOutput(f"Required key '{key}' is missing from output", line=line, expected=key)


def parse_int(value: str, field: str, line: Optional[str] = None) -> int:
    try:
        return int(value.strip())
    except (AttributeError, ValueError):
        raise MalformedOutput(f"Field '{field}' is not an integer: {value!r}", line=line, expected="int", actual=value)


def parse_datetime(value: Optional[str], fmt: str = "%Y-%m-%dT%H:%M:%S") -> Optional[datetime]:
    """Parse a scheduler-local timestamp; placeholders such as N/A yield None."""
    if value is None:
        return None
    text = value.strip()
    if not text or text in ("N/A", "Unknown", "None", "(null)"):
        return None
    try:
        return datetime.strptime(text, fmt)
    except ValueError:
        raise MalformedOutput(f"Timestamp {text!r} does not match {fmt}", line=value, expected=fmt, actual=text)


def expand_hosts(token: str) -> list[str]:
    """Expand ``name[low-high]`` into one host per integer of the inclusive range."""
    match = _RANGE_PARTS.match(token)
    if not match or not NODES_RANGE_REGEX.search(token):
        return [token.strip()]
    name = match.group("name")
    low, high = int(match.group("low")), int(match.group("high"))
    return [f"{name}{number}" for number in range(low, high + 1)]


def split_hostlist(hostlist: str) -> list[str]:
    return [part.strip() for part in _HOSTLIST_SEPARATOR.split(hostlist) if part.strip()]


def decrypt_group_of_nodes(hosts: Iterable[str]) -> list[str]:
    """Expand host ranges, drop duplicates and sort lexicographically.

    Two host lists describe the same set of nodes exactly when their
    decrypted forms are equal, whatever order and range notation they used.
    """
    decrypted: set[str] = set()
    for host in hosts:
        decrypted.update(expand_hosts(host))
    decrypted.discard("")
    return sorted(decrypted)


_MEMORY_UNITS = {"": 1, "K": 1024, "M": 1024 ** 2, "G": 1024 ** 3, "T": 1024 ** 4, "P": 1024 ** 5}
_MEMORY_VALUE = re.compile(r"^(?P<number>\d+(?:\.\d+)?)(?P<unit>[KMGTP]?)B?$", re.IGNORECASE)


def parse_memory(value: Optional[str], default_unit: str = "") -> Optional[int]:
    """Convert ``512M`` / ``1.5G`` style sizes to bytes; ``-`` and blanks yield None."""
    if value is None:
        return None
    text = value.strip()
    if not text or text in ("-", "N/A"):
        return None
    match = _MEMORY_VALUE.match(text)
    if not match:
        raise MalformedOutput(f"Memory value {text!r} is not understood", line=value, expected="size", actual=text)
    unit = (match.group("unit") or default_unit).upper()
    return int(float(match.group("number")) * _MEMORY_UNITS[unit])
