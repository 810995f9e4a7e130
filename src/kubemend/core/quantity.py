# src/kubemend/core/quantity.py
"""Kubernetes resource quantity parsing (CPU and memory)."""

from typing import Any, Optional

# Binary and decimal suffixes, case-sensitive: "m" is milli, "M" is mega
_MEMORY_UNITS = {
    "Ki": 1024,
    "Mi": 1024 ** 2,
    "Gi": 1024 ** 3,
    "Ti": 1024 ** 4,
    "Pi": 1024 ** 5,
    "Ei": 1024 ** 6,
    "k": 1000,
    "M": 1000 ** 2,
    "G": 1000 ** 3,
    "T": 1000 ** 4,
    "P": 1000 ** 5,
    "E": 1000 ** 6,
    "m": 0.001,
}


def parse_cpu(value: Any) -> Optional[float]:
    """Parse a CPU quantity to millicores. Returns None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text:
        return None

    # Handle millicores (e.g., "100m" -> 100.0)
    if text.endswith("m"):
        try:
            return float(text[:-1])
        except ValueError:
            return None

    try:
        return float(text) * 1000
    except ValueError:
        return None


def parse_memory(value: Any) -> Optional[float]:
    """Parse a memory quantity to bytes. Returns None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text:
        return None

    # Longest suffix first so "Mi" wins over "M"
    for suffix in sorted(_MEMORY_UNITS, key=len, reverse=True):
        if text.endswith(suffix):
            try:
                return float(text[: -len(suffix)]) * _MEMORY_UNITS[suffix]
            except ValueError:
                return None

    try:
        return float(text)
    except ValueError:
        return None


PARSERS = {"cpu": parse_cpu, "memory": parse_memory}


def compare(resource: str, left: Any, right: Any) -> Optional[int]:
    """-1/0/1 comparison of two quantities of the same resource; None if either is unparseable."""
    parse = PARSERS[resource]
    a, b = parse(left), parse(right)
    if a is None or b is None:
        return None
    return (a > b) - (a < b)
