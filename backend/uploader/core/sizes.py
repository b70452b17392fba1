"""Human-readable size strings ("8M", "2G") to bytes. Binary multipliers, never raises."""
import re

_UNITS = {
    "K": 1024,
    "M": 1024 ** 2,
    "G": 1024 ** 3,
}
_LEADING_INT = re.compile(r"[+-]?\d+")


def parse_bytes(size_str: str) -> int:
    """Return the byte count for e.g. '500', '50K', '8M', '2g'.

    The value is the leading integer of the string (0 if there is none); a trailing
    K/M/G multiplies it. Any other trailing character leaves the value as-is.
    """
    size_str = (size_str or "").strip()
    match = _LEADING_INT.match(size_str)
    value = int(match.group(0)) if match else 0
    unit = size_str[-1:].upper()
    return value * _UNITS.get(unit, 1)


def format_megabytes(byte_count: int) -> str:
    return f"{round(byte_count / _UNITS['M'], 2)} MB"
