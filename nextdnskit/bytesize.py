"""Parsing of human readable byte sizes such as ``1MB`` or ``1.5 GB``."""

_UNITS = {
    "": 1,
    "b": 1,
    "k": 1 << 10,
    "kb": 1 << 10,
    "m": 1 << 20,
    "mb": 1 << 20,
    "g": 1 << 30,
    "gb": 1 << 30,
    "t": 1 << 40,
    "tb": 1 << 40,
    "p": 1 << 50,
    "pb": 1 << 50,
    "e": 1 << 60,
    "eb": 1 << 60,
}

_MAX_UINT64 = float(2**64 - 1)


def parse_bytes(s: str) -> int:
    """Return the number of bytes expressed by ``s`` (e.g. ``42MB``, ``1,234.5 kb``).

    Raises ValueError for a missing or malformed number, an unknown unit, or a
    value that does not fit in 64 bits.
    """
    end = 0
    for ch in s:
        if not ("0" <= ch <= "9" or ch in ".,"):
            break
        end += 1

    num = s[:end].replace(",", "")
    if not num:
        raise ValueError("invalid number")
    try:
        value = float(num)
    except ValueError:
        raise ValueError(f"invalid number: {num!r}") from None

    unit = s[end:].strip().lower()
    try:
        value *= _UNITS[unit]
    except KeyError:
        raise ValueError(f"unknown unit name: {unit}") from None

    if value >= _MAX_UINT64:
        raise ValueError(f"too large: {s}")
    return int(value)