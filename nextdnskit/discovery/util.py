"""Helpers shared by the client discovery sources."""

from __future__ import annotations

import bisect
import os
import string
import threading
from dataclasses import dataclass
from typing import Iterable

_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)

_UUID_CHARS = frozenset("0123456789abcdef-")
_MAC_UNDERSCORE_CHARS = frozenset("0123456789ABCDEF_")
_IP_DASH_CHARS = frozenset("0123456789-")


def is_valid_name(name: str) -> bool:
    """Return False for names that carry no information about a client.

    Rejected are empty names, ``*``, UUIDs, MACs written with underscores and
    IPv4 addresses written with dashes.
    """
    if name in ("", "*"):
        return False
    # e.g. 331e87e5-3018-5336-23f3-595cdea48d9b
    if (
        len(name) == 36
        and all(name[i] == "-" for i in (8, 13, 18, 23))
        and set(name) <= _UUID_CHARS
    ):
        return False
    # e.g. CC_22_3D_E4_CE_FE
    if (
        len(name) == 17
        and all(name[i] == "_" for i in (2, 5, 8, 11, 14))
        and set(name) <= _MAC_UNDERSCORE_CHARS
    ):
        return False
    # e.g. 10-0-0-213
    if 7 <= len(name) <= 15 and set(name) <= _IP_DASH_CHARS:
        return False
    return True


def abs_domain_name(name: str) -> str:
    """Return ``name`` with a trailing dot."""
    return name if name.endswith(".") else name + "."


def prepare_host_lookup(host: str) -> str:
    """Return the key under which ``host`` is stored: ASCII lowercase, absolute."""
    return abs_domain_name(host.translate(_ASCII_LOWER))


def append_uniq(values: Iterable[str], *args: str) -> list[str]:
    """Return a sorted copy of ``values`` with ``args`` inserted once each."""
    result = list(values)
    for value in args:
        pos = bisect.bisect_left(result, value)
        if pos < len(result) and result[pos] == value:
            continue
        result.insert(pos, value)
    return result


class SemaphoreMap:
    """A set of keys that can each be held by one caller at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._acquired: set[str] = set()

    def acquire(self, key: str) -> bool:
        """Take ``key``; return False if it is already held."""
        with self._lock:
            if key in self._acquired:
                return False
            self._acquired.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._acquired.discard(key)


@dataclass(frozen=True)
class FileInfo:
    """Identity of a file's content: its path, modification time and size."""

    path: str
    mtime_ns: int
    size: int

    @classmethod
    def from_path(cls, path) -> "FileInfo":
        """Stat ``path``; raise OSError if it cannot be read."""
        st = os.stat(path)
        return cls(path=os.fspath(path), mtime_ns=st.st_mtime_ns, size=st.st_size)

    def same_as(self, path) -> bool:
        """Return True if ``path`` is this file and it has not changed."""
        if self.path != os.fspath(path):
            return False
        try:
            other = FileInfo.from_path(path)
        except OSError:
            return False
        return other.mtime_ns == self.mtime_ns and other.size == self.size