"""Client names from the custom client list of ASUSWRT-Merlin routers."""

from __future__ import annotations

import subprocess
import sys
import threading
import time
from typing import Callable, Iterator, Optional, Union

from .resolver import Source
from .util import append_uniq

REFRESH_INTERVAL = 30.0

_MAC_LENGTH = 17


def read_client_list(data: Union[bytes, str]) -> Optional[dict[str, list[str]]]:
    """Parse an nvram ``custom_clientlist`` value into a MAC -> names map.

    The format is ``<Name>MAC>x>y>><Name>MAC>x>y>>...``. Returns None for an
    empty value and raises ValueError for a malformed one. Entries with an
    empty name are skipped.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    if not data:
        return None
    macs: dict[str, list[str]] = {}
    rest = data
    while rest:
        first = rest[0]
        if first in "\r\n":
            rest = rest[1:]
            continue
        if first != "<":
            raise ValueError(f"{rest}: invalid format: missing item separator")
        rest = rest[1:]
        eol = rest.find("<")
        if eol == -1:
            eol = len(rest)
        idx = rest.find(">")
        if idx == -1:
            raise ValueError(f"{rest}: invalid format: missing host separator")
        end = idx + _MAC_LENGTH + 1
        if end > eol or len(rest) <= end or rest[end] != ">":
            raise ValueError(f"{rest}: invalid format: missing MAC separator")
        if idx > 0:
            name = rest[:idx]
            mac = rest[idx + 1:end].lower()
            macs[mac] = append_uniq(macs.get(mac, []), name)
        rest = rest[eol:]
    return macs


def _is_merlin() -> bool:
    if not sys.platform.startswith("linux"):
        return False
    try:
        out = subprocess.run(["uname", "-o"], capture_output=True).stdout
    except (OSError, subprocess.SubprocessError):
        return False
    return out.startswith(b"ASUSWRT-Merlin")


def _client_list() -> Optional[dict[str, list[str]]]:
    out = subprocess.run(
        ["nvram", "get", "custom_clientlist"], capture_output=True, check=True
    ).stdout
    # The variable is sometimes stored without its opening separator.
    if out and out[:1] != b"<":
        out = b"<" + out
    return read_client_list(out)


class Merlin(Source):
    """Names of clients configured on an ASUSWRT-Merlin router, by MAC."""

    name = "merlin"

    def __init__(self, on_error: Optional[Callable[[Exception], None]] = None) -> None:
        self.on_error = on_error
        self._lock = threading.Lock()
        self._supported: Optional[bool] = None
        self._macs: dict[str, list[str]] = {}
        self._expires: Optional[float] = None

    def _refresh_locked(self) -> None:
        if self._supported is None:
            self._supported = _is_merlin()
        if not self._supported:
            return
        now = time.monotonic()
        if self._expires is not None and now < self._expires:
            return
        self._expires = now + REFRESH_INTERVAL
        try:
            self._macs = _client_list() or {}
        except (OSError, subprocess.SubprocessError, ValueError) as exc:
            if self.on_error is not None:
                self.on_error(RuntimeError(f"clientList: {exc}"))

    def visit(self) -> Iterator[tuple[str, list[str]]]:
        """Yield ``(name, macs)`` for every configured client."""
        with self._lock:
            self._refresh_locked()
            by_name: dict[str, list[str]] = {}
            for mac, names in self._macs.items():
                for name in names:
                    by_name.setdefault(name, []).append(mac)
        yield from by_name.items()

    def lookup_mac(self, mac: str) -> list[str]:
        with self._lock:
            self._refresh_locked()
            return list(self._macs.get(mac, []))

    def lookup_addr(self, addr: str) -> list[str]:
        return []

    def lookup_host(self, name: str) -> list[str]:
        return []