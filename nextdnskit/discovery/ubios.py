"""Client names configured on UniFi OS consoles."""

from __future__ import annotations

import json
import os
import subprocess
import sys
import threading
import time
from typing import Callable, Iterator, Optional, Union

from .resolver import Source
from .util import append_uniq

REFRESH_INTERVAL = 300.0

_MONGO_QUERY = """
		DBQuery.shellBatchSize = 1000;
		db.user.find({name: {$exists: true, $ne: ""}}, {_id:0, mac:1, name:1});"""
_MONGO_COMMAND = ["/usr/bin/mongo", "localhost:27117/ace", "--quiet", "--eval", _MONGO_QUERY]

_WHITESPACE = " \t\r\n"


def parse_client_records(text: Union[bytes, str]) -> dict[str, list[str]]:
    """Parse a stream of ``{"mac": ..., "name": ...}`` JSON objects.

    Keys match case-insensitively. A field missing from a record keeps the
    value of the previous record. Parsing stops at the first value that is
    not a valid record.
    """
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    decoder = json.JSONDecoder()
    fields = {"mac": "", "name": ""}
    macs: dict[str, list[str]] = {}
    pos = 0
    while True:
        while pos < len(text) and text[pos] in _WHITESPACE:
            pos += 1
        if pos >= len(text):
            break
        try:
            value, pos = decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            break
        if value is not None:
            if not isinstance(value, dict):
                break
            valid = True
            for key, field in value.items():
                lower = key.lower()
                if lower not in fields or field is None:
                    continue
                if not isinstance(field, str):
                    valid = False
                    continue
                fields[lower] = field
            if not valid:
                break
        mac = fields["mac"].lower()
        macs[mac] = append_uniq(macs.get(mac, []), fields["name"])
    return macs


def _is_unifi() -> bool:
    if not sys.platform.startswith("linux"):
        return False
    if os.path.isdir("/data/unifi"):
        return True
    try:
        subprocess.run(
            ["ubnt-device-info", "firmware"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return True


def _client_list() -> dict[str, list[str]]:
    out = subprocess.run(_MONGO_COMMAND, capture_output=True, check=True).stdout
    return parse_client_records(out)


class Ubios(Source):
    """Names of clients configured on a UniFi console, by MAC."""

    name = "ubios"

    def __init__(self, on_error: Optional[Callable[[Exception], None]] = None) -> None:
        self.on_error = on_error
        self._lock = threading.Lock()
        self._supported: Optional[bool] = None
        self._macs: dict[str, list[str]] = {}
        self._expires: Optional[float] = None

    def _refresh_locked(self) -> None:
        if self._supported is None:
            self._supported = _is_unifi()
        if not self._supported:
            return
        now = time.monotonic()
        if self._expires is not None and now < self._expires:
            return
        self._expires = now + REFRESH_INTERVAL
        try:
            self._macs = _client_list()
        except (OSError, subprocess.SubprocessError) as exc:
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