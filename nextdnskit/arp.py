"""Reading the system ARP table and mapping IP addresses to MAC addresses."""

from __future__ import annotations

import ipaddress
import string
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from typing import Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_HEX = frozenset(string.hexdigits)
_HW_LENGTHS = (6, 8, 20)
_REFRESH_INTERVAL = 30


def _parse_hardware_addr(s: str) -> Optional[bytes]:
    """Parse a MAC, EUI-64 or InfiniBand address; None if malformed."""
    if len(s) < 14:
        return None
    if s[2] in ":-":
        parts = s.split(s[2])
        width = 2
        size = len(parts)
    elif s[4] == ".":
        parts = s.split(".")
        width = 4
        size = 2 * len(parts)
    else:
        return None
    if size not in _HW_LENGTHS:
        return None
    if any(len(part) != width or not _HEX.issuperset(part) for part in parts):
        return None
    return bytes.fromhex("".join(parts))


def _parse_ip(s: str) -> Optional[IPAddress]:
    try:
        ip = ipaddress.ip_address(s)
    except ValueError:
        return None
    return _unmap(ip)


def _unmap(ip):
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def parse_mac(s: str) -> Optional[bytes]:
    """Parse a MAC as printed by arp tools, which may drop leading zeros."""
    if len(s) < 17:
        parts = s.split(":")
        if len(parts) != 6:
            return None
        s = ":".join(part.rjust(2, "0") if len(part) == 1 else part for part in parts)
    return _parse_hardware_addr(s)


@dataclass(frozen=True)
class Entry:
    ip: Optional[IPAddress]
    mac: Optional[bytes]


class Table(list):
    """A list of ARP entries."""

    def search_mac(self, ip) -> Optional[bytes]:
        """Return the MAC of the first entry with address ``ip``."""
        if isinstance(ip, str):
            ip = _parse_ip(ip)
        elif ip is not None:
            ip = _unmap(ip)
        return next((entry.mac for entry in self if entry.ip == ip), None)

    def search_ip(self, mac) -> Optional[IPAddress]:
        """Return the address of the first entry with hardware address ``mac``."""
        if isinstance(mac, str):
            mac = parse_mac(mac)
        wanted = bytes(mac or b"")
        return next((entry.ip for entry in self if (entry.mac or b"") == wanted), None)


def parse_proc_arp(text: str) -> Table:
    """Parse the content of /proc/net/arp."""
    table = Table()
    for line in text.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 4:
            continue
        table.append(Entry(ip=_parse_ip(fields[0]), mac=parse_mac(fields[3])))
    return table


def parse_arp_an(text: str) -> Table:
    """Parse the output of ``arp -an`` on BSD-like systems."""
    table = Table()
    for line in text.split("\n"):
        fields = line.split()
        if len(fields) < 4:
            continue
        ip = fields[1].replace("(", "").replace(")", "")
        table.append(Entry(ip=_parse_ip(ip), mac=parse_mac(fields[3])))
    return table


def parse_arp_windows(text: str) -> Table:
    """Parse the output of ``arp -a`` on Windows."""
    table = Table()
    skip_next = False
    for line in text.split("\n"):
        if not line:
            continue
        if line[0] != " ":
            skip_next = True
            continue
        if skip_next:
            skip_next = False
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        table.append(Entry(ip=_parse_ip(fields[0]), mac=parse_mac(fields[1])))
    return table


def _run(*cmd: str) -> str:
    return subprocess.run(cmd, capture_output=True, check=True, text=True).stdout


def read_table() -> Table:
    """Read the ARP table of this host."""
    if sys.platform.startswith("linux"):
        with open("/proc/net/arp", encoding="utf-8") as f:
            return parse_proc_arp(f.read())
    if sys.platform == "win32":
        return parse_arp_windows(_run("arp", "-a"))
    return parse_arp_an(_run("arp", "-an"))


class _Cache:
    """Keeps a copy of the ARP table, refreshed in the background."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_update = 0
        self._table = Table()

    def _refresh(self) -> None:
        try:
            table = read_table()
        except (OSError, subprocess.SubprocessError):
            table = Table()
        self._table = table

    def get(self) -> Table:
        now = int(time.time())
        with self._lock:
            stale = now - self._last_update > _REFRESH_INTERVAL
            if stale:
                self._last_update = now
        if stale:
            threading.Thread(target=self._refresh, daemon=True).start()
        return self._table


_global = _Cache()


def search_mac(ip) -> Optional[bytes]:
    """Look up the MAC for ``ip`` in the cached system ARP table."""
    return _global.get().search_mac(ip)


def search_ip(mac) -> Optional[IPAddress]:
    """Look up the address for ``mac`` in the cached system ARP table."""
    return _global.get().search_ip(mac)