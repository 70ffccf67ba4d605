"""Client names learned from the system hosts file."""

from __future__ import annotations

import ipaddress
import os
import threading
import time
from typing import Callable, Iterable, Iterator, Optional

from .resolver import Source
from .util import FileInfo, abs_domain_name, prepare_host_lookup

REFRESH_INTERVAL = 5.0

HOSTS_FILES = [
    "/etc/hosts.dnsmasq",
    "/tmp/hosts/dhcp.cfg01411c",  # OpenWRT
    r"C:\Windows\System32\Drivers\etc\hosts",
    "/etc/hosts",
]

_LOCALHOST_ADDRS = ["127.0.0.1", "::1"]


def _parse_ip(s: str):
    if "%" in s:
        return None
    try:
        ip = ipaddress.ip_address(s)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _split_host_zone(s: str) -> tuple[str, str]:
    i = s.rfind("%")
    if i > 0:
        return s[:i], s[i + 1:]
    return s, ""


def parse_literal_ip(addr: str) -> str:
    """Return ``addr`` in canonical form, with its IPv6 zone; "" if invalid."""
    for ch in addr:
        if ch == ".":
            ip = _parse_ip(addr)
            return "" if ip is None else str(ip)
        if ch == ":":
            host, zone = _split_host_zone(addr)
            ip = _parse_ip(host)
            if ip is None:
                return ""
            return f"{ip}%{zone}" if zone else str(ip)
    return ""


def read_hosts_file(path) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
    """Parse a hosts file; return ``(names, addrs)``.

    Names are keyed lowercase and absolute; addresses map to names with their
    case preserved.
    """
    names: dict[str, list[str]] = {}
    addrs: dict[str, list[str]] = {}
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            fields = line.split("#", 1)[0].split()
            if len(fields) < 2:
                continue
            addr = parse_literal_ip(fields[0])
            if not addr:
                continue
            for host in fields[1:]:
                names.setdefault(prepare_host_lookup(host), []).append(addr)
                addrs.setdefault(addr, []).append(abs_domain_name(host))
    for localhost in ("localhost", "localhost.localdomain."):
        # Some systems ship an empty hosts file and leave these names to a
        # local resolver daemon; provide them unless the file redefines them.
        if not names.get(localhost):
            names[localhost] = list(_LOCALHOST_ADDRS)
    return names, addrs


def _first_existing(candidates: Iterable[str]) -> Optional[str]:
    for path in candidates:
        if os.path.exists(path):
            return path
    return None


def find_hosts_file() -> Optional[str]:
    """Return the path of the first hosts file found on this host."""
    return _first_existing(HOSTS_FILES)


class Hosts(Source):
    """Names and addresses from the hosts file."""

    name = "hosts"

    def __init__(
        self,
        on_error: Optional[Callable[[Exception], None]] = None,
        hosts_files: Optional[Iterable[str]] = None,
    ) -> None:
        self.on_error = on_error
        self._hosts_files = list(HOSTS_FILES if hosts_files is None else hosts_files)
        self._lock = threading.Lock()
        self._addrs: dict[str, list[str]] = {}
        self._names: dict[str, list[str]] = {}
        self._file_info: Optional[FileInfo] = None
        self._expires: Optional[float] = None

    def _refresh_locked(self) -> None:
        now = time.monotonic()
        if self._expires is not None and now < self._expires:
            return
        self._expires = now + REFRESH_INTERVAL
        path = _first_existing(self._hosts_files)
        if path is None:
            return
        try:
            self._read_hosts_locked(path)
        except (OSError, ValueError) as exc:
            if self.on_error is not None:
                self.on_error(RuntimeError(f"readHosts({path}): {exc}"))

    def _read_hosts_locked(self, path: str) -> None:
        if self._file_info is not None and self._file_info.same_as(path):
            return
        names, addrs = read_hosts_file(path)
        self._names, self._addrs = names, addrs
        self._file_info = FileInfo.from_path(path)

    def visit(self) -> Iterator[tuple[str, list[str]]]:
        with self._lock:
            self._refresh_locked()
            items = [(name, list(addrs)) for name, addrs in self._names.items()]
        yield from items

    def lookup_addr(self, addr: str) -> list[str]:
        with self._lock:
            self._refresh_locked()
            return list(self._addrs.get(addr, []))

    def lookup_host(self, name: str) -> list[str]:
        with self._lock:
            self._refresh_locked()
            return list(self._names.get(prepare_host_lookup(name), []))