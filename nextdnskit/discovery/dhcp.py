"""Client names learned from DHCP server lease files."""

from __future__ import annotations

import os
import threading
import time
from typing import Callable, Iterable, Iterator, Optional

from .resolver import Source
from .util import FileInfo, abs_domain_name, append_uniq, prepare_host_lookup

REFRESH_INTERVAL = 5.0

LEASE_FILES = [
    ("/var/run/dhcpd.leases", "isc-dhcpd"),
    ("/var/lib/dhcp/dhcpd.leases", "isc-dhcpd"),
    ("/var/dhcpd/var/db/dhcpd.leases", "isc-dhcpd"),
    ("/var/lib/misc/dnsmasq.leases", "dnsmasq"),
    ("/tmp/dnsmasq.leases", "dnsmasq"),
    ("/tmp/dhcp.leases", "dnsmasq"),
    ("/etc/dhcpd/dhcpd.conf.leases", "dnsmasq"),
    ("/var/run/dnsmasq-dhcp.leases", "dnsmasq"),
    ("/config/dhcpd.leases", "dnsmasq"),
    ("/var/lib/dnsmasq/dhcp.leases", "dnsmasq"),
    ("/data/udapi-config/dnsmasq.lease", "dnsmasq"),
]

Maps = tuple[dict[str, list[str]], dict[str, list[str]], dict[str, list[str]]]


def _lines(source) -> Iterable[str]:
    if isinstance(source, str):
        return source.splitlines()
    return source


def _add(mapping: dict[str, list[str]], key: str, value: str) -> None:
    mapping[key] = append_uniq(mapping.get(key, []), value)


def read_dhcpd_lease(lines) -> Maps:
    """Parse an ISC dhcpd lease file; return ``(macs, addrs, names)``."""
    macs: dict[str, list[str]] = {}
    addrs: dict[str, list[str]] = {}
    names: dict[str, list[str]] = {}
    name = ip = mac = ""
    for line in _lines(lines):
        if line.startswith("}"):
            if name:
                fqdn = abs_domain_name(name)
                if ip:
                    key = prepare_host_lookup(fqdn)
                    _add(names, key, ip)
                    _add(names, key + "local.", ip)
                    _add(addrs, ip, fqdn)
                if mac:
                    _add(macs, mac, fqdn)
            name = ip = mac = ""
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        keyword = fields[0]
        if keyword == "lease":
            ip = fields[1].lower()
        elif keyword == "hardware":
            if len(fields) >= 3:
                mac = fields[2].rstrip(";").lower()
        elif keyword == "client-hostname":
            name = fields[1].strip('";')
    return macs, addrs, names


def read_dnsmasq_lease(lines) -> Maps:
    """Parse a dnsmasq lease file; return ``(macs, addrs, names)``."""
    macs: dict[str, list[str]] = {}
    addrs: dict[str, list[str]] = {}
    names: dict[str, list[str]] = {}
    for line in _lines(lines):
        fields = line.split()
        if len(fields) < 5:
            continue
        hostname = fields[3]
        if hostname == "*":
            continue
        fqdn = abs_domain_name(hostname)
        key = fqdn.lower()
        mac = fields[1].lower()
        ip = fields[2].lower()
        _add(macs, mac, fqdn)
        _add(addrs, ip, fqdn)
        _add(names, key, ip)
        _add(names, key + "local.", ip)
    return macs, addrs, names


_PARSERS: dict[str, Callable[[Iterable[str]], Maps]] = {
    "isc-dhcpd": read_dhcpd_lease,
    "dnsmasq": read_dnsmasq_lease,
}


def _first_existing(candidates) -> Optional[tuple[str, str]]:
    for path, fmt in candidates:
        if os.path.exists(path):
            return path, fmt
    return None


def find_lease_file() -> Optional[tuple[str, str]]:
    """Return ``(path, format)`` of the first lease file found on this host."""
    return _first_existing(LEASE_FILES)


class DHCP(Source):
    """Names, addresses and MACs from the local DHCP server's leases."""

    name = "dhcp"

    def __init__(
        self,
        on_error: Optional[Callable[[Exception], None]] = None,
        lease_files: Optional[Iterable[tuple[str, str]]] = None,
    ) -> None:
        self.on_error = on_error
        self._lease_files = list(LEASE_FILES if lease_files is None else lease_files)
        self._lock = threading.Lock()
        self._macs: dict[str, list[str]] = {}
        self._addrs: dict[str, list[str]] = {}
        self._names: dict[str, list[str]] = {}
        self._file_info: Optional[FileInfo] = None
        self._expires: Optional[float] = None

    def _refresh_locked(self) -> None:
        now = time.monotonic()
        if self._expires is not None and now < self._expires:
            return
        self._expires = now + REFRESH_INTERVAL
        found = _first_existing(self._lease_files)
        if found is None:
            return
        path, fmt = found
        try:
            self._read_lease_locked(path, fmt)
        except (OSError, ValueError) as exc:
            if self.on_error is not None:
                self.on_error(RuntimeError(f"readLease({path}, {fmt}): {exc}"))

    def _read_lease_locked(self, path: str, fmt: str) -> None:
        if self._file_info is not None and self._file_info.same_as(path):
            return
        parser = _PARSERS.get(fmt)
        if parser is None:
            raise ValueError(f"unknown format: {fmt}")
        with open(path, encoding="utf-8", errors="replace") as f:
            macs, addrs, names = parser(f)
        self._macs, self._addrs, self._names = macs, addrs, names
        self._file_info = FileInfo.from_path(path)

    def visit(self) -> Iterator[tuple[str, list[str]]]:
        with self._lock:
            self._refresh_locked()
            items = [(name, list(addrs)) for name, addrs in self._names.items()]
        yield from items

    def lookup_mac(self, mac: str) -> list[str]:
        with self._lock:
            self._refresh_locked()
            return list(self._macs.get(mac, []))

    def lookup_addr(self, addr: str) -> list[str]:
        with self._lock:
            self._refresh_locked()
            return list(self._addrs.get(addr, []))

    def lookup_host(self, name: str) -> list[str]:
        with self._lock:
            self._refresh_locked()
            return list(self._names.get(prepare_host_lookup(name), []))