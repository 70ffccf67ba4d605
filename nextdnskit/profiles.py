"""Profile identifiers with optional per-client conditions."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from typing import Optional, Union

import psutil

from .arp import _parse_hardware_addr

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def _as_ip(value) -> Optional[IPAddress]:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = ipaddress.ip_address(value)
        except ValueError:
            return None
    if isinstance(value, ipaddress.IPv6Address) and value.ipv4_mapped is not None:
        return value.ipv4_mapped
    return value


def _as_mac(value) -> bytes:
    if value is None:
        return b""
    if isinstance(value, str):
        return _parse_hardware_addr(value) or b""
    return bytes(value)


def _format_mac(mac: bytes) -> str:
    return ":".join(f"{b:02x}" for b in mac)


def _parse_cidr(cond: str) -> Optional[IPNetwork]:
    if "/" not in cond:
        return None
    try:
        return ipaddress.ip_network(cond, strict=False)
    except ValueError:
        return None


def _interface_ips(name: str) -> Optional[list[IPAddress]]:
    """Return the addresses of interface ``name``, or None if it does not exist."""
    interfaces = psutil.net_if_addrs()
    if name not in interfaces:
        return None
    ips = []
    for addr in interfaces[name]:
        if addr.family not in (socket.AF_INET, socket.AF_INET6):
            continue
        ip = _as_ip(addr.address.split("%", 1)[0])
        if ip is not None:
            ips.append(ip)
    return ips


@dataclass(frozen=True)
class Profile:
    """A profile id, optionally restricted to a subnet, a MAC or an interface."""

    id: str
    prefix: Optional[IPNetwork] = None
    mac: Optional[bytes] = None
    dest_ips: Optional[tuple] = None

    @classmethod
    def parse(cls, value: str) -> "Profile":
        """Parse ``[CONDITION=]ID``; raise ValueError for an unknown condition."""
        cond, sep, profile_id = value.partition("=")
        if not sep:
            return cls(id=value)
        cond = cond.strip()
        profile_id = profile_id.strip()

        prefix = _parse_cidr(cond)
        if prefix is not None:
            return cls(id=profile_id, prefix=prefix)
        mac = _parse_hardware_addr(cond)
        if mac is not None:
            return cls(id=profile_id, mac=mac)
        ips = _interface_ips(cond)
        if ips is not None:
            return cls(id=profile_id, dest_ips=tuple(ips) or None)
        raise ValueError(
            f"{cond}: invalid condition format or non-existant interface name"
        )

    def match(self, source_ip, dest_ip, mac) -> bool:
        """Return True if the conditions of this profile hold for a query."""
        if self.prefix is not None:
            src = _as_ip(source_ip)
            if src is None or src not in self.prefix:
                return False
        if self.mac:
            client_mac = _as_mac(mac)
            if not client_mac or client_mac != self.mac:
                return False
        if self.dest_ips:
            dst = _as_ip(dest_ip)
            if dst is None:
                return False
            return any(ip == dst for ip in self.dest_ips)
        return True

    def is_default(self) -> bool:
        return self.prefix is None and not self.mac and not self.dest_ips

    def __str__(self) -> str:
        if self.mac is not None:
            return f"{_format_mac(self.mac)}={self.id}"
        if self.prefix is not None:
            return f"{self.prefix}={self.id}"
        return self.id


class Profiles(list):
    """An ordered list of profiles; the first conditional match wins."""

    def set(self, value: str) -> None:
        """Add a profile, replacing an existing one with the same condition."""
        new = Profile.parse(value)
        for i, old in enumerate(self):
            same_mac = new.mac is not None and old.mac is not None and new.mac == old.mac
            same_ips = (
                new.dest_ips is not None
                and old.dest_ips is not None
                and new.dest_ips == old.dest_ips
            )
            same_prefix = (
                new.prefix is not None
                and old.prefix is not None
                and str(new.prefix) == str(old.prefix)
            )
            both_default = all(
                attr is None
                for attr in (new.mac, new.prefix, new.dest_ips, old.mac, old.prefix, old.dest_ips)
            )
            if same_mac or same_ips or same_prefix or both_default:
                self[i] = new
                return
        self.append(new)

    def get(self, source_ip, dest_ip, mac) -> str:
        """Return the id of the profile matching the query, or the default one."""
        default = ""
        for profile in self:
            if profile.match(source_ip, dest_ip, mac):
                if profile.is_default():
                    default = profile.id
                    continue
                return profile.id
        return default

    def strings(self) -> list[str]:
        return [str(profile) for profile in self]

    def __str__(self) -> str:
        return "[" + " ".join(self.strings()) + "]"