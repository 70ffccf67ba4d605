"""Discovery sources and a resolver that queries them in order."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator


class Source(ABC):
    """A source of client names, such as a hosts file or DHCP leases."""

    name: str = ""

    @abstractmethod
    def visit(self) -> Iterator[tuple[str, list[str]]]:
        """Yield every known ``(name, addrs)`` pair."""

    @abstractmethod
    def lookup_addr(self, addr: str) -> list[str]:
        """Return the names known for ``addr``."""

    @abstractmethod
    def lookup_host(self, name: str) -> list[str]:
        """Return the addresses known for ``name``."""


class Resolver(list):
    """An ordered list of sources; the first one with an answer wins."""

    def visit(self) -> Iterator[tuple[str, str, list[str]]]:
        """Yield ``(source, name, addrs)`` for every entry of every source."""
        for source in self:
            for name, addrs in source.visit():
                yield source.name, name, addrs

    def lookup_addr(self, addr: str) -> list[str]:
        addr = addr.lower()
        for source in self:
            names = source.lookup_addr(addr)
            if names:
                return names
        return []

    def lookup_host(self, name: str) -> list[str]:
        name = name.lower()
        for source in self:
            addrs = source.lookup_host(name)
            if addrs:
                return addrs
        return []

    def lookup_mac(self, mac: str) -> list[str]:
        """Ask the sources that know MAC addresses for the names of ``mac``."""
        mac = mac.lower()
        for source in self:
            lookup = getattr(source, "lookup_mac", None)
            if lookup is None:
                continue
            names = lookup(mac)
            if names:
                return names
        return []


class Dummy(Source):
    """A source that knows nothing."""

    name = "dummy"

    def visit(self) -> Iterator[tuple[str, list[str]]]:
        return iter(())

    def lookup_addr(self, addr: str) -> list[str]:
        return []

    def lookup_host(self, name: str) -> list[str]:
        return []