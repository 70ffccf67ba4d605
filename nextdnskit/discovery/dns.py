"""Client names learned by asking the local network's DNS server."""

from __future__ import annotations

import ipaddress
import socket
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, Optional

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rcode
import dns.rdatatype
import dns.resolver

from .resolver import Source
from .util import SemaphoreMap

CACHE_SIZE = 10000
CACHE_TTL = 300.0
QUERY_TIMEOUT = 0.1

_MAX_PACKET = 514
_MAX_RR = 100

_PRIVATE_V4 = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


class DNSError(Exception):
    """The server answered with an error response code."""

    def __init__(self, rcode) -> None:
        self.rcode = dns.rcode.Rcode.make(rcode)
        super().__init__(dns.rcode.to_text(self.rcode))


def _to_ip(ip):
    if isinstance(ip, str):
        ip = ipaddress.ip_address(ip)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def is_private_ip(ip) -> bool:
    """Return True for RFC 1918 IPv4 and fdxx::/8 IPv6 addresses."""
    try:
        addr = _to_ip(ip)
    except ValueError:
        return False
    if isinstance(addr, ipaddress.IPv4Address):
        return any(addr in net for net in _PRIVATE_V4)
    return addr.packed[0] == 0xFD


def reverse_ip(ip) -> str:
    """Return the in-addr.arpa. or ip6.arpa. name for ``ip``."""
    return _to_ip(ip).reverse_pointer + "."


def _server_address(server: str) -> tuple[str, int]:
    if server.startswith("["):
        end = server.find("]")
        if end != -1 and server[end + 1:end + 2] == ":":
            return server[1:end], int(server[end + 2:])
        return server, 53
    if server.count(":") == 1:
        host, port = server.split(":")
        return host, int(port)
    return server, 53


def _build_query(qname: dns.name.Name, rdtype, rd: bool) -> bytes:
    msg = dns.message.make_query(qname, rdtype)
    if not rd:
        msg.flags &= ~dns.flags.RD
    return msg.to_wire()


def _send_query(server: str, wire: bytes, rdtype) -> list[str]:
    host, port = _server_address(server)
    family, socktype, proto, _, sockaddr = socket.getaddrinfo(
        host, port, type=socket.SOCK_DGRAM
    )[0]
    deadline = time.monotonic() + QUERY_TIMEOUT
    with socket.socket(family, socktype, proto) as sock:
        sock.settimeout(QUERY_TIMEOUT)
        sock.connect(sockaddr)
        sock.send(wire)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("i/o timeout")
            sock.settimeout(remaining)
            data = sock.recv(_MAX_PACKET)
            # Answers to an earlier, timed out query carry another id.
            if len(data) >= 2 and data[:2] == wire[:2]:
                break
    try:
        response = dns.message.from_wire(data)
    except dns.exception.DNSException as exc:
        raise ValueError(f"invalid response: {exc}") from exc
    if response.rcode() != dns.rcode.NOERROR:
        raise DNSError(response.rcode())

    records: list[str] = []
    budget = _MAX_RR
    for rrset in response.answer:
        for rdata in rrset:
            if budget == 0:
                return records
            budget -= 1
            if rrset.rdtype != rdtype:
                continue
            if rdtype == dns.rdatatype.PTR:
                records.append(rdata.target.to_text())
            elif rdtype in (dns.rdatatype.A, dns.rdatatype.AAAA):
                records.append(str(_to_ip(rdata.address)))
    return records


def query_ptr(server: str, ip, rd: bool) -> list[str]:
    """Ask ``server`` for the PTR names of ``ip``."""
    qname = dns.name.from_text(reverse_ip(ip))
    return _send_query(server, _build_query(qname, dns.rdatatype.PTR, rd), dns.rdatatype.PTR)


def query_name(server: str, name: str, rdtype, rd: bool) -> list[str]:
    """Ask ``server`` for the ``rdtype`` records of the absolute ``name``."""
    rdtype = dns.rdatatype.RdataType.make(rdtype)
    if not name.endswith("."):
        raise ValueError(f"{name}: name is not absolute")
    try:
        qname = dns.name.from_text(name)
    except dns.exception.DNSException as exc:
        raise ValueError(f"{name}: {exc}") from exc
    return _send_query(server, _build_query(qname, rdtype, rd), rdtype)


def probe_buggy_dnsmasq(upstream: str) -> bool:
    """Return True if ``upstream`` fails queries without the RD flag.

    Some dnsmasq versions answer SERVFAIL to such queries.
    """

    def attempt(rd: bool) -> Optional[Exception]:
        try:
            query_name(upstream, "localhost.", dns.rdatatype.A, rd)
        except (OSError, ValueError, DNSError) as exc:
            return exc
        return None

    with ThreadPoolExecutor(max_workers=2) as pool:
        without_rd = pool.submit(attempt, False)
        with_rd = pool.submit(attempt, True)
        err_no_rd, err_rd = without_rd.result(), with_rd.result()
    return (
        err_rd is None
        and isinstance(err_no_rd, DNSError)
        and err_no_rd.rcode == dns.rcode.SERVFAIL
    )


class _ExpiringCache:
    """A bounded LRU map whose entries expire after a fixed time."""

    def __init__(self, size: int, ttl: float) -> None:
        self._size = size
        self._ttl = ttl
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, tuple[list[str], float]]" = OrderedDict()

    def get(self, key: str) -> Optional[list[str]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._entries.move_to_end(key)
        values, expiry = entry
        if time.monotonic() > expiry:
            return None
        return values

    def set(self, key: str, values: list[str]) -> None:
        with self._lock:
            self._entries[key] = (list(values), time.monotonic() + self._ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self._size:
                self._entries.popitem(last=False)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)


def _system_dns_servers() -> list[str]:
    try:
        servers = dns.resolver.Resolver().nameservers
    except (dns.exception.DNSException, OSError):
        return []
    return [ns for ns in servers if isinstance(ns, str)]


class DNS(Source):
    """Names and addresses obtained from a private upstream DNS server."""

    name = "dns"

    def __init__(self, upstream: str = "") -> None:
        self.upstream = upstream
        self._init_lock = threading.Lock()
        self._initialized = False
        self._cache = _ExpiringCache(CACHE_SIZE, CACHE_TTL)
        self._anti_loop = SemaphoreMap()
        self._rd = False

    def _ensure_init(self) -> None:
        with self._init_lock:
            if self._initialized:
                return
            if not self.upstream:
                # Only send local PTR queries to a private DNS server.
                private = [ip for ip in _system_dns_servers() if is_private_ip(ip)]
                if private:
                    self.upstream = private[0]
            if self.upstream:
                self._rd = probe_buggy_dnsmasq(self.upstream)
            self._initialized = True

    def visit(self) -> Iterator[tuple[str, list[str]]]:
        self._ensure_init()
        for key in self._cache.keys():
            values = self._cache.get(key)
            if values is not None:
                yield key, list(values)

    def lookup_addr(self, addr: str) -> list[str]:
        return self._run_single(self._lookup_addr, addr)

    def lookup_host(self, name: str) -> list[str]:
        return self._run_single(self._lookup_host, name)

    def _run_single(self, func, arg: str) -> list[str]:
        # Only one query per entity may be in flight: a second one most likely
        # comes from a loop through the upstream, which this breaks.
        acquired = self._anti_loop.acquire(arg)
        try:
            return func(arg) if acquired else []
        finally:
            self._anti_loop.release(arg)

    def _lookup_addr(self, addr: str) -> list[str]:
        self._ensure_init()
        if not self.upstream:
            return []
        names = self._cache.get(addr)
        if names is not None:
            return list(names)
        try:
            names = query_ptr(self.upstream, addr, self._rd)
        except (OSError, ValueError, DNSError):
            names = []
        self._cache.set(addr, names)
        return list(names)

    def _lookup_host(self, name: str) -> list[str]:
        self._ensure_init()
        if not self.upstream:
            return []
        addrs = self._cache.get(name)
        if addrs is not None:
            return list(addrs)

        results: dict[str, list[str]] = {}

        def lookup(rdtype) -> list[str]:
            try:
                return query_name(self.upstream, name, rdtype, self._rd)
            except (OSError, ValueError, DNSError):
                return []

        def lookup_a() -> None:
            results["a"] = lookup(dns.rdatatype.A)

        thread = threading.Thread(target=lookup_a, daemon=True)
        thread.start()
        aaaa = lookup(dns.rdatatype.AAAA)
        thread.join()
        addrs = results.get("a", []) + aaaa
        self._cache.set(name, addrs)
        return list(addrs)