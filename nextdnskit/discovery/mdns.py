"""Client names learned by listening to multicast DNS traffic."""

from __future__ import annotations

import errno
import ipaddress
import socket
import struct
import threading
from collections import OrderedDict
from typing import Callable, Iterable, Iterator, Optional

import dns.exception
import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rrset
import psutil

from .resolver import Source
from .util import abs_domain_name, append_uniq, is_valid_name, prepare_host_lookup

MAX_ENTRIES = 1000

MDNS_PORT = 5353
IPV4_GROUP = "224.0.0.251"
IPV6_GROUP = "ff02::fb"

READ_TIMEOUT = 10.0
INITIAL_BACKOFF = 0.1
MAX_BACKOFF = 30.0

SERVICES = [
    "_hap._tcp.local.",
    "_homekit._tcp.local.",
    "_airplay._tcp.local.",
    "_raop._tcp.local.",
    "_sleep-proxy._udp.local.",
    "_companion-link._tcp.local.",
    "_googlezone._tcp.local.",
    "_googlerpc._tcp.local.",
    "_googlecast._tcp.local.",
    "_http._tcp.local.",
    "_https._tcp.local.",
]

_HEADER = struct.Struct("!6H")
_RR_FIXED = struct.Struct("!HHIH")
_TYPE_A = 1
_TYPE_AAAA = 28


def _read_name(data: bytes, pos: int) -> tuple[str, int]:
    try:
        name, used = dns.name.from_wire(data, pos)
    except (dns.exception.DNSException, IndexError, ValueError) as exc:
        raise ValueError(f"invalid name at offset {pos}: {exc}") from exc
    labels = [label.decode("utf-8", errors="replace") for label in name.labels]
    text = ".".join(labels)
    return (text or "."), pos + used


def _read_record(data: bytes, pos: int) -> tuple[str, int, bytes, int]:
    name, pos = _read_name(data, pos)
    if pos + _RR_FIXED.size > len(data):
        raise ValueError("truncated resource header")
    rtype, _, _, rdlen = _RR_FIXED.unpack_from(data, pos)
    pos += _RR_FIXED.size
    if pos + rdlen > len(data):
        raise ValueError("truncated resource data")
    return name, rtype, data[pos:pos + rdlen], pos + rdlen


def _ip_text(raw: bytes) -> str:
    ip = ipaddress.ip_address(raw)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return str(ip)


def parse_entries(data: bytes) -> dict[str, str]:
    """Return the ``address -> name`` pairs of the A and AAAA records of a message.

    Records of the answer and additional sections are considered; the
    authority section is skipped. Raises ValueError for a malformed message.
    """
    if len(data) < _HEADER.size:
        raise ValueError("message too short")
    _, _, qdcount, ancount, nscount, arcount = _HEADER.unpack_from(data, 0)
    pos = _HEADER.size
    for _ in range(qdcount):
        _, pos = _read_name(data, pos)
        pos += 4
        if pos > len(data):
            raise ValueError("truncated question")

    entries: dict[str, str] = {}

    def collect(count: int, pos: int) -> int:
        for _ in range(count):
            name, rtype, rdata, pos = _read_record(data, pos)
            if rtype == _TYPE_A:
                if len(rdata) != 4:
                    raise ValueError("invalid A record")
                entries[_ip_text(rdata)] = name
            elif rtype == _TYPE_AAAA:
                if len(rdata) != 16:
                    raise ValueError("invalid AAAA record")
                entries[_ip_text(rdata)] = name
        return pos

    pos = collect(ancount, pos)
    for _ in range(nscount):
        _, _, _, pos = _read_record(data, pos)
    collect(arcount, pos)
    return entries


def build_probe(services: Iterable[str]) -> bytes:
    """Build an mDNS query asking for the PTR records of ``services``."""
    msg = dns.message.Message(id=0)
    msg.flags = 0
    for service in services:
        msg.question.append(
            dns.rrset.RRset(
                dns.name.from_text(service), dns.rdataclass.IN, dns.rdatatype.PTR
            )
        )
    return msg.to_wire()


def _multicast_interfaces() -> list[str]:
    stats = psutil.net_if_stats()
    result = []
    for name, st in stats.items():
        if not st.isup:
            continue
        flags = getattr(st, "flags", None)
        if flags is not None and "multicast" not in flags.split(","):
            continue
        result.append(name)
    return result


def _is_loopback(name: str, addrs) -> bool:
    flags = getattr(psutil.net_if_stats().get(name), "flags", None)
    if flags is not None:
        return "loopback" in flags.split(",")
    for addr in addrs:
        if addr.family in (socket.AF_INET, socket.AF_INET6):
            try:
                if ipaddress.ip_address(addr.address.split("%", 1)[0]).is_loopback:
                    return True
            except ValueError:
                continue
    return False


def _reuse(sock: socket.socket) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    if hasattr(socket, "SO_REUSEPORT"):
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        except OSError:
            pass


def _listen_v4(ifaddr: str) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        _reuse(sock)
        sock.bind(("", MDNS_PORT))
        local = socket.inet_aton(ifaddr)
        sock.setsockopt(
            socket.IPPROTO_IP,
            socket.IP_ADD_MEMBERSHIP,
            socket.inet_aton(IPV4_GROUP) + local,
        )
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, local)
    except OSError:
        sock.close()
        raise
    return sock


def _listen_v6(index: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        _reuse(sock)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.bind(("::", MDNS_PORT))
        mreq = socket.inet_pton(socket.AF_INET6, IPV6_GROUP) + struct.pack("@I", index)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, mreq)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, index)
    except OSError:
        sock.close()
        raise
    return sock


def _is_unreachable_or_invalid(exc: Exception) -> bool:
    return isinstance(exc, OSError) and exc.errno in (errno.ENETUNREACH, errno.EINVAL)


class MDNS(Source):
    """Names and addresses announced by hosts over multicast DNS."""

    name = "mdns"

    def __init__(self, on_error: Optional[Callable[[Exception], None]] = None) -> None:
        self.on_error = on_error
        self._lock = threading.Lock()
        self._addrs: dict[str, list[str]] = {}
        # Ordered from least to most recently updated.
        self._names: "OrderedDict[str, list[str]]" = OrderedDict()
        self._conns: list[tuple[socket.socket, tuple]] = []
        self._stop = threading.Event()

    def start(self, filter: str = "all") -> None:
        """Listen on ``filter`` ("all", an interface name or "disabled").

        Raises ValueError when no suitable interface exists and OSError when
        no socket could be opened.
        """
        if filter == "disabled":
            return
        interfaces = _multicast_interfaces()
        if not interfaces:
            raise ValueError("no interface found")
        all_addrs = psutil.net_if_addrs()
        conns: list[tuple[socket.socket, tuple]] = []
        last_error: Optional[OSError] = None
        found = False
        for ifname in interfaces:
            if filter != "all" and ifname != filter:
                continue
            found = True
            addrs = all_addrs.get(ifname, [])
            if not addrs or _is_loopback(ifname, addrs):
                continue
            v4 = [a.address for a in addrs if a.family == socket.AF_INET]
            try:
                sock = _listen_v4(v4[0] if v4 else "0.0.0.0")
                conns.append((sock, (IPV4_GROUP, MDNS_PORT)))
            except OSError as exc:
                last_error = exc
            try:
                index = socket.if_nametoindex(ifname)
                sock = _listen_v6(index)
                conns.append((sock, (IPV6_GROUP, MDNS_PORT, 0, index)))
            except OSError as exc:
                last_error = exc
        if not found:
            raise ValueError(f"unknown interface: {filter}")
        if not conns:
            if last_error is not None:
                raise last_error
            return

        self._stop.clear()
        self._conns = conns
        for sock, _ in conns:
            threading.Thread(target=self._read, args=(sock,), daemon=True).start()
        threading.Thread(target=self._probe_loop, args=(conns,), daemon=True).start()

    def stop(self) -> None:
        """Stop listening and close every socket."""
        self._stop.set()
        conns, self._conns = self._conns, []
        for sock, _ in conns:
            sock.close()

    def _probe_loop(self, conns: list[tuple[socket.socket, tuple]]) -> None:
        backoff = INITIAL_BACKOFF
        payload = build_probe(SERVICES)
        while not self._stop.is_set():
            error: Optional[OSError] = None
            for sock, dest in conns:
                try:
                    sock.sendto(payload, dest)
                except OSError as exc:
                    error = exc
            if error is None or _is_unreachable_or_invalid(error):
                return
            if self.on_error is not None:
                self.on_error(RuntimeError(f"probe: {error}"))
            if self._stop.wait(backoff):
                return
            backoff = min(backoff * 2, MAX_BACKOFF)

    def _read(self, sock: socket.socket) -> None:
        try:
            sock.settimeout(READ_TIMEOUT)
            while not self._stop.is_set():
                try:
                    data, _ = sock.recvfrom(65536)
                except socket.timeout:
                    continue
                except OSError:
                    return
                if len(data) < _HEADER.size:
                    continue
                try:
                    entries = parse_entries(data)
                except ValueError:
                    continue
                for addr, name in entries.items():
                    self.add(addr, name)
        finally:
            sock.close()

    def add(self, addr: str, name: str) -> None:
        """Record that ``addr`` answers to ``name``; invalid names are ignored."""
        if not is_valid_name(name):
            return
        name = abs_domain_name(name)
        key = prepare_host_lookup(name)
        with self._lock:
            self._addrs[addr] = append_uniq(self._addrs.get(addr, []), name)
            self._names[key] = append_uniq(self._names.get(key, []), addr)
            self._names.move_to_end(key)
            while len(self._names) > MAX_ENTRIES:
                self._remove_oldest_locked()

    def _remove_oldest_locked(self) -> None:
        oldest, addrs = self._names.popitem(last=False)
        for addr in addrs:
            remaining = [
                n for n in self._addrs.get(addr, []) if prepare_host_lookup(n) != oldest
            ]
            if remaining:
                self._addrs[addr] = remaining
            else:
                self._addrs.pop(addr, None)

    def visit(self) -> Iterator[tuple[str, list[str]]]:
        with self._lock:
            items = [(name, list(addrs)) for name, addrs in self._names.items()]
        yield from items

    def lookup_addr(self, addr: str) -> list[str]:
        with self._lock:
            return list(self._addrs.get(addr, []))

    def lookup_host(self, name: str) -> list[str]:
        with self._lock:
            return list(self._names.get(prepare_host_lookup(name), []))