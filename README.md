# nextdnskit

Building blocks for a local DNS forwarding proxy that runs on a home
router or a workstation:

- **Profile selection** (`nextdnskit.profiles`): choose a profile id for
  each query by source subnet, client MAC address or receiving interface.
- **Byte sizes** (`nextdnskit.bytesize`): read human-readable sizes such
  as `42MB` or `1,234.03 MB`.
- **ARP lookups** (`nextdnskit.arp`): map IP addresses to MAC addresses
  and back, from the system ARP table.
- **Client discovery** (`nextdnskit.discovery`): learn client names from
  DHCP lease files, hosts files, reverse DNS, mDNS and router client
  lists (ASUSWRT-Merlin, UniFi OS).
- **Control channel** (`nextdnskit.ctl`): line-delimited JSON events over
  a Unix socket, with a server, a client and a small command-line tool.

## Installation

```
pip install nextdnskit
```

Python 3.10 or newer is required. The package depends on `dnspython` and
`psutil`.

## Usage

### Byte sizes

```python
from nextdnskit.bytesize import parse_bytes

parse_bytes("42")           # 42
parse_bytes("42 MB")        # 44040192
parse_bytes("42.5M")        # 44564480
parse_bytes("1,234.03 MB")  # 1293974241
```

Units are `b`, `k`/`kb`, `m`/`mb`, `g`/`gb`, `t`/`tb`, `p`/`pb` and
`e`/`eb`, in any case, in powers of 1024. A missing number, an unknown
unit or a value that does not fit in 64 bits raises `ValueError`.

### Profiles

Each rule is either a bare profile id (a default) or `CONDITION=ID`. The
condition is a CIDR, a MAC address or the name of a local network
interface. For an interface, the rule matches queries received on one of
that interface's addresses. `Profiles.set` raises `ValueError` for a
condition that is none of these. When a new rule has the same condition
as an existing one, it replaces that rule.

`Profiles.get(source_ip, dest_ip, mac)` returns the id of the first
matching conditional rule. If no conditional rule matches, it returns
the last default rule, or `""` if there is none.

```python
import ipaddress
from nextdnskit.profiles import Profiles

profiles = Profiles()
profiles.set("10.10.10.0/27=office")
profiles.set("02:00:00:00:00:01=kids")
profiles.set("home")

profiles.get(ipaddress.ip_address("10.10.10.21"), None, None)  # "office"
profiles.get(ipaddress.ip_address("1.2.3.4"), None, None)      # "home"
profiles.strings()  # ["10.10.10.0/27=office", "02:00:00:00:00:01=kids", "home"]
```

Addresses can be given as `ipaddress` objects or strings. MACs can be
given as bytes or strings.

### ARP table

```python
from nextdnskit import arp

arp.search_mac("192.168.1.20")       # MAC as bytes, or None
arp.search_ip("02:00:00:00:00:01")   # ipaddress object, or None
```

`search_mac` and `search_ip` use a cached copy of the table. A call
starts a background refresh when the copy is more than 30 seconds old
and answers from the copy it already has. The very first lookup therefore
answers from an empty table.

`read_table()` reads the table directly. On Linux it reads
`/proc/net/arp`. Elsewhere it runs `arp -an`, or `arp -a` on Windows.
`parse_proc_arp`, `parse_arp_an` and `parse_arp_windows` parse these
three formats from text and return a `Table`, which has `search_mac` and
`search_ip` of its own.

### Client discovery

Every source (`Hosts`, `DHCP`, `DNS`, `MDNS`, `Merlin`, `Ubios`, `Dummy`)
has `lookup_addr`, `lookup_host` and `visit`. `DHCP`, `Merlin` and
`Ubios` also have `lookup_mac`. A `Resolver` is a list of sources. It
asks them in order, lowercases the query first, and returns the first
non-empty answer, or `[]`:

```python
from nextdnskit.discovery.resolver import Resolver
from nextdnskit.discovery.dhcp import DHCP
from nextdnskit.discovery.hosts import Hosts

resolver = Resolver([Hosts(), DHCP()])
resolver.lookup_addr("192.168.1.20")      # e.g. ["laptop."]
resolver.lookup_host("laptop")            # e.g. ["192.168.1.20"]
resolver.lookup_mac("02:00:00:00:00:01")  # e.g. ["laptop."]
for source, name, addrs in resolver.visit():
    print(source, name, addrs)
```

Names are returned as absolute domain names with a trailing dot.

- `Hosts` reads the first hosts file found among its usual locations.
  `localhost` resolves to `127.0.0.1` and `::1` unless the file defines
  it. `read_hosts_file(path)` parses a file directly.
- `DHCP` reads the first ISC dhcpd or dnsmasq lease file found. Each name
  is also known under `NAME.local.`. `read_dhcpd_lease` and
  `read_dnsmasq_lease` parse lease text directly.
- `Hosts` and `DHCP` check their file at most every 5 seconds and read it
  again only when its size or modification time changed. Both take an
  `on_error` callback and a list of candidate files.
- `DNS(upstream="")` sends PTR, A and AAAA queries over UDP to
  `upstream`. If `upstream` is empty, it uses the first private address
  among the system's name servers. Answers are cached for 5 minutes.
  Queries for the same name or address never overlap, which breaks query
  loops through the upstream.
- `MDNS` learns names from A and AAAA records seen on the mDNS multicast
  groups. `start(filter)` takes `"all"`, an interface name or
  `"disabled"`. `stop()` closes the sockets. At most 1000 names are kept;
  the least recently updated name is dropped first.
- `Merlin` reads the router's `custom_clientlist` with `nvram`, and
  `Ubios` reads the UniFi client list through the local `mongo` shell.
  Both work only on such routers and return nothing elsewhere.
  `read_client_list` and `parse_client_records` parse their output
  directly.

### Control channel

```python
from nextdnskit.ctl import Server, Event, dial

server = Server(addr="/tmp/example.sock")
server.command("status", lambda data: {"ok": True})
server.start()

with dial("/tmp/example.sock") as client:
    client.send(Event(name="status"))  # {"ok": True}

server.stop()
```

Every event a client sends gets a reply event with the same name. The
reply's data is what the registered command returned, or `None` for an
unknown command. `Server.broadcast(event)` sends an event to every
connected client. `Server` also takes optional `on_connect`,
`on_disconnect`, `on_event` and `error_log` callbacks.

From the shell, send a named event to a running daemon's control socket
and print the reply:

```
nextdnskit-ctl status
nextdnskit-ctl status -control /tmp/example.sock
```

Text replies are printed as they are. Other replies are printed as
indented JSON. The socket defaults to `/var/run/nextdns.sock`.

## What this package does not do

It provides the pieces listed above, not a complete proxy. There is no
DNS server that listens for queries, no forwarding to upstream
resolvers, no reading or saving of a configuration file, no
configuration commands, and no changing of the system's DNS settings.
The control channel uses Unix sockets only; it has no Windows named-pipe
transport.

## Running the tests

```
pip install "nextdnskit[test]"
pytest
```