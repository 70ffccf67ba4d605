from nextdnskit.discovery.resolver import Dummy, Resolver, Source


class FakeSource(Source):
    def __init__(self, name, hosts=None, addrs=None):
        self.name = name
        self.hosts = hosts or {}
        self.addrs = addrs or {}
        self.queries = []

    def visit(self):
        yield from self.hosts.items()

    def lookup_addr(self, addr):
        self.queries.append(addr)
        return list(self.addrs.get(addr, []))

    def lookup_host(self, name):
        self.queries.append(name)
        return list(self.hosts.get(name, []))


class FakeMACSource(FakeSource):
    def __init__(self, name, macs):
        super().__init__(name)
        self.macs = macs

    def lookup_mac(self, mac):
        self.queries.append(mac)
        return list(self.macs.get(mac, []))


def test_visit_covers_all_sources_in_order():
    first = FakeSource("first", hosts={"a.": ["10.0.0.1"]})
    second = FakeSource("second", hosts={"b.": ["10.0.0.2"]})
    got = list(Resolver([first, Dummy(), second]).visit())
    assert got == [("first", "a.", ["10.0.0.1"]), ("second", "b.", ["10.0.0.2"])]


def test_lookup_addr_first_non_empty_wins():
    empty = FakeSource("empty")
    first = FakeSource("first", addrs={"10.0.0.1": ["one."]})
    second = FakeSource("second", addrs={"10.0.0.1": ["two."]})
    resolver = Resolver([empty, first, second])
    assert resolver.lookup_addr("10.0.0.1") == ["one."]
    assert second.queries == []
    assert empty.queries == ["10.0.0.1"]


def test_lookup_host_lowercases_query():
    source = FakeSource("hosts", hosts={"odin.": ["10.0.0.2"]})
    resolver = Resolver([source])
    assert resolver.lookup_host("ODIN.") == ["10.0.0.2"]
    assert source.queries == ["ODIN.".lower()]


def test_lookup_mac_only_asks_mac_sources():
    plain = FakeSource("plain")
    macs = FakeMACSource("macs", macs={"02:00:00:00:00:01": ["host."]})
    resolver = Resolver([plain, macs])
    assert resolver.lookup_mac("02:00:00:00:00:01".upper()) == ["host."]
    assert plain.queries == []
    assert macs.queries == ["02:00:00:00:00:01"]


def test_no_answer_is_empty():
    resolver = Resolver([Dummy(), FakeSource("empty")])
    assert resolver.lookup_addr("10.0.0.9") == []
    assert resolver.lookup_host("nobody") == []
    assert resolver.lookup_mac("02:00:00:00:00:09") == []


def test_dummy_knows_nothing():
    dummy = Dummy()
    assert dummy.name == "dummy"
    assert list(dummy.visit()) == []
    assert dummy.lookup_addr("10.0.0.1") == []
    assert dummy.lookup_host("odin") == []