import io

from nextdnskit.discovery.dhcp import DHCP, read_dhcpd_lease, read_dnsmasq_lease

DHCPD_LEASES = r"""
# The format of this file is documented in the dhcpd.leases(5) manual page.
# This lease file was written by isc-dhcp-4.3.5

# authoring-byte-order entry is generated, DO NOT DELETE
authoring-byte-order little-endian;

lease 10.0.1.4 {
	starts 0 2019/06/09 20:28:45;
	ends 0 2019/06/09 20:38:45;
	tstp 0 2019/06/09 20:38:45;
	cltt 0 2019/06/09 20:28:45;
	binding state free;
	hardware ethernet 02:00:00:00:00:0a;
	uid "\001\002\000\000\000\000\012";
}
lease 10.0.1.5 {
	starts 1 2020/01/06 01:56:24;
	ends 1 2020/01/06 03:56:24;
	cltt 1 2020/01/06 01:56:24;
	binding state active;
	next binding state free;
	rewind binding state free;
	hardware ethernet 02:00:00:00:00:01;
	uid "\001\002\000\000\000\000\001";
	client-hostname "iPad";
}
lease 10.0.1.3 {
	starts 1 2020/01/06 02:08:32;
	ends 1 2020/01/06 04:08:32;
	cltt 1 2020/01/06 02:08:58;
	binding state active;
	next binding state free;
	rewind binding state free;
	hardware ethernet 02:00:00:00:00:0a;
	uid "\001\002\000\000\000\000\012";
	client-hostname "Mac";
}"""

DNSMASQ_LEASES = """
56789 02:00:00:00:00:01 192.168.50.12 wrt54g 01:02:00:00:00:00:01
86400 02:00:00:00:00:02 192.168.50.11 GL-MT300N-V2-ABC *
77060 02:00:00:00:00:03 192.168.50.111 ubnt *
86400 02:00:00:00:00:04 192.168.50.50 * 02:00:00:00:00:04
            """


def test_read_dhcpd_lease():
    macs, addrs, names = read_dhcpd_lease(DHCPD_LEASES)
    assert macs == {
        "02:00:00:00:00:01": ["iPad."],
        "02:00:00:00:00:0a": ["Mac."],
    }
    assert addrs == {
        "10.0.1.5": ["iPad."],
        "10.0.1.3": ["Mac."],
    }
    assert names == {
        "ipad.": ["10.0.1.5"],
        "ipad.local.": ["10.0.1.5"],
        "mac.": ["10.0.1.3"],
        "mac.local.": ["10.0.1.3"],
    }


def test_read_dhcpd_lease_from_file_object():
    assert read_dhcpd_lease(io.StringIO(DHCPD_LEASES)) == read_dhcpd_lease(DHCPD_LEASES)


def test_read_dnsmasq_lease():
    macs, addrs, names = read_dnsmasq_lease(DNSMASQ_LEASES)
    assert macs == {
        "02:00:00:00:00:01": ["wrt54g."],
        "02:00:00:00:00:02": ["GL-MT300N-V2-ABC."],
        "02:00:00:00:00:03": ["ubnt."],
    }
    assert addrs == {
        "192.168.50.12": ["wrt54g."],
        "192.168.50.11": ["GL-MT300N-V2-ABC."],
        "192.168.50.111": ["ubnt."],
    }
    assert names == {
        "wrt54g.": ["192.168.50.12"],
        "wrt54g.local.": ["192.168.50.12"],
        "gl-mt300n-v2-abc.": ["192.168.50.11"],
        "gl-mt300n-v2-abc.local.": ["192.168.50.11"],
        "ubnt.": ["192.168.50.111"],
        "ubnt.local.": ["192.168.50.111"],
    }


def test_dhcp_source_reads_lease_file(tmp_path):
    path = tmp_path / "dnsmasq.leases"
    path.write_text(DNSMASQ_LEASES)
    source = DHCP(lease_files=[(str(tmp_path / "missing"), "isc-dhcpd"), (str(path), "dnsmasq")])
    assert source.name == "dhcp"
    assert source.lookup_mac("02:00:00:00:00:01") == ["wrt54g."]
    assert source.lookup_addr("192.168.50.111") == ["ubnt."]
    assert source.lookup_host("WRT54G") == ["192.168.50.12"]
    assert source.lookup_host("wrt54g.local") == ["192.168.50.12"]
    visited = dict(source.visit())
    assert visited["ubnt."] == ["192.168.50.111"]
    assert len(visited) == 6


def test_dhcp_source_keeps_data_until_refresh(tmp_path):
    path = tmp_path / "dnsmasq.leases"
    path.write_text(DNSMASQ_LEASES)
    source = DHCP(lease_files=[(str(path), "dnsmasq")])
    assert source.lookup_addr("192.168.50.12") == ["wrt54g."]
    path.write_text("")
    assert source.lookup_addr("192.168.50.12") == ["wrt54g."]


def test_dhcp_source_reports_unknown_format(tmp_path):
    path = tmp_path / "leases"
    path.write_text(DNSMASQ_LEASES)
    errors = []
    source = DHCP(on_error=errors.append, lease_files=[(str(path), "bogus")])
    assert source.lookup_addr("192.168.50.12") == []
    assert len(errors) == 1
    assert "unknown format: bogus" in str(errors[0])


def test_dhcp_source_without_lease_file(tmp_path):
    errors = []
    source = DHCP(on_error=errors.append, lease_files=[(str(tmp_path / "none"), "dnsmasq")])
    assert source.lookup_mac("02:00:00:00:00:01") == []
    assert list(source.visit()) == []
    assert errors == []