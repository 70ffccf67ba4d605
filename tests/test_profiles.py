import ipaddress

import pytest

from nextdnskit.profiles import Profile, Profiles

RULES = [
    "10.10.10.128/27=profile1",
    "28:a0:2b:56:e9:66=profile2",
    "10.10.10.0/27=profile3",
    "profile4",
]


@pytest.mark.parametrize(
    "profiles, source_ip, dest_ip, mac, expected",
    [
        (RULES, "10.10.10.21", "10.10.10.1", "84:89:ad:7c:e3:db", "profile3"),
        (RULES, "10.10.10.21", "10.10.10.1", "28:a0:2b:56:e9:66", "profile2"),
        (RULES, "1.2.3.4", "10.10.10.1", "28:a0:2b:56:e9:db", "profile4"),
        (
            ["profile4"] + RULES[:3],
            "10.10.10.21",
            "10.10.10.1",
            "84:89:ad:7c:e3:db",
            "profile3",
        ),
        (["profile1", "profile2"], None, None, None, "profile2"),
    ],
    ids=["PrefixMatch", "MACMatch", "DefaultMatch", "NonLastDefault", "MultipleDefaults"],
)
def test_profiles_get(profiles, source_ip, dest_ip, mac, expected):
    ps = Profiles()
    for definition in profiles:
        ps.set(definition)
    assert ps.get(source_ip, dest_ip, mac) == expected


def test_get_accepts_address_objects_and_bytes():
    ps = Profiles()
    for definition in RULES:
        ps.set(definition)
    mac = bytes.fromhex("28a02b56e966")
    assert ps.get(ipaddress.ip_address("1.2.3.4"), None, mac) == "profile2"


def test_multiple_defaults_replace_each_other():
    ps = Profiles()
    ps.set("profile1")
    ps.set("profile2")
    assert ps.strings() == ["profile2"]


def test_same_prefix_replaces():
    ps = Profiles()
    ps.set("10.10.10.0/27=profile1")
    ps.set("10.10.10.5/27=profile2")
    assert len(ps) == 1
    assert ps.get("10.10.10.3", None, None) == "profile2"


def test_strings_round_trip():
    ps = Profiles()
    for definition in RULES:
        ps.set(definition)
    assert ps.strings() == RULES
    assert str(ps) == "[" + " ".join(RULES) + "]"


def test_parse_condition_kinds():
    assert Profile.parse("abcdef").is_default()
    prefix = Profile.parse(" 2001:0DB8::/64 = abcdef ")
    assert prefix.id == "abcdef"
    assert prefix.prefix == ipaddress.ip_network("2001:db8::/64")
    mac = Profile.parse("00:1c:42:2e:60:4a=abcdef")
    assert mac.mac == bytes.fromhex("001c422e604a")
    assert not mac.is_default()


def test_prefix_requires_source_ip():
    profile = Profile.parse("10.0.3.0/24=abcdef")
    assert not profile.match(None, None, None)
    assert profile.match("10.0.3.7", None, None)
    assert not profile.match("10.0.4.7", None, None)


def test_mac_requires_client_mac():
    profile = Profile.parse("02:00:00:00:00:01=abcdef")
    assert not profile.match("10.0.0.1", None, None)
    assert profile.match("10.0.0.1", None, "02:00:00:00:00:01")


def test_invalid_condition():
    with pytest.raises(ValueError, match="invalid condition format"):
        Profile.parse("no-such-interface-xyz=abcdef")
    ps = Profiles()
    with pytest.raises(ValueError):
        ps.set("no-such-interface-xyz=abcdef")
    assert len(ps) == 0