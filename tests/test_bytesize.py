import pytest

from nextdnskit.bytesize import parse_bytes


@pytest.mark.parametrize(
    "text, expected",
    [
        ("42", 42),
        ("42MB", 44040192),
        ("42mb", 44040192),
        ("42 MB", 44040192),
        ("42 mb", 44040192),
        ("42.5MB", 44564480),
        ("42.5 MB", 44564480),
        ("42M", 44040192),
        ("42m", 44040192),
        ("42 M", 44040192),
        ("42 m", 44040192),
        ("42.5M", 44564480),
        ("42.5 M", 44564480),
        ("1,234.03 MB", 1293974241),
    ],
)
def test_parse_bytes(text, expected):
    assert parse_bytes(text) == expected


def test_units_scale_by_powers_of_1024():
    assert parse_bytes("1kb") == 1024 * parse_bytes("1b")
    assert parse_bytes("1g") == 1024 * parse_bytes("1m")
    assert parse_bytes("1TB") == 1024 * parse_bytes("1GB")


def test_zero_is_valid():
    assert parse_bytes("0") == 0


@pytest.mark.parametrize("text", ["", "MB", " 42"])
def test_missing_number(text):
    with pytest.raises(ValueError, match="invalid number"):
        parse_bytes(text)


def test_malformed_number():
    with pytest.raises(ValueError):
        parse_bytes("1.2.3")


def test_unknown_unit():
    with pytest.raises(ValueError, match="unknown unit name: xb"):
        parse_bytes("12 XB")


def test_too_large():
    with pytest.raises(ValueError, match="too large"):
        parse_bytes("20EB")