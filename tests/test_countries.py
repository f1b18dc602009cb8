import pytest

from scim_provisioning.countries import COUNTRIES, country_code, country_name


@pytest.mark.parametrize("value,expected", [
    ("GB", "GB"),
    ("gb", "GB"),
    ("United Kingdom", "GB"),
    ("united kingdom", "GB"),
    ("  Germany ", "DE"),
    ("ZZ", ""),
    ("Atlantis", ""),
    ("", ""),
    (None, ""),
])
def test_country_code(value, expected):
    assert country_code(value) == expected


def test_country_name():
    assert country_name("de") == "Germany"
    assert country_name("ZZ") == ""
    assert country_name(None) == ""


def test_names_round_trip():
    for code, name in COUNTRIES.items():
        assert country_code(name) == code
