"""
tests/unit/test_domain_filter.py

Unit tests for kelpie_dns/models/domain_filter.py.
"""

from __future__ import annotations

import pytest

from kelpie_dns.models.domain_filter import DomainFilter, ZoneIDFilter, find_zone


def test_empty_filter_matches_everything():
    domain_filter = DomainFilter()
    assert not domain_filter.is_configured()
    assert domain_filter.match("anything.example.org")


@pytest.mark.parametrize(
    "name, expected",
    [
        ("example.com", True),
        ("www.example.com", True),
        ("WWW.EXAMPLE.COM.", True),
        ("badexample.com", False),
        ("example.org", False),
    ],
)
def test_include_matches_domain_and_subdomains(name, expected):
    assert DomainFilter(["example.com"]).match(name) is expected


def test_leading_dot_matches_subdomains_only():
    domain_filter = DomainFilter([".example.com"])
    assert domain_filter.match("www.example.com")
    assert not domain_filter.match("example.com")


def test_wildcard_include_behaves_like_leading_dot():
    domain_filter = DomainFilter(["*.example.com"])
    assert domain_filter.match("www.example.com")
    assert not domain_filter.match("example.com")


def test_exclusion_wins_over_inclusion():
    domain_filter = DomainFilter(["example.com"], ["internal.example.com"])
    assert domain_filter.match("www.example.com")
    assert not domain_filter.match("internal.example.com")
    assert not domain_filter.match("db.internal.example.com")


def test_exclude_only_filter():
    domain_filter = DomainFilter(exclude=["example.org"])
    assert domain_filter.match("example.com")
    assert not domain_filter.match("www.example.org")


def test_regex_overrides_lists():
    domain_filter = DomainFilter(
        ["example.org"], regex=r"\.example\.com$", regex_exclusion=r"^internal\."
    )
    assert domain_filter.is_configured()
    assert domain_filter.match("www.example.com")
    assert not domain_filter.match("internal.example.com")
    assert not domain_filter.match("www.example.org")


def test_zone_id_filter():
    assert ZoneIDFilter().match("any")
    zone_id_filter = ZoneIDFilter(["zone1"])
    assert zone_id_filter.match("zone1")
    assert not zone_id_filter.match("zone2")


def test_find_zone_prefers_longest_suffix():
    zones = {"z1": "example.com", "z2": "sub.example.com"}
    assert find_zone(zones, "www.sub.example.com") == "z2"
    assert find_zone(zones, "www.example.com") == "z1"
    assert find_zone(zones, "example.com") == "z1"
    assert find_zone(zones, "www.example.org") is None
    assert find_zone(zones, "notexample.com") is None
