"""
tests/unit/test_txt_format.py

Unit tests for kelpie_dns/registry/txt_format.py.
"""

from __future__ import annotations

import pytest

from kelpie_dns.exceptions import ConfigError
from kelpie_dns.registry.txt_format import (
    ENCRYPTED_PREFIX,
    FORMAT_LEGACY,
    FORMAT_NEW,
    AffixNameMapper,
    InvalidHeritageError,
    OwnershipCodec,
    format_labels,
    parse_labels,
)

_LABELS = {"owner": "owner-a", "resource": "docker/web"}


# ---------------------------------------------------------------------------
# Content encoding
# ---------------------------------------------------------------------------


def test_format_labels_new_format():
    assert format_labels(_LABELS) == (
        "heritage=kelpie-dns,kelpie-dns/owner=owner-a,kelpie-dns/resource=docker/web"
    )


def test_format_labels_legacy_format():
    assert format_labels(_LABELS, new_format=False) == (
        "heritage=kelpie-dns,owner=owner-a,resource=docker/web"
    )


def test_format_labels_skips_empty_values():
    assert format_labels({"owner": "owner-a", "resource": ""}) == (
        "heritage=kelpie-dns,kelpie-dns/owner=owner-a"
    )


@pytest.mark.parametrize("new_format", [True, False])
def test_codec_round_trip(new_format):
    codec = OwnershipCodec()
    content = codec.encode(_LABELS, new_format=new_format)
    assert content.startswith('"') and content.endswith('"')

    labels, content_format = codec.decode(content)
    assert labels == _LABELS
    assert content_format == (FORMAT_NEW if new_format else FORMAT_LEGACY)


def test_parse_legacy_content_written_by_older_versions():
    labels, content_format = parse_labels('"heritage=kelpie-dns,owner=old-owner"')
    assert labels == {"owner": "old-owner"}
    assert content_format == FORMAT_LEGACY


def test_parse_rejects_foreign_heritage():
    with pytest.raises(InvalidHeritageError):
        parse_labels("heritage=external-dns,external-dns/owner=default")


def test_parse_rejects_plain_txt_content():
    with pytest.raises(InvalidHeritageError):
        parse_labels("v=spf1 include:_spf.example.com -all")


def test_parse_rejects_heritage_without_labels():
    with pytest.raises(InvalidHeritageError):
        parse_labels("heritage=kelpie-dns")


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------


def test_encrypted_round_trip():
    codec = OwnershipCodec("secret")
    content = codec.encode(_LABELS)
    assert content.strip('"').startswith(ENCRYPTED_PREFIX)
    assert "owner-a" not in content
    assert codec.decode(content)[0] == _LABELS


def test_encrypted_content_readable_by_another_instance_with_same_key():
    content = OwnershipCodec("secret").encode(_LABELS)
    assert OwnershipCodec("secret").decode(content)[0] == _LABELS


def test_encrypted_content_without_key_is_invalid():
    content = OwnershipCodec("secret").encode(_LABELS)
    with pytest.raises(InvalidHeritageError):
        OwnershipCodec().decode(content)


def test_encrypted_content_with_wrong_key_is_invalid():
    content = OwnershipCodec("secret").encode(_LABELS)
    with pytest.raises(InvalidHeritageError):
        OwnershipCodec("other").decode(content)


def test_codec_with_key_still_reads_plain_content():
    assert OwnershipCodec("secret").decode(format_labels(_LABELS))[0] == _LABELS


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------


def test_default_names():
    mapper = AffixNameMapper()
    assert mapper.to_txt_name("www.example.com", "A") == "a-www.example.com"
    assert mapper.to_legacy_txt_name("www.example.com") == "www.example.com"


def test_prefix_names():
    mapper = AffixNameMapper(prefix="kelpie-")
    assert mapper.to_txt_name("WWW.example.com.", "CNAME") == "kelpie-cname-www.example.com"
    assert mapper.to_legacy_txt_name("www.example.com") == "kelpie-www.example.com"


def test_prefix_with_record_type_template():
    mapper = AffixNameMapper(prefix="%{record_type}.owner.")
    assert mapper.to_txt_name("www.example.com", "AAAA") == "aaaa.owner.www.example.com"


def test_suffix_names():
    mapper = AffixNameMapper(suffix="-owner")
    assert mapper.to_txt_name("www.example.com", "A") == "a-www-owner.example.com"
    assert mapper.to_legacy_txt_name("www.example.com") == "www-owner.example.com"


def test_wildcard_replacement():
    mapper = AffixNameMapper(wildcard_replacement="star")
    assert mapper.to_txt_name("*.example.com", "A") == "a-star.example.com"
    assert mapper.to_legacy_txt_name("*.example.com") == "star.example.com"


def test_prefix_and_suffix_are_exclusive():
    with pytest.raises(ConfigError):
        AffixNameMapper(prefix="a-", suffix="-b")
