"""Tests for host normalization helpers."""

import pytest

from onguard.utils.domains import (
    canonicalize_domain,
    domain_matches,
    extract_hostname,
    registered_domain,
    split_domain,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("https://WWW.Example.com/path?q=1", "example.com"),
        ("example.com:8443/login", "example.com:8443"),
        ("  sub.example.co.kr.  ", "sub.example.co.kr"),
        ("", ""),
    ],
)
def test_canonicalize_domain(value, expected):
    assert canonicalize_domain(value) == expected


def test_extract_hostname_drops_port():
    assert extract_hostname("http://www.example.com:8080/x") == "example.com"


def test_split_and_registered_domain():
    assert split_domain("https://login.shop.example.co.kr") == ("login.shop", "example", "co.kr")
    assert registered_domain("a.b.naver.com") == "naver.com"


def test_domain_matches_exact_and_subdomain():
    domains = {"bit.ly", "web.app"}
    assert domain_matches("bit.ly", domains)
    assert domain_matches("toss-event.web.app", domains)
    assert not domain_matches("notbit.ly", domains)
    assert not domain_matches("", domains)
