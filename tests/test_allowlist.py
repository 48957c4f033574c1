"""Tests for allowlist domain resolution."""

from __future__ import annotations

import socket

import httpx
import pytest

from agent_sandbox.firewall.allowlist import DomainAllowlistResolver

META_URL = "https://api.github.com/meta"

GITHUB_META = {
    "verifiable_password_authentication": False,
    "web": ["192.30.252.0/22", "2a0a:a440::/29"],
    "api": ["192.30.252.0/22", "140.82.112.0/20"],
    "git": ["140.82.112.0/20", "143.55.64.0/20"],
    "hooks": ["192.30.252.0/22", "10.0.0.0/8"],
}


def _lookup_from(table: dict[str, list[str]]):
    def lookup(domain: str) -> list[str]:
        if domain not in table:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return table[domain]

    return lookup


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestResolveDomains:
    def test_partial_failure_keeps_the_rest(self):
        table = {
            "api.anthropic.com": ["160.79.104.10"],
            "pypi.org": ["151.101.0.223", "151.101.64.223"],
            "registry.npmjs.org": ["104.16.1.35"],
        }
        domains = ["api.anthropic.com", "broken.invalid", "pypi.org", "registry.npmjs.org"]
        resolver = DomainAllowlistResolver(domains, lookup=_lookup_from(table), github_meta_url=None)

        addresses = resolver.resolve()

        assert addresses == {"160.79.104.10", "151.101.0.223", "151.101.64.223", "104.16.1.35"}

    def test_unresolved_domain_has_empty_entry(self):
        resolver = DomainAllowlistResolver(
            ["ok.example", "broken.invalid"],
            lookup=_lookup_from({"ok.example": ["203.0.113.7"]}),
            github_meta_url=None,
        )
        entries = resolver.resolve_domains()
        assert [e.domain for e in entries] == ["ok.example", "broken.invalid"]
        assert entries[0].resolved and entries[0].addresses == ["203.0.113.7"]
        assert not entries[1].resolved
        assert entries[0].resolved_at.tzinfo is not None

    def test_all_domains_failing_is_not_an_error(self):
        resolver = DomainAllowlistResolver(
            ["a.invalid", "b.invalid"], lookup=_lookup_from({}), github_meta_url=None
        )
        assert resolver.resolve() == set()

    def test_unicode_error_is_skipped(self):
        def lookup(domain):
            raise UnicodeError("label too long")

        resolver = DomainAllowlistResolver(["x" * 70 + ".example"], lookup=lookup, github_meta_url=None)
        assert resolver.resolve() == set()

    def test_non_ipv4_results_dropped(self):
        resolver = DomainAllowlistResolver(
            ["dual.example"],
            lookup=_lookup_from({"dual.example": ["2001:db8::1", "198.51.100.4", "garbage"]}),
            github_meta_url=None,
        )
        assert resolver.resolve() == {"198.51.100.4"}

    def test_shared_addresses_deduplicated(self):
        table = {"github.com": ["140.82.112.3"], "api.github.com": ["140.82.112.3"]}
        resolver = DomainAllowlistResolver(table, lookup=_lookup_from(table), github_meta_url=None)
        assert resolver.resolve() == {"140.82.112.3"}

    def test_warning_logged_for_failure(self, caplog):
        resolver = DomainAllowlistResolver(["broken.invalid"], lookup=_lookup_from({}), github_meta_url=None)
        resolver.resolve()
        assert "Could not resolve broken.invalid" in caplog.text


class TestGithubMeta:
    def test_ipv4_ranges_unioned(self):
        client = _client(lambda request: httpx.Response(200, json=GITHUB_META))
        resolver = DomainAllowlistResolver(
            ["github.com"],
            lookup=_lookup_from({"github.com": ["140.82.112.3"]}),
            github_meta_url=META_URL,
            http_client=client,
        )

        addresses = resolver.resolve()

        assert addresses == {"140.82.112.3", "192.30.252.0/22", "140.82.112.0/20", "143.55.64.0/20"}
        assert "10.0.0.0/8" not in addresses

    @pytest.mark.parametrize(
        "handler",
        [
            lambda request: httpx.Response(500, text="oops"),
            lambda request: httpx.Response(200, content=b"not json"),
            lambda request: httpx.Response(200, json=["unexpected"]),
        ],
        ids=["server-error", "invalid-json", "wrong-shape"],
    )
    def test_fetch_failure_is_non_fatal(self, handler):
        resolver = DomainAllowlistResolver(
            ["github.com"],
            lookup=_lookup_from({"github.com": ["140.82.112.3"]}),
            github_meta_url=META_URL,
            http_client=_client(handler),
        )
        assert resolver.resolve() == {"140.82.112.3"}

    def test_connection_error_is_non_fatal(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        resolver = DomainAllowlistResolver(
            [], github_meta_url=META_URL, http_client=_client(handler)
        )
        assert resolver.fetch_github_ranges() == set()

    def test_disabled(self):
        def handler(request):
            raise AssertionError("meta endpoint must not be fetched")

        resolver = DomainAllowlistResolver([], github_meta_url=None, http_client=_client(handler))
        assert resolver.fetch_github_ranges() == set()

    def test_requests_configured_url(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={})

        DomainAllowlistResolver([], github_meta_url=META_URL, http_client=_client(handler)).fetch_github_ranges()
        assert seen == [META_URL]
