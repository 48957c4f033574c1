"""Resolution of the allowlisted service domains to IPv4 addresses."""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Callable, Iterable

import httpx

from agent_sandbox.models.plan import AllowlistEntry

logger = logging.getLogger(__name__)

GITHUB_META_URL = "https://api.github.com/meta"

# Keys of the GitHub meta document whose ranges agents need (web UI, REST
# API and git over HTTPS/SSH).
_GITHUB_META_KEYS: tuple[str, ...] = ("web", "api", "git")

Lookup = Callable[[str], list[str]]


def lookup_ipv4(domain: str) -> list[str]:
    """Return the IPv4 addresses the system resolver reports for *domain*."""
    infos = socket.getaddrinfo(domain, None, family=socket.AF_INET, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


def _is_ipv4_address(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def _ipv4_network(value: str) -> str | None:
    try:
        network = ipaddress.ip_network(value, strict=False)
    except ValueError:
        return None
    return str(network) if network.version == 4 else None


class DomainAllowlistResolver:
    """Resolve a fixed list of domains, skipping any that fail.

    Parameters
    ----------
    domains:
        Domain names to resolve, in order.
    lookup:
        Callable returning the addresses of one domain; defaults to the
        system resolver.  Resolver timeouts are whatever the system uses.
    github_meta_url:
        URL of GitHub's published meta document, or ``None`` to skip it.
    timeout:
        Timeout in seconds for the meta document fetch.
    http_client:
        Optional pre-built :class:`httpx.Client` (mainly for tests).
    """

    def __init__(
        self,
        domains: Iterable[str],
        lookup: Lookup = lookup_ipv4,
        github_meta_url: str | None = GITHUB_META_URL,
        timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.domains = list(domains)
        self._lookup = lookup
        self._github_meta_url = github_meta_url
        self._timeout = timeout
        self._http_client = http_client

    def resolve_domains(self) -> list[AllowlistEntry]:
        """Resolve every domain; unresolvable ones yield an empty entry."""
        entries: list[AllowlistEntry] = []
        for domain in self.domains:
            logger.info("Resolving %s...", domain)
            try:
                found = self._lookup(domain)
            except (OSError, UnicodeError) as exc:
                logger.warning("Could not resolve %s (%s), skipping", domain, exc)
                entries.append(AllowlistEntry(domain=domain))
                continue

            addresses = [addr for addr in found if _is_ipv4_address(addr)]
            if not addresses:
                logger.warning("Could not resolve %s, skipping", domain)
            for addr in addresses:
                logger.info("  Added %s (%s)", addr, domain)
            entries.append(AllowlistEntry(domain=domain, addresses=addresses))
        return entries

    def fetch_github_ranges(self) -> set[str]:
        """Return the IPv4 CIDRs GitHub advertises, or an empty set on failure."""
        if not self._github_meta_url:
            return set()

        logger.info("Fetching GitHub IP ranges...")
        try:
            if self._http_client is not None:
                resp = self._http_client.get(self._github_meta_url, timeout=self._timeout)
            else:
                resp = httpx.get(self._github_meta_url, timeout=self._timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Could not fetch GitHub IP ranges (%s), skipping", exc)
            return set()

        if not isinstance(payload, dict):
            logger.warning("Unexpected GitHub meta payload, skipping")
            return set()

        ranges: set[str] = set()
        for key in _GITHUB_META_KEYS:
            values = payload.get(key) or []
            if not isinstance(values, list):
                continue
            for value in values:
                network = _ipv4_network(str(value))
                if network is not None:
                    ranges.add(network)
        logger.info("  Added %d GitHub IP ranges", len(ranges))
        return ranges

    def resolve(self) -> set[str]:
        """Return the deduplicated union of all resolved addresses and ranges."""
        addresses: set[str] = set()
        for entry in self.resolve_domains():
            addresses.update(entry.addresses)
        addresses.update(self.fetch_github_ranges())
        return addresses
