"""Allowlist firewall applied inside firewalled containers."""

from __future__ import annotations

from agent_sandbox.config import Settings
from agent_sandbox.firewall.allowlist import DomainAllowlistResolver, lookup_ipv4
from agent_sandbox.firewall.commands import CommandResult, CommandRunner
from agent_sandbox.firewall.rules import (
    ADDRESS_SET_NAME,
    FIREWALL_STEPS,
    FirewallCommand,
    FirewallResult,
    FirewallRuleBuilder,
    FirewallStep,
)

__all__ = [
    "ADDRESS_SET_NAME",
    "FIREWALL_STEPS",
    "CommandResult",
    "CommandRunner",
    "DomainAllowlistResolver",
    "FirewallCommand",
    "FirewallResult",
    "FirewallRuleBuilder",
    "FirewallStep",
    "build_firewall",
    "lookup_ipv4",
]


def build_firewall(settings: Settings, include_github_meta: bool = True) -> FirewallRuleBuilder:
    """Return a :class:`FirewallRuleBuilder` configured from *settings*."""
    resolver = DomainAllowlistResolver(
        settings.allowed_domains,
        github_meta_url=settings.github_meta_url if include_github_meta else None,
        timeout=settings.github_meta_timeout_seconds,
    )
    return FirewallRuleBuilder(resolver)
