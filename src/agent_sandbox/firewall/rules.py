"""Default-deny outbound firewall built from the domain allowlist.

Run as root inside the container.  The ruleset is installed as a fixed
sequence of steps (:data:`FIREWALL_STEPS`).  Essential traffic (loopback,
DNS, SSH) is allowed before the default-deny policy is set, otherwise the
resolver's own lookups would be dropped; established connections and the
allowlist are accepted after the policy is set, and everything else is
rejected so callers fail fast instead of timing out.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Iterable

from agent_sandbox.firewall.allowlist import DomainAllowlistResolver
from agent_sandbox.firewall.commands import CommandRunner

logger = logging.getLogger(__name__)

ADDRESS_SET_NAME = "allowed-domains"


class FirewallStep(StrEnum):
    """Stages of the firewall installation, in application order."""

    FLUSH = "flush"
    ALLOW_ESSENTIAL = "allow-essential"
    BUILD_ADDRESS_SET = "build-address-set"
    ALLOW_HOST_NETWORK = "allow-host-network"
    DEFAULT_DENY = "default-deny"
    ALLOW_ESTABLISHED = "allow-established"
    ALLOW_ADDRESS_SET = "allow-address-set"
    REJECT_REMAINING = "reject-remaining"


# Reordering these breaks connectivity silently: DEFAULT_DENY before
# ALLOW_ESSENTIAL drops DNS and SSH, and the accept rules after
# DEFAULT_DENY must exist before traffic can flow again.
FIREWALL_STEPS: tuple[FirewallStep, ...] = (
    FirewallStep.FLUSH,
    FirewallStep.ALLOW_ESSENTIAL,
    FirewallStep.BUILD_ADDRESS_SET,
    FirewallStep.ALLOW_HOST_NETWORK,
    FirewallStep.DEFAULT_DENY,
    FirewallStep.ALLOW_ESTABLISHED,
    FirewallStep.ALLOW_ADDRESS_SET,
    FirewallStep.REJECT_REMAINING,
)


@dataclass(frozen=True)
class FirewallCommand:
    """One iptables/ipset invocation belonging to a step."""

    step: FirewallStep
    argv: tuple[str, ...]
    required: bool = True


@dataclass
class FirewallResult:
    """What :meth:`FirewallRuleBuilder.apply` did."""

    applied: bool
    commands: list[FirewallCommand] = field(default_factory=list)
    addresses: set[str] = field(default_factory=set)
    host_network: str | None = None


def _iptables(*args: str) -> tuple[str, ...]:
    return ("iptables", *args)


def parse_default_gateway(route_output: str) -> str | None:
    """Return the /24 network of the default gateway in ``ip route`` output."""
    for line in route_output.splitlines():
        tokens = line.split()
        if not tokens or tokens[0] != "default" or "via" not in tokens:
            continue
        index = tokens.index("via") + 1
        if index >= len(tokens):
            continue
        try:
            gateway = ipaddress.IPv4Address(tokens[index])
        except ValueError:
            continue
        return str(ipaddress.ip_network(f"{gateway}/24", strict=False))
    return None


class FirewallRuleBuilder:
    """Build and apply the allowlist firewall.

    Parameters
    ----------
    resolver:
        Source of allowlisted addresses; resolved after the essential rules
        are in place so its DNS lookups are never blocked.
    runner:
        Executes the iptables/ipset/ip commands.
    """

    def __init__(
        self,
        resolver: DomainAllowlistResolver,
        runner: CommandRunner | None = None,
    ) -> None:
        self._resolver = resolver
        self._runner = runner or CommandRunner()

    # ------------------------------------------------------------------
    # Environment probes
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        """Whether iptables can be used in this network namespace."""
        return self._runner.run(_iptables("-L", "-n"), check=False).ok

    def detect_host_network(self) -> str | None:
        result = self._runner.run(("ip", "route"), check=False)
        if not result.ok:
            return None
        return parse_default_gateway(result.stdout)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def commands_for(
        self,
        step: FirewallStep,
        addresses: Iterable[str] = (),
        host_network: str | None = None,
    ) -> list[FirewallCommand]:
        """Return the commands that implement *step*."""
        if step is FirewallStep.FLUSH:
            return [
                *(FirewallCommand(step, _iptables("-P", chain, "ACCEPT")) for chain in ("INPUT", "FORWARD", "OUTPUT")),
                FirewallCommand(step, _iptables("-F")),
                FirewallCommand(step, _iptables("-X")),
                FirewallCommand(step, _iptables("-t", "nat", "-F"), required=False),
                FirewallCommand(step, _iptables("-t", "nat", "-X"), required=False),
                FirewallCommand(step, ("ipset", "destroy", ADDRESS_SET_NAME), required=False),
            ]
        if step is FirewallStep.ALLOW_ESSENTIAL:
            return [
                FirewallCommand(step, _iptables("-A", "INPUT", "-i", "lo", "-j", "ACCEPT")),
                FirewallCommand(step, _iptables("-A", "OUTPUT", "-o", "lo", "-j", "ACCEPT")),
                FirewallCommand(step, _iptables("-A", "OUTPUT", "-p", "udp", "--dport", "53", "-j", "ACCEPT")),
                FirewallCommand(step, _iptables("-A", "INPUT", "-p", "udp", "--sport", "53", "-j", "ACCEPT")),
                FirewallCommand(step, _iptables("-A", "OUTPUT", "-p", "tcp", "--dport", "22", "-j", "ACCEPT")),
                FirewallCommand(
                    step,
                    _iptables("-A", "INPUT", "-p", "tcp", "--sport", "22", "-m", "state", "--state", "ESTABLISHED", "-j", "ACCEPT"),
                ),
            ]
        if step is FirewallStep.BUILD_ADDRESS_SET:
            commands = [FirewallCommand(step, ("ipset", "create", ADDRESS_SET_NAME, "hash:net"))]
            commands.extend(
                FirewallCommand(step, ("ipset", "add", "-exist", ADDRESS_SET_NAME, addr), required=False)
                for addr in sorted(set(addresses))
            )
            return commands
        if step is FirewallStep.ALLOW_HOST_NETWORK:
            if host_network is None:
                return []
            return [
                FirewallCommand(step, _iptables("-A", "INPUT", "-s", host_network, "-j", "ACCEPT")),
                FirewallCommand(step, _iptables("-A", "OUTPUT", "-d", host_network, "-j", "ACCEPT")),
            ]
        if step is FirewallStep.DEFAULT_DENY:
            return [FirewallCommand(step, _iptables("-P", chain, "DROP")) for chain in ("INPUT", "FORWARD", "OUTPUT")]
        if step is FirewallStep.ALLOW_ESTABLISHED:
            return [
                FirewallCommand(step, _iptables("-A", chain, "-m", "state", "--state", "ESTABLISHED,RELATED", "-j", "ACCEPT"))
                for chain in ("INPUT", "OUTPUT")
            ]
        if step is FirewallStep.ALLOW_ADDRESS_SET:
            return [
                FirewallCommand(step, _iptables("-A", "OUTPUT", "-m", "set", "--match-set", ADDRESS_SET_NAME, "dst", "-j", "ACCEPT")),
            ]
        if step is FirewallStep.REJECT_REMAINING:
            return [
                FirewallCommand(step, _iptables("-A", "OUTPUT", "-j", "REJECT", "--reject-with", "icmp-admin-prohibited")),
            ]
        raise ValueError(f"Unknown firewall step: {step!r}")

    def plan(self, addresses: Iterable[str], host_network: str | None = None) -> list[FirewallCommand]:
        """Return the complete ordered command list for a given allowlist."""
        addresses = set(addresses)
        commands: list[FirewallCommand] = []
        for step in FIREWALL_STEPS:
            commands.extend(self.commands_for(step, addresses, host_network))
        return commands

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply(self) -> FirewallResult:
        """Install the firewall, or do nothing if iptables is unusable.

        An unusable iptables is not an error: under rootless Podman the
        network is already confined to the container's user namespace.
        A failing required command raises
        :class:`~agent_sandbox.errors.FirewallError`.
        """
        if not self.is_available():
            logger.info("iptables not available (expected under rootless Podman). Skipping firewall setup.")
            logger.info("Container network isolation is provided by Podman user namespaces.")
            return FirewallResult(applied=False)

        logger.info("Configuring container firewall...")
        result = FirewallResult(applied=False)
        for step in FIREWALL_STEPS:
            if step is FirewallStep.BUILD_ADDRESS_SET:
                result.addresses = self._resolver.resolve()
                result.host_network = self.detect_host_network()
            for command in self.commands_for(step, result.addresses, result.host_network):
                self._execute(command)
                result.commands.append(command)
            if step is FirewallStep.ALLOW_HOST_NETWORK and result.host_network:
                logger.info("Allowed host network: %s", result.host_network)

        result.applied = True
        logger.info("Firewall configuration complete (%d allowed destinations).", len(result.addresses))
        return result

    def _execute(self, command: FirewallCommand) -> None:
        outcome = self._runner.run(command.argv, check=command.required)
        if not outcome.ok:
            logger.debug("Ignoring failure of optional command: %s", " ".join(command.argv))
