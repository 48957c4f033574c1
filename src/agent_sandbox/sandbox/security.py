"""Capability and privilege baseline applied to every agent container."""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field

# Capabilities the agent user needs to manage files in bind-mounted
# directories and to switch uid inside the user namespace.
BASELINE_CAPABILITIES: tuple[str, ...] = ("DAC_OVERRIDE", "FOWNER", "SETUID", "SETGID")

# Extra capabilities required to install the in-container firewall.
FIREWALL_CAPABILITIES: tuple[str, ...] = ("NET_ADMIN", "NET_RAW")

_CAPABILITY_RE: re.Pattern[str] = re.compile(r"^[A-Z][A-Z_]*$")


@dataclass(frozen=True)
class SecurityPolicy:
    """Immutable security posture of a launched container.

    ``cap_drop`` must always contain ``ALL``: capabilities are granted only
    through the explicit ``cap_add`` re-add set.  This is enforced in
    ``__post_init__`` and any attempt to weaken it raises ``ValueError``.
    """

    cap_drop: tuple[str, ...] = ("ALL",)
    cap_add: tuple[str, ...] = field(default=BASELINE_CAPABILITIES)
    no_new_privileges: bool = True
    userns: str = "keep-id"

    def __post_init__(self) -> None:
        """Validate invariants that must never be violated."""
        if "ALL" not in self.cap_drop:
            raise ValueError(
                "SecurityPolicy.cap_drop MUST contain 'ALL'. "
                "Capabilities are only granted through cap_add."
            )
        for cap in self.cap_add:
            if cap == "ALL" or not _CAPABILITY_RE.match(cap):
                raise ValueError(f"Invalid capability in cap_add: {cap!r}")
        if not self.no_new_privileges:
            raise ValueError("SecurityPolicy.no_new_privileges MUST be True.")

    def with_capabilities(self, *caps: str) -> SecurityPolicy:
        """Return a copy with *caps* appended to the re-add set."""
        merged = self.cap_add + tuple(c for c in caps if c not in self.cap_add)
        return dataclasses.replace(self, cap_add=merged)

    def to_runtime_args(self) -> list[str]:
        """Convert to ``podman run`` / ``docker run`` flags."""
        args: list[str] = []
        if self.userns:
            args.append(f"--userns={self.userns}")
        args.extend(f"--cap-drop={cap}" for cap in self.cap_drop)
        args.extend(f"--cap-add={cap}" for cap in self.cap_add)
        if self.no_new_privileges:
            args.append("--security-opt=no-new-privileges")
        return args

    def describe(self) -> str:
        """One-line human readable summary for the launch log."""
        return (
            f"cap-drop={','.join(self.cap_drop)} "
            f"cap-add={','.join(self.cap_add) or '-'} "
            f"no-new-privileges={'yes' if self.no_new_privileges else 'no'} "
            f"userns={self.userns or 'default'}"
        )
