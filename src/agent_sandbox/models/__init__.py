"""Public data models for the agent sandbox launcher."""

from agent_sandbox.models.enums import (
    AccessMode,
    AgentVariant,
    BootstrapState,
    CredentialKind,
    IsolationMode,
    NetworkMode,
)
from agent_sandbox.models.mount import MountSpec
from agent_sandbox.models.plan import (
    AllowlistEntry,
    CredentialSource,
    LaunchPlan,
    LaunchRequest,
    ReattachAction,
)

__all__ = [
    "AccessMode",
    "AgentVariant",
    "AllowlistEntry",
    "BootstrapState",
    "CredentialKind",
    "CredentialSource",
    "IsolationMode",
    "LaunchPlan",
    "LaunchRequest",
    "MountSpec",
    "NetworkMode",
    "ReattachAction",
]
