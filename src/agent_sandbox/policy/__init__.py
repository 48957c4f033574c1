"""Mount and credential resolution policy."""

from agent_sandbox.policy.credentials import (
    CredentialMountPolicy,
    CredentialResolution,
    HostCredentials,
    validate_namespace,
)
from agent_sandbox.policy.mounts import merge_mounts, parse_mount_arg

__all__ = [
    "CredentialMountPolicy",
    "CredentialResolution",
    "HostCredentials",
    "merge_mounts",
    "parse_mount_arg",
    "validate_namespace",
]
