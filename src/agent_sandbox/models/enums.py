"""AgentVariant, NetworkMode, AccessMode, IsolationMode and related enums."""

from enum import StrEnum


class AgentVariant(StrEnum):
    """Programs that can be launched as the container's entry command."""

    CLAUDE = "claude"
    CODEX = "codex"
    SHELL = "shell"


class NetworkMode(StrEnum):
    """Network posture of a launched container.

      OPEN       - runtime default network, no filtering.
      FIREWALLED - runtime default network plus the in-container allowlist.
      ISOLATED   - no network interfaces besides loopback.
    """

    OPEN = "open"
    FIREWALLED = "firewalled"
    ISOLATED = "isolated"


class AccessMode(StrEnum):
    """Bind mount access mode."""

    READ_ONLY = "ro"
    READ_WRITE = "rw"


class IsolationMode(StrEnum):
    """How credential state is partitioned between clients."""

    SHARED = "shared"
    PER_NAMESPACE = "per-namespace"


class CredentialKind(StrEnum):
    """Where the mounted agent credential directory came from."""

    EXPLICIT_OVERRIDE = "explicit-override"
    AUTO_DETECTED_SESSION = "auto-detected-session"
    ISOLATED_NAMESPACE_DEFAULT = "isolated-namespace-default"
    SHARED_DEFAULT = "shared-default"
    NONE = "none"


class BootstrapState(StrEnum):
    """Lifecycle states of the persistent home volume."""

    UNINITIALIZED = "UNINITIALIZED"
    COPYING = "COPYING"
    INITIALIZED = "INITIALIZED"
