"""LaunchRequest, LaunchPlan, ReattachAction, CredentialSource and AllowlistEntry."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from agent_sandbox.models.enums import AgentVariant, CredentialKind, NetworkMode
from agent_sandbox.models.mount import MountSpec
from agent_sandbox.sandbox.security import SecurityPolicy


class CredentialSource(BaseModel):
    """The agent credential directory chosen for one launch.

    Evaluated fresh on every launch and never cached.
    """

    kind: CredentialKind = Field(
        description="Which precedence rule produced the credential mount.",
    )
    host_path: Path | None = Field(
        default=None,
        description="Host directory mounted as the credential directory.",
    )
    present: bool = Field(
        default=False,
        description="Whether the host path existed when the launch was resolved.",
    )


class LaunchRequest(BaseModel):
    """Operator input for a single launch, before any resolution."""

    agent: str = Field(
        default=AgentVariant.CLAUDE.value,
        description="Requested agent variant; validated by the resolver.",
    )
    namespace: str | None = Field(
        default=None,
        description="Client identifier partitioning state and container identity.",
    )
    project_dir: Path | None = Field(
        default=None,
        description="Project directory mounted at /workspace (default: cwd).",
    )
    credential_override: Path | None = Field(
        default=None,
        description="Explicit agent credential directory to share with the container.",
    )
    network_mode: NetworkMode = Field(
        default=NetworkMode.OPEN,
    )
    extra_mounts: list[MountSpec] = Field(
        default_factory=list,
        description="Caller-supplied bind mounts; lower priority than policy mounts.",
    )
    extra_runtime_args: list[str] = Field(
        default_factory=list,
        description="Arguments passed through verbatim to the runtime's run command.",
    )
    resume: bool = Field(
        default=False,
        description="Reattach to a live container with the same identity if one exists.",
    )
    image: str | None = Field(
        default=None,
        description="Container image; falls back to the configured default.",
    )


class LaunchPlan(BaseModel):
    """Fully resolved launch handed to the container runtime."""

    namespace: str | None = None
    agent: AgentVariant
    project_dir: Path
    network_mode: NetworkMode
    mounts: list[MountSpec] = Field(default_factory=list)
    environment: list[tuple[str, str]] = Field(default_factory=list)
    container_name: str
    image: str
    command: list[str]
    security: SecurityPolicy = Field(default_factory=SecurityPolicy)
    workdir: str = "/workspace"
    credential: CredentialSource | None = None
    extra_runtime_args: list[str] = Field(default_factory=list)


class ReattachAction(BaseModel):
    """Resume short-circuit: attach to an already running container."""

    container_name: str


class AllowlistEntry(BaseModel):
    """Addresses resolved for one allowlisted domain during this run."""

    domain: str
    addresses: list[str] = Field(default_factory=list)
    resolved_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
    )

    @property
    def resolved(self) -> bool:
        return bool(self.addresses)
