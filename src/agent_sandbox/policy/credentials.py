"""Credential mount resolution.

Decides which host credential material is bind-mounted into an agent
container.  The agent credential directory is chosen by a strict
precedence chain (first match wins):

1. an explicit override directory, mounted read-write;
2. an auto-detected host OAuth session, mounted read-only, used only when
   no API key is present in the environment;
3. a sandbox-owned default directory, shared or namespace-scoped depending
   on the isolation mode, mounted read-write.

VCS hosting credentials (``~/.config/gh``) and the git identity file
(``~/.gitconfig``) are layered on top independently, always read-only.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from agent_sandbox.errors import ConfigurationError
from agent_sandbox.models.enums import AccessMode, CredentialKind, IsolationMode
from agent_sandbox.models.mount import MountSpec
from agent_sandbox.models.plan import CredentialSource
from agent_sandbox.policy.mounts import RANK_CREDENTIAL, RANK_VCS

logger = logging.getLogger(__name__)

PRIMARY_API_KEY_VAR = "ANTHROPIC_API_KEY"

_NAMESPACE_RE: re.Pattern[str] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def validate_namespace(namespace: str) -> str:
    """Return *namespace* if it is safe to use as a single path component.

    Distinct valid namespaces always map to distinct directories, which is
    what keeps one client's credentials invisible to another.
    """
    if not _NAMESPACE_RE.match(namespace) or namespace in (".", ".."):
        raise ConfigurationError(
            f"Invalid client name {namespace!r}: use letters, digits, '.', '_' or '-'"
        )
    return namespace


@dataclass(frozen=True)
class HostCredentials:
    """Snapshot of the credential-bearing paths on the host.

    Taken fresh for every launch; nothing here is cached between runs.
    """

    home: Path
    api_key_set: bool = False

    @classmethod
    def detect(cls, home: Path | None = None, environ: Mapping[str, str] | None = None) -> HostCredentials:
        env = environ if environ is not None else os.environ
        return cls(
            home=home if home is not None else Path.home(),
            api_key_set=bool(env.get(PRIMARY_API_KEY_VAR)),
        )

    @property
    def claude_dir(self) -> Path:
        return self.home / ".claude"

    @property
    def session_file(self) -> Path:
        return self.claude_dir / ".credentials.json"

    @property
    def session_state_file(self) -> Path:
        return self.home / ".claude.json"

    @property
    def gh_config_dir(self) -> Path:
        return self.home / ".config" / "gh"

    @property
    def gitconfig(self) -> Path:
        return self.home / ".gitconfig"


@dataclass
class CredentialResolution:
    """Mounts chosen for credential-bearing paths plus their provenance."""

    source: CredentialSource
    mounts: list[MountSpec] = field(default_factory=list)
    provenance: list[str] = field(default_factory=list)


class CredentialMountPolicy:
    """Compute the ordered credential mounts for one launch.

    Parameters
    ----------
    data_root:
        Base directory for sandbox-owned state (``AGENT_SANDBOX_DATA``).
    isolation_mode:
        ``shared`` keeps one default credential directory for everybody;
        ``per-namespace`` gives each client its own.
    container_home:
        Home directory of the agent user inside the container.
    """

    def __init__(
        self,
        data_root: Path,
        isolation_mode: IsolationMode = IsolationMode.PER_NAMESPACE,
        container_home: str = "/home/agent",
    ) -> None:
        self._data_root = data_root
        self._isolation_mode = isolation_mode
        self._container_home = container_home.rstrip("/")

    @property
    def isolation_mode(self) -> IsolationMode:
        return self._isolation_mode

    def state_dir(self, namespace: str | None) -> Path:
        """Host directory holding sandbox-owned state for *namespace*."""
        if self._isolation_mode is IsolationMode.SHARED:
            return self._data_root / "shared"
        if not namespace:
            raise ConfigurationError("--client is required in per-namespace isolation mode")
        return self._data_root / "clients" / validate_namespace(namespace)

    def resolve(
        self,
        host: HostCredentials,
        namespace: str | None = None,
        override: Path | None = None,
    ) -> CredentialResolution:
        """Apply the precedence chain and the VCS overlay."""
        if override is not None:
            resolution = self._from_override(override)
        elif not host.api_key_set and host.session_file.is_file():
            resolution = self._from_session(host)
        else:
            resolution = self._from_default(namespace)

        self._add_vcs_overlay(host, resolution)

        for line in resolution.provenance:
            logger.info("%s", line)
        return resolution

    # ------------------------------------------------------------------
    # Precedence rules
    # ------------------------------------------------------------------

    def _from_override(self, override: Path) -> CredentialResolution:
        config_dir = override.expanduser()
        if not config_dir.is_dir():
            raise ConfigurationError(f"Claude config directory does not exist: {config_dir}")
        config_dir = config_dir.resolve()

        resolution = CredentialResolution(
            source=CredentialSource(
                kind=CredentialKind.EXPLICIT_OVERRIDE,
                host_path=config_dir,
                present=True,
            ),
        )
        resolution.mounts.append(self._mount(config_dir, ".claude", AccessMode.READ_WRITE, relabel=True))
        resolution.provenance.append(f"Claude config: {config_dir} (explicit override, rw)")

        if config_dir.name == ".claude":
            state_file = config_dir.parent / ".claude.json"
        else:
            state_file = config_dir / ".claude.json"
        if state_file.is_file():
            resolution.mounts.append(
                self._mount(state_file, ".claude.json", AccessMode.READ_WRITE, relabel=True)
            )
            resolution.provenance.append(f"Claude session state: {state_file} (explicit override, rw)")
        return resolution

    def _from_session(self, host: HostCredentials) -> CredentialResolution:
        resolution = CredentialResolution(
            source=CredentialSource(
                kind=CredentialKind.AUTO_DETECTED_SESSION,
                host_path=host.claude_dir,
                present=True,
            ),
        )
        resolution.mounts.append(self._mount(host.claude_dir, ".claude", AccessMode.READ_ONLY))
        resolution.provenance.append(f"Claude config: {host.claude_dir} (auto-detected OAuth, ro)")
        if host.session_state_file.is_file():
            resolution.mounts.append(
                self._mount(host.session_state_file, ".claude.json", AccessMode.READ_ONLY)
            )
            resolution.provenance.append(
                f"Claude session state: {host.session_state_file} (auto-detected OAuth, ro)"
            )
        return resolution

    def _from_default(self, namespace: str | None) -> CredentialResolution:
        config_dir = self.state_dir(namespace) / "claude"
        config_dir.mkdir(parents=True, exist_ok=True)
        if self._isolation_mode is IsolationMode.SHARED:
            kind = CredentialKind.SHARED_DEFAULT
            label = "shared sandbox state"
        else:
            kind = CredentialKind.ISOLATED_NAMESPACE_DEFAULT
            label = f"isolated to client {namespace!r}"

        resolution = CredentialResolution(
            source=CredentialSource(kind=kind, host_path=config_dir, present=True),
        )
        resolution.mounts.append(self._mount(config_dir, ".claude", AccessMode.READ_WRITE, relabel=True))
        resolution.provenance.append(f"Claude config: {config_dir} ({label}, rw)")
        return resolution

    # ------------------------------------------------------------------
    # VCS overlay
    # ------------------------------------------------------------------

    def _add_vcs_overlay(self, host: HostCredentials, resolution: CredentialResolution) -> None:
        if host.gh_config_dir.is_dir():
            resolution.mounts.append(
                self._mount(host.gh_config_dir, ".config/gh", AccessMode.READ_ONLY, rank=RANK_VCS)
            )
            resolution.provenance.append(f"GitHub CLI config: {host.gh_config_dir} (ro)")
        if host.gitconfig.is_file():
            resolution.mounts.append(
                self._mount(host.gitconfig, ".gitconfig", AccessMode.READ_ONLY, rank=RANK_VCS)
            )
            resolution.provenance.append(f"Git identity: {host.gitconfig} (ro)")

    def _mount(
        self,
        host_path: Path,
        relative: str,
        mode: AccessMode,
        rank: int = RANK_CREDENTIAL,
        relabel: bool = False,
    ) -> MountSpec:
        return MountSpec(
            host_path=host_path.absolute(),
            container_path=f"{self._container_home}/{relative}",
            mode=mode,
            rank=rank,
            relabel=relabel,
        )
