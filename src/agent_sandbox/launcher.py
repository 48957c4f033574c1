"""Launch plan resolution: turns operator input into a concrete container launch.

The resolver validates the request, derives the container identity,
short-circuits to a reattach when resuming a live container, and otherwise
assembles mounts, environment, security posture and entry command into a
:class:`~agent_sandbox.models.plan.LaunchPlan`.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from pathlib import Path
from typing import Mapping

from agent_sandbox.config import Settings
from agent_sandbox.errors import ConfigurationError
from agent_sandbox.models.enums import AccessMode, AgentVariant, IsolationMode, NetworkMode
from agent_sandbox.models.mount import MountSpec
from agent_sandbox.models.plan import LaunchPlan, LaunchRequest, ReattachAction
from agent_sandbox.policy.credentials import CredentialMountPolicy, HostCredentials, validate_namespace
from agent_sandbox.policy.mounts import RANK_EXTRA, RANK_PROJECT, RANK_STATE, merge_mounts
from agent_sandbox.sandbox.runtime import ContainerRuntime
from agent_sandbox.sandbox.security import FIREWALL_CAPABILITIES, SecurityPolicy

logger = logging.getLogger(__name__)

WORKSPACE_PATH = "/workspace"

# Host environment variables forwarded verbatim when set.
PASSTHROUGH_ENV_VARS: tuple[str, ...] = ("ANTHROPIC_API_KEY", "OPENAI_API_KEY")

_AGENT_COMMANDS: dict[AgentVariant, tuple[str, ...]] = {
    AgentVariant.CLAUDE: ("claude", "--dangerously-skip-permissions"),
    AgentVariant.CODEX: ("codex", "--full-auto"),
    AgentVariant.SHELL: ("/bin/zsh",),
}

_NAME_UNSAFE_RE: re.Pattern[str] = re.compile(r"[^A-Za-z0-9_.-]+")


def get_agent_command(agent: str) -> tuple[AgentVariant, list[str]]:
    """Return the variant and container entry command for *agent*.

    Raises
    ------
    ConfigurationError
        If *agent* is not one of the supported variants.
    """
    try:
        variant = AgentVariant(agent)
    except ValueError:
        expected = ", ".join(v.value for v in AgentVariant)
        raise ConfigurationError(f"Unknown agent: {agent} (expected: {expected})") from None
    return variant, list(_AGENT_COMMANDS[variant])


def container_name_for(namespace: str | None, project_dir: Path) -> str:
    """Deterministic container identity for a (namespace, project) pair.

    The readable prefix is followed by a short digest of the exact pair, so
    pairs that read alike once joined (``a-b`` + ``c`` and ``a`` + ``b-c``)
    still get distinct names.
    """
    basename = project_dir.name or "root"
    parts = ["agent"]
    if namespace:
        parts.append(namespace)
    parts.append(basename)
    digest = hashlib.sha256(f"{namespace or ''}\0{basename}".encode()).hexdigest()[:8]
    return _NAME_UNSAFE_RE.sub("-", "-".join(parts)) + f"-{digest}"


class LaunchPlanResolver:
    """Resolve :class:`LaunchRequest` objects into launch plans.

    Parameters
    ----------
    settings:
        Launcher configuration.
    runtime:
        Container runtime, consulted only to decide whether to reattach.
    home:
        Host home directory holding credentials (default: the user's home).
    environ:
        Host environment (default: ``os.environ``).
    cwd:
        Directory used when the request names no project (default: cwd).
    """

    def __init__(
        self,
        settings: Settings,
        runtime: ContainerRuntime,
        home: Path | None = None,
        environ: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> None:
        self._settings = settings
        self._runtime = runtime
        self._home = home
        self._environ = environ if environ is not None else os.environ
        self._cwd = cwd
        self._policy = CredentialMountPolicy(
            data_root=settings.data,
            isolation_mode=settings.isolation_mode,
            container_home=settings.container_home,
        )

    @property
    def policy(self) -> CredentialMountPolicy:
        return self._policy

    def resolve(self, request: LaunchRequest) -> LaunchPlan | ReattachAction:
        """Validate *request* and build its launch plan (or a reattach action)."""
        agent, command = get_agent_command(request.agent)
        namespace = self._validate_namespace(request.namespace)
        project_dir = self._resolve_project_dir(request.project_dir)
        container_name = container_name_for(namespace, project_dir)

        if request.resume:
            if self._runtime.exists(container_name):
                return ReattachAction(container_name=container_name)
            logger.info(
                "No existing container found for client '%s'. Starting a new one.",
                namespace or "-",
            )

        state_dir = self._namespace_dir(namespace)
        state_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Client data directory: %s", state_dir)
        logger.info("Project directory:     %s", project_dir)
        logger.info("Agent:                 %s", agent.value)
        logger.info("Container:             %s", container_name)

        host = HostCredentials.detect(home=self._home, environ=self._environ)
        credentials = self._policy.resolve(host, namespace=namespace, override=request.credential_override)

        mounts = [
            MountSpec(
                host_path=project_dir,
                container_path=WORKSPACE_PATH,
                mode=AccessMode.READ_WRITE,
                rank=RANK_PROJECT,
                relabel=True,
            ),
            *self._state_mounts(state_dir),
            *credentials.mounts,
            *(m.model_copy(update={"rank": max(m.rank, RANK_EXTRA)}) for m in request.extra_mounts),
        ]

        security = SecurityPolicy()
        if request.network_mode is NetworkMode.FIREWALLED:
            security = security.with_capabilities(*FIREWALL_CAPABILITIES)
        logger.info("Security:              %s", security.describe())
        logger.info("Network:               %s", _describe_network(request.network_mode))

        environment = [(key, self._environ[key]) for key in PASSTHROUGH_ENV_VARS if self._environ.get(key)]
        for key, _ in environment:
            logger.info("Passing %s into the container", key)

        return LaunchPlan(
            namespace=namespace,
            agent=agent,
            project_dir=project_dir,
            network_mode=request.network_mode,
            mounts=merge_mounts(mounts),
            environment=environment,
            container_name=container_name,
            image=request.image or self._settings.image,
            command=command,
            security=security,
            workdir=WORKSPACE_PATH,
            credential=credentials.source,
            extra_runtime_args=list(request.extra_runtime_args),
        )

    def launch(self, request: LaunchRequest) -> None:
        """Resolve *request* and hand it to the runtime (attach or run)."""
        action = self.resolve(request)
        if isinstance(action, ReattachAction):
            self._runtime.attach(action.container_name)
            return
        self._runtime.launch(action)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_namespace(self, namespace: str | None) -> str | None:
        if namespace:
            return validate_namespace(namespace)
        if self._settings.isolation_mode is IsolationMode.PER_NAMESPACE:
            raise ConfigurationError("--client is required")
        return None

    def _resolve_project_dir(self, project_dir: Path | None) -> Path:
        path = (project_dir or self._cwd or Path.cwd()).expanduser()
        if not path.is_dir():
            raise ConfigurationError(f"Project directory does not exist: {path}")
        return path.resolve()

    def _namespace_dir(self, namespace: str | None) -> Path:
        if namespace:
            return self._settings.data / "clients" / namespace
        return self._settings.data / "shared"

    def _state_mounts(self, state_dir: Path) -> list[MountSpec]:
        home = self._settings.container_home.rstrip("/")
        if self._settings.persistent_home:
            targets = [("home", home), ("codex", f"{home}/.codex")]
        else:
            targets = [
                ("config", f"{home}/.config"),
                ("history", f"{home}/.local/share"),
                ("codex", f"{home}/.codex"),
            ]

        mounts: list[MountSpec] = []
        for subdir, container_path in targets:
            host_path = state_dir / subdir
            host_path.mkdir(parents=True, exist_ok=True)
            mounts.append(
                MountSpec(
                    host_path=host_path.absolute(),
                    container_path=container_path,
                    mode=AccessMode.READ_WRITE,
                    rank=RANK_STATE,
                    relabel=True,
                )
            )
        return mounts


def _describe_network(mode: NetworkMode) -> str:
    if mode is NetworkMode.ISOLATED:
        return "disabled (--network=none)"
    if mode is NetworkMode.FIREWALLED:
        return "allowlist firewall applied after start"
    return "open (runtime default)"
