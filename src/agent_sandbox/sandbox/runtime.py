"""Container runtime collaborator: lifecycle queries, exec, run and attach.

Lifecycle queries and in-container exec go through the Docker SDK, which
speaks to Docker or to Podman's Docker-compatible API socket (``DOCKER_HOST``,
or the per-user Podman socket when unset).
The interactive ``run`` and ``attach`` are handed to the runtime CLI with
``os.execvp`` so the operator's terminal is passed straight through.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping, Sequence

import docker
import docker.errors
import requests.exceptions

from agent_sandbox.errors import ContainerRuntimeError
from agent_sandbox.models.enums import NetworkMode

if TYPE_CHECKING:
    from agent_sandbox.models.plan import LaunchPlan

logger = logging.getLogger(__name__)

# Command executed as root inside a firewalled container after it starts.
FIREWALL_COMMAND: tuple[str, ...] = ("agent-sandbox", "firewall")

_CONNECTION_ERRORS = (
    requests.exceptions.ConnectionError,
    ConnectionError,
)


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a command executed inside a running container."""

    exit_code: int
    output: str


class ContainerRuntime:
    """Thin wrapper over the container runtime used by the launcher.

    Parameters
    ----------
    binary:
        Runtime CLI used for the interactive ``run``/``attach`` (``podman``
        or ``docker``).
    docker_client:
        Optional pre-built Docker SDK client.  Created lazily from the
        environment on first use when omitted.
    """

    def __init__(
        self,
        binary: str = "podman",
        docker_client: docker.DockerClient | None = None,
    ) -> None:
        self._binary = binary
        self._client = docker_client

    @property
    def binary(self) -> str:
        return self._binary

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                base_url = default_api_socket(self._binary)
                if base_url is None:
                    self._client = docker.from_env()
                else:
                    self._client = docker.DockerClient(base_url=base_url)
            except docker.errors.DockerException as exc:
                raise ContainerRuntimeError(
                    f"Cannot connect to the container runtime API: {exc}"
                ) from exc
        return self._client

    # ------------------------------------------------------------------
    # Lifecycle queries
    # ------------------------------------------------------------------

    def exists(self, name: str) -> bool:
        """Return whether a container called *name* is known to the runtime."""
        try:
            self.client.containers.get(name)
        except docker.errors.NotFound:
            return False
        except (docker.errors.APIError, *_CONNECTION_ERRORS) as exc:
            raise ContainerRuntimeError(f"Failed to inspect container {name!r}: {exc}") from exc
        return True

    def remove(self, name: str) -> bool:
        """Force-remove container *name*; return ``False`` if it did not exist."""
        try:
            container = self.client.containers.get(name)
            container.remove(force=True)
        except docker.errors.NotFound:
            return False
        except (docker.errors.APIError, *_CONNECTION_ERRORS) as exc:
            raise ContainerRuntimeError(f"Failed to remove container {name!r}: {exc}") from exc
        logger.info("Removed stale container: %s", name)
        return True

    def exec(self, name: str, command: Sequence[str], user: str = "root") -> ExecResult:
        """Run *command* inside running container *name* and wait for it."""
        try:
            container = self.client.containers.get(name)
            exit_code, output = container.exec_run(list(command), user=user)
        except docker.errors.NotFound as exc:
            raise ContainerRuntimeError(f"Container {name!r} is not running") from exc
        except (docker.errors.APIError, *_CONNECTION_ERRORS) as exc:
            raise ContainerRuntimeError(f"Exec in container {name!r} failed: {exc}") from exc
        text = output.decode("utf-8", errors="replace") if isinstance(output, bytes) else str(output or "")
        return ExecResult(exit_code=int(exit_code if exit_code is not None else -1), output=text)

    # ------------------------------------------------------------------
    # Run / attach
    # ------------------------------------------------------------------

    def build_run_args(self, plan: LaunchPlan, detach: bool = False) -> list[str]:
        """Translate *plan* into a full ``<runtime> run`` argument vector."""
        args = [self._binary, "run", "--name", plan.container_name, "--rm"]
        args.extend(["-d", "-it"] if detach else ["-it"])
        args.extend(plan.security.to_runtime_args())
        args.extend(["-w", plan.workdir])
        for mount in plan.mounts:
            args.extend(["-v", mount.to_volume_arg()])
        # Values reach the runtime through its environment, never its argv.
        for key, _ in plan.environment:
            args.extend(["-e", key])
        if plan.network_mode is NetworkMode.ISOLATED:
            args.append("--network=none")
        args.extend(plan.extra_runtime_args)
        args.append(plan.image)
        args.extend(plan.command)
        return args

    def run_detached(self, plan: LaunchPlan) -> str:
        """Start *plan* in the background and return the container id."""
        args = self.build_run_args(plan, detach=True)
        try:
            proc = subprocess.run(
                args, check=True, capture_output=True, text=True, env=_child_env(plan)
            )
        except FileNotFoundError as exc:
            raise ContainerRuntimeError(f"Container runtime {self._binary!r} not found") from exc
        except subprocess.CalledProcessError as exc:
            raise ContainerRuntimeError(
                f"Container start failed (exit {exc.returncode}): {exc.stderr.strip()}"
            ) from exc
        return proc.stdout.strip()

    def attach(self, name: str) -> None:
        """Replace the current process with ``<runtime> attach <name>``."""
        logger.info("Reattaching to container: %s", name)
        self._exec([self._binary, "attach", name])

    def discard(self, name: str) -> bool:
        """Remove container *name*, falling back to ``<runtime> rm -f``.

        Used where a missing API socket must not block the launch; failures
        are logged and reported as ``False``.
        """
        try:
            return self.remove(name)
        except ContainerRuntimeError as exc:
            logger.warning("Container API unavailable (%s); using '%s rm -f %s'", exc, self._binary, name)
        try:
            proc = subprocess.run([self._binary, "rm", "-f", name], capture_output=True, text=True)
        except FileNotFoundError:
            logger.warning("Container runtime %r not found; cannot remove %s", self._binary, name)
            return False
        return proc.returncode == 0

    def launch(self, plan: LaunchPlan) -> None:
        """Remove any stale container with the plan's identity and start it.

        Firewalled plans are started detached so the allowlist can be
        installed before the operator is attached; if that fails for any
        reason the container is removed and the error propagates.
        """
        self.discard(plan.container_name)
        logger.info("Starting container...")

        if plan.network_mode is not NetworkMode.FIREWALLED:
            self._exec(self.build_run_args(plan), env=_child_env(plan))
            return

        self.run_detached(plan)
        try:
            result = self.exec(plan.container_name, FIREWALL_COMMAND, user="root")
        except ContainerRuntimeError:
            self.discard(plan.container_name)
            raise
        if result.output:
            for line in result.output.rstrip().splitlines():
                logger.info("firewall: %s", line)
        if result.exit_code != 0:
            self.discard(plan.container_name)
            raise ContainerRuntimeError(
                f"Firewall setup failed in {plan.container_name} (exit {result.exit_code})"
            )
        self.attach(plan.container_name)

    def _exec(self, argv: list[str], env: dict[str, str] | None = None) -> None:
        try:
            if env is None:
                os.execvp(argv[0], argv)
            else:
                os.execvpe(argv[0], argv, env)
        except OSError as exc:
            raise ContainerRuntimeError(f"Failed to exec {argv[0]!r}: {exc}") from exc


def _child_env(plan: LaunchPlan) -> dict[str, str]:
    env = dict(os.environ)
    env.update(plan.environment)
    return env


def default_api_socket(binary: str, environ: Mapping[str, str] | None = None) -> str | None:
    """Return the Podman API socket URL to use, or ``None`` for the Docker defaults.

    ``DOCKER_HOST`` always wins.  For Podman the rootless socket lives under
    ``$XDG_RUNTIME_DIR/podman``; root uses ``/run/podman``.
    """
    env = environ if environ is not None else os.environ
    if env.get("DOCKER_HOST") or os.path.basename(binary) != "podman":
        return None
    runtime_dir = env.get("XDG_RUNTIME_DIR")
    if not runtime_dir:
        runtime_dir = "/run" if os.getuid() == 0 else f"/run/user/{os.getuid()}"
    return f"unix://{runtime_dir}/podman/podman.sock"
