"""Command line interface: ``agent-sandbox run | plan | firewall``."""

from __future__ import annotations

import functools
import json
import logging
import sys
from pathlib import Path
from typing import Callable

import click
from pydantic import ValidationError

from agent_sandbox.config import Settings
from agent_sandbox.errors import AgentSandboxError, ConfigurationError
from agent_sandbox.firewall import build_firewall
from agent_sandbox.launcher import LaunchPlanResolver
from agent_sandbox.models.enums import AccessMode, IsolationMode, NetworkMode
from agent_sandbox.models.plan import LaunchPlan, LaunchRequest
from agent_sandbox.policy.mounts import parse_mount_arg
from agent_sandbox.sandbox.runtime import ContainerRuntime

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _launch_options(func: Callable) -> Callable:
    """Options shared by ``run`` and ``plan``."""
    options = [
        click.option("--client", "namespace", help="Client/project identifier for data compartmentalization."),
        click.option("--agent", default="claude", show_default=True, help="Agent to run: claude, codex or shell."),
        click.option(
            "--claude-config",
            type=click.Path(path_type=Path),
            help="Claude config directory (~/.claude) to share with the container, read-write.",
        ),
        click.option("--image", help="Container image (default: AGENT_SANDBOX_IMAGE)."),
        click.option("--resume", is_flag=True, help="Reattach to an existing container for this client."),
        click.option("--no-network", is_flag=True, help="Disable all container networking."),
        click.option("--firewall", is_flag=True, help="Restrict outbound traffic to the service allowlist."),
        click.option(
            "--isolation",
            type=click.Choice([m.value for m in IsolationMode]),
            help="Credential isolation mode (default: AGENT_SANDBOX_ISOLATION_MODE).",
        ),
        click.option("--mount", "mounts_ro", multiple=True, metavar="HOST:CONT", help="Additional read-only bind mount."),
        click.option("--mount-rw", "mounts_rw", multiple=True, metavar="HOST:CONT", help="Additional read-write bind mount."),
        click.option("--podman-arg", "runtime_args", multiple=True, help="Extra argument passed to the runtime's run."),
        click.argument("project_dir", required=False, type=click.Path(path_type=Path)),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_request(
    namespace: str | None,
    agent: str,
    claude_config: Path | None,
    image: str | None,
    resume: bool,
    no_network: bool,
    firewall: bool,
    mounts_ro: tuple[str, ...],
    mounts_rw: tuple[str, ...],
    runtime_args: tuple[str, ...],
    project_dir: Path | None,
) -> LaunchRequest:
    if no_network and firewall:
        raise ConfigurationError("--no-network and --firewall are mutually exclusive")
    if no_network:
        network_mode = NetworkMode.ISOLATED
    elif firewall:
        network_mode = NetworkMode.FIREWALLED
    else:
        network_mode = NetworkMode.OPEN

    extra_mounts = [parse_mount_arg(value, AccessMode.READ_ONLY) for value in mounts_ro]
    extra_mounts += [parse_mount_arg(value, AccessMode.READ_WRITE) for value in mounts_rw]

    return LaunchRequest(
        agent=agent,
        namespace=namespace,
        project_dir=project_dir,
        credential_override=claude_config,
        network_mode=network_mode,
        extra_mounts=extra_mounts,
        extra_runtime_args=list(runtime_args),
        resume=resume,
        image=image,
    )


def _reports_errors(func: Callable) -> Callable:
    """Turn launcher errors into a clean ``Error: ...`` and exit status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except AgentSandboxError as exc:
            raise click.ClickException(str(exc)) from exc

    return wrapper


def _resolver(settings: Settings, isolation: str | None) -> tuple[LaunchPlanResolver, ContainerRuntime]:
    if isolation:
        settings = settings.model_copy(update={"isolation_mode": IsolationMode(isolation)})
    runtime = ContainerRuntime(binary=settings.runtime)
    return LaunchPlanResolver(settings, runtime), runtime


@click.group()
@click.option("--log-level", help="Logging level (default: AGENT_SANDBOX_LOG_LEVEL or INFO).")
@click.pass_context
def main(ctx: click.Context, log_level: str | None) -> None:
    """Launch coding agents in isolated containers."""
    try:
        settings = Settings()
    except ValidationError as exc:
        raise click.ClickException(f"Invalid configuration: {exc}") from exc
    _configure_logging(log_level or settings.log_level)
    ctx.obj = settings


@main.command()
@_launch_options
@click.pass_obj
@_reports_errors
def run(settings: Settings, isolation: str | None, **options) -> None:
    """Launch (or with --resume, reattach to) an agent container."""
    request = _build_request(**options)
    resolver, _ = _resolver(settings, isolation)
    resolver.launch(request)


@main.command()
@_launch_options
@click.pass_obj
@_reports_errors
def plan(settings: Settings, isolation: str | None, **options) -> None:
    """Print the resolved launch plan as JSON without starting anything."""
    request = _build_request(**options)
    resolver, runtime = _resolver(settings, isolation)
    action = resolver.resolve(request)
    payload = json.loads(action.model_dump_json())
    if isinstance(action, LaunchPlan):
        payload["environment"] = [[key, "***"] for key, _ in action.environment]
        payload["argv"] = runtime.build_run_args(action, detach=action.network_mode is NetworkMode.FIREWALLED)
    click.echo(json.dumps(payload, indent=2))


@main.command()
@click.option("--no-github-meta", is_flag=True, help="Do not add GitHub's published IP ranges.")
@click.pass_obj
@_reports_errors
def firewall(settings: Settings, no_github_meta: bool) -> None:
    """Install the allowlist firewall (run as root inside the container)."""
    build_firewall(settings, include_github_meta=not no_github_meta).apply()


if __name__ == "__main__":
    main()
