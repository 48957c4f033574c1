"""Pydantic settings for the agent sandbox launcher."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from agent_sandbox.models.enums import IsolationMode

DEFAULT_ALLOWED_DOMAINS: list[str] = [
    # Anthropic (Claude Code)
    "api.anthropic.com",
    "statsig.anthropic.com",
    # OpenAI (Codex)
    "api.openai.com",
    # GitHub
    "github.com",
    "api.github.com",
    "objects.githubusercontent.com",
    # Package registries
    "registry.npmjs.org",
    "pypi.org",
    "files.pythonhosted.org",
    # Telemetry
    "sentry.io",
    "statsig.com",
]


class Settings(BaseSettings):
    """Launcher configuration loaded from ``AGENT_SANDBOX_*`` variables.

    ``AGENT_SANDBOX_DATA`` selects the base directory for per-client state.
    The Docker SDK used for container queries honours ``DOCKER_HOST``; with
    the ``podman`` runtime and no ``DOCKER_HOST`` it uses the Podman socket
    under ``$XDG_RUNTIME_DIR``.
    """

    model_config = {"env_prefix": "AGENT_SANDBOX_"}

    data: Path = Field(default_factory=lambda: Path.home() / ".local" / "share" / "agent-sandbox")
    image: str = "agent-sandbox:latest"
    runtime: str = "podman"
    isolation_mode: IsolationMode = IsolationMode.PER_NAMESPACE
    persistent_home: bool = True
    container_home: str = "/home/agent"
    home_template: Path = Path("/home/agent.skel")
    home_marker: str = ".home-initialized"
    allowed_domains: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_DOMAINS))
    github_meta_url: str = "https://api.github.com/meta"
    github_meta_timeout_seconds: float = 10.0
    log_level: str = "INFO"

    @field_validator("data")
    @classmethod
    def _expand_data(cls, value: Path) -> Path:
        return value.expanduser().absolute()
