"""MountSpec model describing a single bind mount."""

from __future__ import annotations

from pathlib import Path, PurePosixPath

from pydantic import BaseModel, Field, field_validator

from agent_sandbox.models.enums import AccessMode


class MountSpec(BaseModel):
    """A host path bind-mounted into the container.

    When two specs target the same ``container_path`` the one with the lower
    ``rank`` wins; see :func:`agent_sandbox.policy.mounts.merge_mounts`.
    """

    model_config = {"frozen": True}

    host_path: Path = Field(
        description="Absolute host path that is bind-mounted.",
    )
    container_path: str = Field(
        description="Absolute path inside the container.",
    )
    mode: AccessMode = Field(
        default=AccessMode.READ_ONLY,
        description="Read-only or read-write access.",
    )
    rank: int = Field(
        default=100,
        ge=0,
        description="Priority rank; lower wins on container path collisions.",
    )
    relabel: bool = Field(
        default=False,
        description="Apply a private SELinux relabel (':Z') to the host path.",
    )

    @field_validator("host_path")
    @classmethod
    def _host_path_absolute(cls, value: Path) -> Path:
        if not value.is_absolute():
            raise ValueError(f"host_path must be absolute, got {str(value)!r}")
        return value

    @field_validator("container_path")
    @classmethod
    def _container_path_absolute(cls, value: str) -> str:
        path = PurePosixPath(value)
        if not path.is_absolute():
            raise ValueError(f"container_path must be absolute, got {value!r}")
        return str(path)

    @property
    def read_only(self) -> bool:
        return self.mode is AccessMode.READ_ONLY

    def to_volume_arg(self) -> str:
        """Render as the value of a runtime ``-v`` flag (``host:container[:opts]``)."""
        options: list[str] = []
        if self.read_only:
            options.append("ro")
        if self.relabel:
            options.append("Z")
        volume = f"{self.host_path}:{self.container_path}"
        if options:
            volume += ":" + ",".join(options)
        return volume
