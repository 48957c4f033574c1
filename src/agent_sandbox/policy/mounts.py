"""Mount priority ranks, collision resolution and ``--mount`` parsing."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Iterable

from agent_sandbox.errors import ConfigurationError
from agent_sandbox.models.enums import AccessMode
from agent_sandbox.models.mount import MountSpec

logger = logging.getLogger(__name__)

# Lower rank wins when two mounts target the same container path.
RANK_PROJECT: int = 0
RANK_CREDENTIAL: int = 10
RANK_VCS: int = 20
RANK_STATE: int = 30
RANK_EXTRA: int = 100


def merge_mounts(mounts: Iterable[MountSpec]) -> list[MountSpec]:
    """Deduplicate *mounts* by container path and order them for the runtime.

    For each container path the mount with the lowest ``rank`` is kept (the
    first one seen on a tie).  The result is ordered so that a parent path
    is always mounted before any path nested beneath it; otherwise the
    original order is preserved.
    """
    winners: dict[str, MountSpec] = {}
    order: list[str] = []
    for mount in mounts:
        current = winners.get(mount.container_path)
        if current is None:
            winners[mount.container_path] = mount
            order.append(mount.container_path)
        elif mount.rank < current.rank:
            logger.debug(
                "Mount %s overrides %s at %s",
                mount.host_path,
                current.host_path,
                mount.container_path,
            )
            winners[mount.container_path] = mount
        else:
            logger.debug(
                "Ignoring %s at %s (shadowed by %s)",
                mount.host_path,
                mount.container_path,
                current.host_path,
            )

    ordered = [winners[path] for path in order]
    ordered.sort(key=lambda m: len(PurePosixPath(m.container_path).parts))
    return ordered


def parse_mount_arg(value: str, mode: AccessMode, rank: int = RANK_EXTRA) -> MountSpec:
    """Parse a ``HOST:CONTAINER[:OPTIONS]`` mount argument.

    ``OPTIONS`` is a comma separated list of ``ro``, ``rw`` and ``Z``; an
    explicit ``ro``/``rw`` overrides *mode*.  The host path must exist.
    """
    parts = value.split(":")
    if len(parts) not in (2, 3) or not parts[0] or not parts[1]:
        raise ConfigurationError(f"Invalid mount {value!r}: expected HOST:CONTAINER[:OPTIONS]")

    host = Path(parts[0]).expanduser()
    if not host.exists():
        raise ConfigurationError(f"Mount source does not exist: {host}")

    relabel = False
    if len(parts) == 3:
        for option in filter(None, parts[2].split(",")):
            if option == "Z":
                relabel = True
            elif option in (AccessMode.READ_ONLY.value, AccessMode.READ_WRITE.value):
                mode = AccessMode(option)
            else:
                raise ConfigurationError(f"Unsupported mount option {option!r} in {value!r}")

    try:
        return MountSpec(
            host_path=host.resolve(),
            container_path=parts[1],
            mode=mode,
            rank=rank,
            relabel=relabel,
        )
    except ValueError as exc:
        raise ConfigurationError(f"Invalid mount {value!r}: {exc}") from exc
