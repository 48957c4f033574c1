"""First-run initialization of the persistent home volume.

When a persistent volume is mounted over the agent's home directory, the
image's own home contents (toolchains, npm packages, shell config) are
hidden.  On the first start the saved template (``/home/agent.skel``) is
copied into the volume and a marker file is written; every later start
sees the marker and skips the copy, so runtime installs survive restarts.

The marker is the only record of initialization.  No lock is taken: two
containers starting against the same empty volume at the same moment may
both copy before either writes the marker.
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path

from agent_sandbox.config import Settings
from agent_sandbox.errors import BootstrapError
from agent_sandbox.models.enums import BootstrapState

logger = logging.getLogger(__name__)


class HomeBootstrap:
    """Marker-guarded copy of the image home template into a volume.

    ``UNINITIALIZED -> COPYING -> INITIALIZED``.  A failed copy raises
    :class:`BootstrapError` and leaves the marker unwritten so the next
    start retries.
    """

    def __init__(self, home: Path, template: Path, marker_name: str = ".home-initialized") -> None:
        self.home = home
        self.template = template
        self.marker = home / marker_name
        self._state = BootstrapState.INITIALIZED if self.marker.exists() else BootstrapState.UNINITIALIZED

    @property
    def state(self) -> BootstrapState:
        return self._state

    def run(self) -> BootstrapState:
        """Initialize the home volume if needed and return the final state."""
        if self.marker.exists():
            self._state = BootstrapState.INITIALIZED
            return self._state

        if not self.template.is_dir():
            logger.debug("No home template at %s; nothing to initialize", self.template)
            return self._state

        self._state = BootstrapState.COPYING
        logger.info("First run: populating persistent home from image template...")
        try:
            shutil.copytree(
                self.template,
                self.home,
                symlinks=True,
                ignore=self._skip_existing,
                dirs_exist_ok=True,
            )
        except OSError as exc:
            self._state = BootstrapState.UNINITIALIZED
            raise BootstrapError(f"Failed to populate {self.home} from {self.template}: {exc}") from exc

        try:
            self.marker.touch(exist_ok=True)
        except OSError as exc:
            self._state = BootstrapState.UNINITIALIZED
            raise BootstrapError(f"Failed to write home marker {self.marker}: {exc}") from exc

        self._state = BootstrapState.INITIALIZED
        return self._state

    def _skip_existing(self, directory: str, names: list[str]) -> set[str]:
        # Never replace anything already in the volume; only merge into
        # directories that exist on both sides and belong to the home
        # volume itself.  Bind mounts layered over the home (credential
        # directories among them) are never entered.
        target_dir = self.home / Path(directory).relative_to(self.template)
        skipped: set[str] = set()
        for name in names:
            target = target_dir / name
            if not os.path.lexists(target):
                continue
            source = Path(directory) / name
            both_dirs = (
                target.is_dir() and not target.is_symlink()
                and source.is_dir() and not source.is_symlink()
            )
            if not both_dirs or self._is_foreign_mount(target):
                skipped.add(name)
        return skipped

    def _is_foreign_mount(self, path: Path) -> bool:
        """Whether *path* is a mount point or sits on another device than the home."""
        if os.path.ismount(path):
            return True
        try:
            return path.stat().st_dev != self.home.stat().st_dev
        except OSError:
            return True


def main(argv: list[str] | None = None) -> int:
    """Container entrypoint: bootstrap the home, then exec the given command."""
    args = list(sys.argv[1:] if argv is None else argv)
    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stderr,
    )

    home = Path(os.environ.get("HOME") or settings.container_home)
    try:
        HomeBootstrap(home, settings.home_template, settings.home_marker).run()
    except BootstrapError as exc:
        logger.error("%s", exc)
        return 1

    if not args:
        return 0
    try:
        os.execvp(args[0], args)
    except OSError as exc:
        logger.error("Cannot execute %s: %s", args[0], exc)
        return 127
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
