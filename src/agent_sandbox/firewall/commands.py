"""Subprocess wrapper used to drive iptables, ipset and ip."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Sequence

from agent_sandbox.errors import FirewallError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of one external command."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Run external commands synchronously, capturing their output.

    A missing binary is reported as exit status 127, the way a shell would,
    so callers can treat "not installed" and "not permitted" alike.
    """

    def run(self, argv: Sequence[str], check: bool = True) -> CommandResult:
        logger.debug("exec: %s", " ".join(argv))
        try:
            proc = subprocess.run(list(argv), capture_output=True, text=True)
        except FileNotFoundError:
            result = CommandResult(returncode=127, stderr=f"{argv[0]}: command not found")
        else:
            result = CommandResult(proc.returncode, proc.stdout, proc.stderr)

        if check and not result.ok:
            raise FirewallError(
                f"Command failed (exit {result.returncode}): {' '.join(argv)}: {result.stderr.strip()}"
            )
        return result
