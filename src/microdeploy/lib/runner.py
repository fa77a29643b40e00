"""Subprocess execution helpers."""

from __future__ import annotations

import os
import subprocess  # nosec B404
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from microdeploy.lib.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Captured output of a finished command."""

    stdout: str
    stderr: str
    exit_status: int

    @property
    def succeeded(self) -> bool:
        return self.exit_status == 0

    @property
    def combined_output(self) -> str:
        """Stdout and stderr joined for diagnostics."""
        parts = []
        if self.stdout.strip():
            parts.append(f"Stdout:\n{self.stdout.rstrip()}")
        if self.stderr.strip():
            parts.append(f"Stderr:\n{self.stderr.rstrip()}")
        return "\n".join(parts)


class CommandRunner:
    """Run external commands, optionally feeding stdin and extra env vars."""

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        stdin: str | None = None,
    ) -> CommandResult:
        """Run a command to completion and capture its output.

        Args:
            args: Program and arguments.
            cwd: Working directory for the command.
            env: Extra environment variables merged over the current environment.
            stdin: Text fed to the command's standard input.

        Returns:
            CommandResult with stdout, stderr and exit status.

        Raises:
            OSError: If the program cannot be executed at all.
        """
        full_env = dict(os.environ)
        if env:
            full_env.update(env)

        logger.debug(f"Running command: {' '.join(args)} (cwd={cwd})")
        completed = subprocess.run(  # noqa: S603  # nosec B603
            list(args),
            cwd=str(cwd) if cwd else None,
            env=full_env,
            input=stdin,
            capture_output=True,
            text=True,
        )
        logger.debug(f"Command exited with status {completed.returncode}")
        return CommandResult(
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            exit_status=completed.returncode,
        )
