"""Runner for external build tools.

This module handles:
- Executing make/configure invocations with subprocess
- Capturing stdout/stderr to per-step log files
- Failing fast on non-zero exit codes

Commands block until they finish; there is no timeout.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Raised when an external command fails or cannot be started."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "command_failed",
        log_path: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code
        self.log_path = log_path


@dataclass
class CommandResult:
    """Result of a successful command execution.

    Attributes:
        command: The command line that was executed.
        cwd: Working directory of the command.
        log_path: Log file holding the output, or None if output was inherited.
        started_at: Start time.
        finished_at: Finish time.
    """

    command: str
    cwd: Path
    log_path: Path | None
    started_at: datetime
    finished_at: datetime

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return (self.finished_at - self.started_at).total_seconds()


def run_command(
    cmd: Sequence[str | os.PathLike[str]],
    cwd: Path,
    log_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run an external command and fail fast on error.

    Output is appended to log_path when given; otherwise the command inherits
    the terminal, which interactive steps such as `make oldconfig` rely on.

    Args:
        cmd: Command and arguments.
        cwd: Working directory.
        log_path: Optional log file for stdout/stderr.
        env: Full environment for the command (inherits when None).

    Returns:
        CommandResult describing the execution.

    Raises:
        CommandError: If the command exits non-zero or cannot be started.
    """
    argv = [str(c) for c in cmd]
    cmd_str = shlex.join(argv)
    logger.info("Running: %s", cmd_str)
    logger.debug("Working directory: %s", cwd)

    started_at = datetime.now(timezone.utc)

    try:
        if log_path is None:
            result = subprocess.run(argv, cwd=cwd, env=env, check=False)
        else:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write(f"# CWD: {cwd}\n")
                log_file.write("# " + "=" * 70 + "\n\n")
                log_file.flush()

                result = subprocess.run(
                    argv,
                    cwd=cwd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    env=env,
                    check=False,
                )
    except OSError as e:
        message = f"Failed to execute {argv[0]}: {e}"
        logger.error(message)
        raise CommandError(message, code="execution_error", log_path=log_path) from e

    finished_at = datetime.now(timezone.utc)

    if log_path is not None:
        with log_path.open("a") as log_file:
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {result.returncode}\n")

    if result.returncode != 0:
        message = f"{argv[0]} failed with exit code {result.returncode}: {cmd_str}"
        if log_path is not None:
            logger.error("%s. See log: %s", message, log_path)
        else:
            logger.error(message)
        raise CommandError(message, exit_code=result.returncode, log_path=log_path)

    return CommandResult(
        command=cmd_str,
        cwd=cwd,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
    )


__all__ = ["CommandError", "CommandResult", "run_command"]
