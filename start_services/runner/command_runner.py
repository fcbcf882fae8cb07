"""Command runner for task execution.

This module implements the CommandRunner class that launches a task's
command as a subprocess, captures its combined stdout and stderr, and
reports success, output and elapsed time.
"""

import asyncio
import os
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

# Initialize logger
logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a single command execution.

    Attributes:
        succeeded: True if the process launched and exited with status 0
        output: Combined stdout and stderr, plus the failure reason if any
        duration_seconds: Wall-clock time from launch to exit
        returncode: Exit status, or None if the process never started
    """

    succeeded: bool
    output: str
    duration_seconds: float
    returncode: int | None = None


class CommandRunner:
    """Runs argument vectors as subprocesses.

    Example:
        >>> runner = CommandRunner()
        >>> result = await runner.run(["echo", "hello"])
        >>> result.succeeded, result.output
        (True, 'hello\\n')

    Attributes:
        cwd: Working directory for every command (default: inherited)
        env: Extra environment variables layered over the current environment
    """

    def __init__(
        self,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ):
        self.cwd = Path(cwd) if cwd is not None else None
        self.env = dict(env) if env else None

    async def run(self, argv: Sequence[str]) -> CommandResult:
        """Run a command and wait for it to exit.

        A command that cannot be launched (missing executable, permission
        denied) is reported as a failed result, not raised.

        Args:
            argv: Executable followed by its arguments

        Returns:
            CommandResult describing the execution

        Raises:
            ValueError: If argv is empty
        """
        if not argv:
            msg = "Cannot run an empty command"
            raise ValueError(msg)

        program, *args = argv
        env = {**os.environ, **self.env} if self.env else None

        logger.debug("command_starting", argv=list(argv), cwd=str(self.cwd) if self.cwd else None)

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                program,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self.cwd,
                env=env,
            )
        except OSError as e:
            duration = time.monotonic() - start
            logger.warning("command_launch_failed", argv=list(argv), error=str(e))
            return CommandResult(succeeded=False, output=str(e), duration_seconds=duration)

        stdout, _ = await process.communicate()
        duration = time.monotonic() - start

        output = stdout.decode(errors="replace") if stdout else ""
        returncode = process.returncode
        succeeded = returncode == 0
        if not succeeded:
            output += f"exit status {returncode}"

        logger.debug(
            "command_finished",
            argv=list(argv),
            returncode=returncode,
            duration_seconds=duration,
        )

        return CommandResult(
            succeeded=succeeded,
            output=output,
            duration_seconds=duration,
            returncode=returncode,
        )
