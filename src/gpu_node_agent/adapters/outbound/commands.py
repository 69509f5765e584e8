"""Bounded subprocess execution shared by the tool adapters."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

# Tool output quoted in error messages is cut to this many characters
MAX_OUTPUT_CHARS = 500


class CommandFailed(Exception):
    """A command exited non-zero, timed out, or could not be started."""

    def __init__(self, args: Sequence[str], reason: str, output: str = "") -> None:
        self.args_list = list(args)
        self.reason = reason
        self.output = output
        message = f"{' '.join(self.args_list)}: {reason}"
        if output:
            message = f"{message}: {output}"
        super().__init__(message)


def run_command(
    args: Sequence[str],
    timeout: float,
    cwd: Optional[Path] = None,
) -> str:
    """Run a command and return its stdout.

    Args:
        args: Program and arguments, no shell.
        timeout: Seconds before the process is killed.
        cwd: Working directory.

    Raises:
        CommandFailed: On non-zero exit, timeout, or a missing executable.
    """
    logger.debug(f"Running {' '.join(args)} (timeout {timeout}s)")
    try:
        result = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired as exc:
        raise CommandFailed(args, f"timed out after {timeout}s") from exc
    except OSError as exc:
        raise CommandFailed(args, f"could not start: {exc}") from exc

    if result.returncode != 0:
        output = (result.stderr or result.stdout or "").strip()[:MAX_OUTPUT_CHARS]
        raise CommandFailed(args, f"exit status {result.returncode}", output)
    return result.stdout
