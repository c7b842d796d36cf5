from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from typing import Any


def esc(value: Any) -> str:
    """Quote `value` so a POSIX shell reads it back as exactly one argument."""

    return shlex.quote(str(value))


def run_command(
    command: str | Sequence[str],
    *,
    logger: logging.Logger | None = None,
    cwd: str | None = None,
) -> bool:
    """Run an external command to completion and report whether it exited 0.

    A string is handed to the shell; a sequence is executed as argv.
    """

    use_shell = isinstance(command, str)
    display = command if use_shell else " ".join(esc(part) for part in command)
    if logger:
        logger.info("Running: %s", display)
    try:
        proc = subprocess.run(command, shell=use_shell, cwd=cwd, check=False)
    except FileNotFoundError as exc:
        if logger:
            logger.error("Command not found: %s (%s)", display, exc)
        return False

    if proc.returncode != 0:
        if logger:
            logger.error("Command failed (exit=%s): %s", proc.returncode, display)
        return False
    return True
