"""Shell and git utilities.

Provides simple wrappers around subprocess calls for running shell commands
and git operations, plus output formatting helpers.
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path


def git(*args: str, cwd: Path | None = None, check: bool = True) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "status", "--short").
        cwd: Directory to run in. Defaults to the current directory.
        check: If True (default), raise on non-zero exit. Set to False
               for commands that may legitimately fail (e.g., tag lookup).

    Returns:
        Stripped stdout from the git command.
    """
    result = subprocess.run(
        ["git", *args], capture_output=True, text=True, check=check, cwd=cwd
    )
    return result.stdout.strip()


def run(
    *args: str, cwd: Path | None = None, check: bool = True
) -> subprocess.CompletedProcess[str]:
    """Run an arbitrary command, capturing its output.

    Args:
        *args: Command and arguments (e.g., "uv", "publish", "dist/x.whl").
        cwd: Directory to run in. Defaults to the current directory.
        check: If True (default), raise on non-zero exit.

    Returns:
        CompletedProcess with returncode, stdout and stderr.
    """
    return subprocess.run(args, capture_output=True, text=True, check=check, cwd=cwd)


def run_shell(
    command: str, cwd: Path | None = None
) -> subprocess.CompletedProcess[str]:
    """Run a hook command line through the shell, raising on failure."""
    return subprocess.run(
        command, shell=True, capture_output=True, text=True, check=True, cwd=cwd
    )


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate major phases of the release pipeline in terminal output.
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def warn(msg: str) -> None:
    """Print a warning to stderr without stopping the pipeline."""
    print(f"WARNING: {msg}", file=sys.stderr)
