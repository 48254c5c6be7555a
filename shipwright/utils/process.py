# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Subprocess runner for the external tools the pipeline drives.

gh, release-cli, docker and git are only ever called through `run_command`.
It never uses shell=True, always captures output and always enforces a
timeout, so a hung registry call cannot block a release forever.

Components take the runner as a constructor argument. Tests pass a scripted
fake with the same signature instead of patching subprocess.
"""

import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

from shipwright.logging.logger import get_logger
from shipwright.release.exceptions import CommandError, ToolMissingError

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS: int = 300


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> "CommandResult":
        """Raise CommandError unless the command exited 0."""
        if not self.ok:
            detail = self.stderr.strip() or self.stdout.strip()
            raise CommandError(
                f"Command failed with exit code {self.returncode}: {' '.join(self.args)}"
                + (f": {detail}" if detail else "")
            )
        return self


CommandRunner = Callable[..., CommandResult]


def run_command(
    args: Sequence[str],
    cwd: Optional[Path] = None,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    env: Optional[Mapping[str, str]] = None,
) -> CommandResult:
    """
    Run an external command and capture everything it prints.

    A timeout is reported as exit code -1 rather than an exception, the same
    way a non-zero exit is, so callers only need to look at `returncode`.

    Raises:
        ToolMissingError: If the executable is not installed.
    """
    argv = tuple(str(a) for a in args)
    start = time.monotonic()

    try:
        result = subprocess.run(
            list(argv),
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as err:
        raise ToolMissingError(argv[0]) from err
    except subprocess.TimeoutExpired:
        elapsed = time.monotonic() - start
        logger.warning(
            "Command timed out",
            extra={"command": " ".join(argv), "timeout_seconds": timeout_seconds},
        )
        return CommandResult(
            args=argv,
            returncode=-1,
            stdout="",
            stderr=f"Command timed out after {timeout_seconds}s",
            elapsed_seconds=elapsed,
        )

    elapsed = time.monotonic() - start
    logger.debug(
        "Command finished",
        extra={
            "command": " ".join(argv),
            "exit_code": result.returncode,
            "elapsed_seconds": round(elapsed, 3),
        },
    )
    return CommandResult(
        args=argv,
        returncode=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
        elapsed_seconds=elapsed,
    )
