# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Pre-flight environment validation.

Before a release step touches the network we check that the tools it shells
out to exist, that they are recent enough, and that there is room on disk.
Fail early with a clear message instead of halfway through an upload.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from shipwright.logging.logger import get_logger
from shipwright.release.exceptions import ToolMissingError
from shipwright.release.versioning import parse_tool_version
from shipwright.utils.process import CommandRunner, run_command

_logger: logging.Logger = get_logger(__name__)

# 1000 1K-blocks, the same threshold `df -P` based scripts use.
MIN_FREE_BYTES: int = 1_024_000


@dataclass(frozen=True)
class EnvironmentCheck:
    """Result of a single environment check."""

    name: str
    passed: bool
    message: str
    value: str


def check_tool(name: str) -> EnvironmentCheck:
    """Is `name` on PATH?"""
    path = shutil.which(name)
    if path is None:
        return EnvironmentCheck(
            name=f"tool:{name}",
            passed=False,
            message=f"Required tool not found: {name}",
            value="not_installed",
        )
    return EnvironmentCheck(
        name=f"tool:{name}",
        passed=True,
        message=f"{name} found at {path}",
        value=path,
    )


def require_tools(names: Iterable[str]) -> None:
    """
    Raise for the first missing tool after logging every missing one.

    Raises:
        ToolMissingError: Naming the first missing tool.
    """
    missing: list[str] = []
    for name in names:
        check = check_tool(name)
        if not check.passed:
            _logger.error(check.message, extra={"tool": name})
            missing.append(name)
    if missing:
        raise ToolMissingError(missing[0])


def check_gh_version(
    minimum: str = "2.0.0",
    runner: CommandRunner = run_command,
) -> EnvironmentCheck:
    """
    Compare `gh --version` against a recommended minimum.

    An old gh is only a warning, not a failure: the commands we use have
    been stable for a long time. A gh whose version can't be read is a
    failure, because something is wrong with the install.
    """
    result = runner(["gh", "--version"], timeout_seconds=30)
    if not result.ok or not result.stdout.strip():
        return EnvironmentCheck(
            name="gh_version",
            passed=False,
            message="Failed to get GitHub CLI version",
            value="unknown",
        )

    # "gh version 2.40.1 (2023-12-13)"
    first_line = result.stdout.strip().splitlines()[0]
    parts = first_line.split()
    current = parts[2] if len(parts) >= 3 else ""
    try:
        current_tuple = parse_tool_version(current)
        minimum_tuple = parse_tool_version(minimum)
    except ValueError as err:
        return EnvironmentCheck(name="gh_version", passed=False, message=str(err), value=current or "unknown")

    if current_tuple < minimum_tuple:
        _logger.warning(
            f"gh version {current} is lower than recommended version {minimum}",
            extra={"current": current, "recommended": minimum},
        )
        return EnvironmentCheck(
            name="gh_version",
            passed=True,
            message=f"gh {current} is older than recommended {minimum}",
            value=current,
        )
    return EnvironmentCheck(
        name="gh_version",
        passed=True,
        message=f"gh {current} meets recommended {minimum}",
        value=current,
    )


def check_disk_space(path: Optional[Path] = None, min_free_bytes: int = MIN_FREE_BYTES) -> EnvironmentCheck:
    """
    Check available disk space at the given path.

    Args:
        path: Directory to check. Defaults to current working directory.
        min_free_bytes: Threshold below which the check fails.
    """
    check_path = path or Path.cwd()
    try:
        usage = shutil.disk_usage(str(check_path))
    except OSError as err:
        return EnvironmentCheck(
            name="disk_space",
            passed=False,
            message=f"Cannot check disk space: {err}",
            value="error",
        )

    free_mb = usage.free / (1024**2)
    passed = usage.free >= min_free_bytes
    if passed:
        msg = f"{free_mb:.1f} MB free at {check_path}"
    else:
        msg = f"Insufficient space in {check_path}: {free_mb:.1f} MB free, need {min_free_bytes / (1024**2):.1f} MB"
    return EnvironmentCheck(name="disk_space", passed=passed, message=msg, value=f"{free_mb:.1f}MB")
