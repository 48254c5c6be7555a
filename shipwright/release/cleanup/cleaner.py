# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Distribution directory cleanup.

`shipwright ... clean` removes the dist directory, but only after checking
that the removal can actually finish: the directory must be writable and
the filesystem it lives on must not be nearly full. If either check fails
we refuse up front rather than delete half the tree and stop.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from shipwright.logging.logger import get_logger
from shipwright.release.environment.validator import MIN_FREE_BYTES, check_disk_space
from shipwright.release.exceptions import CleanupError
from shipwright.utils.filesystem import is_writable

_logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class CleanResult:
    """Outcome of a cleanup operation."""

    removed: bool
    removed_files: int
    freed_bytes: int


def _count_dir(path: Path) -> tuple[int, int]:
    """(file count, total bytes) under `path`."""
    files = 0
    total = 0
    for f in path.rglob("*"):
        if f.is_file():
            files += 1
            try:
                total += f.stat().st_size
            except OSError:
                continue
    return files, total


def clean_dist_dir(dist_dir: Path, min_free_bytes: int = MIN_FREE_BYTES) -> CleanResult:
    """
    Remove the distribution directory and everything in it.

    A missing directory is not an error; there is simply nothing to do.

    Args:
        dist_dir: The directory to remove.
        min_free_bytes: Free space the parent filesystem must have.

    Returns:
        CleanResult describing what was removed.

    Raises:
        CleanupError: Not a directory, not writable, not enough free space,
            or the removal itself failed.
    """
    if not dist_dir.exists():
        _logger.warning(
            f"Nothing to clean up - {dist_dir} does not exist",
            extra={"dist_dir": str(dist_dir)},
        )
        return CleanResult(removed=False, removed_files=0, freed_bytes=0)

    if not dist_dir.is_dir():
        raise CleanupError(f"Cannot clean {dist_dir} - not a directory")

    _logger.info(f"Cleaning up {dist_dir}", extra={"dist_dir": str(dist_dir)})

    if not is_writable(dist_dir):
        raise CleanupError(f"Cannot clean {dist_dir} - directory is not writable")

    parent = dist_dir.resolve().parent
    if not is_writable(parent):
        raise CleanupError(f"Cannot clean {dist_dir} - parent directory {parent} is not writable")

    space = check_disk_space(parent, min_free_bytes=min_free_bytes)
    if not space.passed:
        raise CleanupError(f"Insufficient space in {parent} for cleanup operation: {space.message}")

    file_count, freed = _count_dir(dist_dir)
    try:
        shutil.rmtree(dist_dir)
    except OSError as err:
        raise CleanupError(f"Failed to remove {dist_dir}: {err}") from err

    _logger.info(
        "Cleanup completed successfully",
        extra={"removed_files": file_count, "freed_mb": f"{freed / (1024 * 1024):.1f}"},
    )
    return CleanResult(removed=True, removed_files=file_count, freed_bytes=freed)
