# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Filesystem helpers for shipwright.

Artifacts are written to a temporary file in the same directory as the
target and then renamed into place. Rename on the same filesystem is atomic
on POSIX, so a crash mid-write leaves a stray `.shipwright_tmp_*` file
instead of a truncated artifact that would still get checksummed.
"""

import os
import shutil
import stat
import tempfile
from pathlib import Path

TEMP_PREFIX = ".shipwright_tmp_"

_EXECUTE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def atomic_write_bytes(target_path: Path, data: bytes) -> None:
    """
    Write binary data to a file atomically.

    Args:
        target_path: Where the final file should end up.
        data: The raw bytes to write.

    Raises:
        OSError: If the write or rename fails.
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd = tempfile.NamedTemporaryFile(
        mode="wb",
        dir=str(target_path.parent),
        prefix=TEMP_PREFIX,
        suffix=".tmp",
        delete=False,
    )
    temp_path = Path(temp_fd.name)

    try:
        temp_fd.write(data)
        temp_fd.flush()
        temp_fd.close()
        temp_path.replace(target_path)
    except BaseException:
        temp_fd.close()
        if temp_path.exists():
            temp_path.unlink()
        raise


def atomic_copy(source: Path, target_path: Path) -> None:
    """
    Copy a file byte-for-byte to `target_path` through a temp file, keeping the
    source's permission bits.

    Same approach as atomic_write_bytes, but streams with shutil so the
    payload never has to be read into memory in one go.

    Raises:
        OSError: If the read, write or rename fails.
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd = tempfile.NamedTemporaryFile(
        mode="wb",
        dir=str(target_path.parent),
        prefix=TEMP_PREFIX,
        suffix=".tmp",
        delete=False,
    )
    temp_path = Path(temp_fd.name)

    try:
        with open(source, "rb") as src:
            shutil.copyfileobj(src, temp_fd)
        temp_fd.flush()
        temp_fd.close()
        # NamedTemporaryFile creates 0600.
        shutil.copymode(source, temp_path)
        temp_path.replace(target_path)
    except BaseException:
        temp_fd.close()
        if temp_path.exists():
            temp_path.unlink()
        raise


def make_executable(file_path: Path) -> None:
    """Add the execute bit for user, group and other, like `chmod +x`."""
    mode = file_path.stat().st_mode
    file_path.chmod(mode | _EXECUTE_BITS)


def is_writable(path: Path) -> bool:
    """Whether the current process may write to `path`."""
    return os.access(path, os.W_OK)


def safe_delete(file_path: Path) -> bool:
    """
    Delete a file if it exists. Returns whether anything was actually deleted.

    Never throws on a missing file.

    Raises:
        OSError: If the file exists but can't be deleted (permissions, etc).
    """
    if file_path.exists():
        file_path.unlink()
        return True
    return False
