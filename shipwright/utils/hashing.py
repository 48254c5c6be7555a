# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Hashing utilities for shipwright.

Every published artifact is listed in the checksum manifest with its SHA-256
digest, and the installer refuses archives whose digest does not match.
Both sides go through these helpers so they can never disagree on how a
file is hashed.
"""

import hashlib
import re
from pathlib import Path

HASH_BUFFER_SIZE = 65536  # 64 KiB

_SHA256_HEX = re.compile(r"[0-9a-f]{64}")


def compute_sha256(file_path: Path) -> str:
    """
    Compute the SHA256 hex digest of a file.

    Reads the file in 64 KiB chunks so large archives never have to sit in
    memory all at once.

    Args:
        file_path: Path to the file to hash.

    Returns:
        Lowercase hex string of the SHA256 digest.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        OSError: If the file can't be read.
    """
    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        while True:
            chunk = f.read(HASH_BUFFER_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.hexdigest()


def is_sha256_hex(value: str) -> bool:
    """True for exactly 64 lowercase hex characters."""
    return _SHA256_HEX.fullmatch(value) is not None


def verify_checksum(file_path: Path, expected_hash: str) -> bool:
    """
    Check whether a file's SHA256 matches the expected hash.

    Args:
        file_path: Path to the file to verify.
        expected_hash: Expected hex SHA256 digest (case-insensitive).

    Returns:
        True if the hash matches, False otherwise.
    """
    actual_hash = compute_sha256(file_path)
    return actual_hash == expected_hash.lower()
