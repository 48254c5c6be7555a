# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Checksum manifest generation and verification.

Manifest format (checksums.txt), matching GNU coreutils `sha256sum`:

    <sha256hex>  <filename>
    <sha256hex>  <filename>

During a build the manifest is truncated first and then grows one line at a
time: each artifact is hashed right after it reaches its final form. If the
build dies halfway, the manifest still describes exactly the artifacts that
finished.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from shipwright.logging.logger import get_logger
from shipwright.utils.filesystem import TEMP_PREFIX
from shipwright.utils.hashing import compute_sha256, is_sha256_hex

_logger: logging.Logger = get_logger(__name__)

MANIFEST_FILENAME = "checksums.txt"


class ManifestFormatError(ValueError):
    """A manifest line is not `<64 hex>  <filename>`."""


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of checking a directory against its manifest."""

    is_valid: bool
    checked_count: int
    mismatches: list[str] = field(default_factory=list)
    missing_files: list[str] = field(default_factory=list)
    untracked_files: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def manifest_path(dist_dir: Path) -> Path:
    return dist_dir / MANIFEST_FILENAME


def format_checksum_line(digest: str, filename: str) -> str:
    """Two spaces between hash and name, the sha256sum text-mode layout."""
    return f"{digest}  {filename}"


def _is_checksummable(path: Path) -> bool:
    return path.is_file() and path.name != MANIFEST_FILENAME and not path.name.startswith(TEMP_PREFIX)


def truncate_manifest(dist_dir: Path) -> Path:
    """
    Start a fresh, empty manifest in `dist_dir`.

    Called once at the start of every build so lines from an earlier build
    can never survive into this one.
    """
    path = manifest_path(dist_dir)
    path.write_text("", encoding="utf-8")
    _logger.debug("Checksum manifest truncated", extra={"path": str(path)})
    return path


def append_checksum(dist_dir: Path, artifact_path: Path) -> str:
    """
    Hash one finished artifact and append its line to the manifest.

    Args:
        dist_dir: Directory holding the manifest.
        artifact_path: The artifact in its final (possibly archived) form.

    Returns:
        The hex digest that was recorded.
    """
    digest = compute_sha256(artifact_path)
    with open(manifest_path(dist_dir), "a", encoding="utf-8") as manifest:
        manifest.write(format_checksum_line(digest, artifact_path.name) + "\n")
    _logger.debug(
        "Checksum recorded",
        extra={"file": artifact_path.name, "sha256": digest[:16] + "..."},
    )
    return digest


def parse_checksum_text(text: str) -> dict[str, str]:
    """
    Parse manifest text into {filename: sha256_hex}.

    Accepts the binary-mode marker (`<hash> *<name>`) that sha256sum -b
    writes, so manifests produced elsewhere still load.

    Raises:
        ManifestFormatError: On any malformed non-blank line.
    """
    checksums: dict[str, str] = {}
    for line_no, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.rstrip("\r")
        if not line.strip():
            continue
        digest, sep, name = line.partition(" ")
        if not sep or not name:
            raise ManifestFormatError(f"Line {line_no}: expected '<sha256>  <filename>'")
        name = name[1:] if name[:1] in (" ", "*") else name
        digest = digest.lower()
        if not is_sha256_hex(digest):
            raise ManifestFormatError(f"Line {line_no}: invalid SHA256 digest '{digest}'")
        if not name:
            raise ManifestFormatError(f"Line {line_no}: missing filename")
        checksums[name] = digest
    return checksums


def parse_checksum_file(checksum_path: Path) -> dict[str, str]:
    """
    Parse a checksums.txt file.

    Raises:
        FileNotFoundError: If the manifest doesn't exist.
        ManifestFormatError: If a line is malformed.
    """
    if not checksum_path.is_file():
        raise FileNotFoundError(f"Checksum file not found: {checksum_path}")
    return parse_checksum_text(checksum_path.read_text(encoding="utf-8"))


def verify_checksums(dist_dir: Path) -> VerificationResult:
    """
    Check every file listed in the manifest against its recorded digest.

    Files present in the directory but absent from the manifest are
    reported as untracked and make the result invalid, because the manifest
    is supposed to describe the directory exactly.
    """
    path = manifest_path(dist_dir)
    try:
        expected = parse_checksum_file(path)
    except (FileNotFoundError, ManifestFormatError) as err:
        return VerificationResult(is_valid=False, checked_count=0, errors=[str(err)])

    mismatches: list[str] = []
    missing: list[str] = []
    errors: list[str] = []
    checked = 0

    for filename in sorted(expected):
        file_path = dist_dir / filename
        if not file_path.is_file():
            missing.append(filename)
            continue
        try:
            actual = compute_sha256(file_path)
        except OSError as err:
            errors.append(f"{filename}: {err}")
            continue
        checked += 1
        if actual != expected[filename]:
            mismatches.append(filename)
            _logger.error(
                "Checksum mismatch",
                extra={"file": filename, "expected": expected[filename][:16] + "...", "actual": actual[:16] + "..."},
            )

    untracked = [
        p.name
        for p in sorted(dist_dir.iterdir(), key=lambda p: p.name)
        if _is_checksummable(p) and p.name not in expected
    ]

    is_valid = not (mismatches or missing or untracked or errors)
    _logger.info(
        "Checksum verification complete",
        extra={
            "valid": is_valid,
            "checked": checked,
            "mismatches": len(mismatches),
            "missing": len(missing),
            "untracked": len(untracked),
        },
    )
    return VerificationResult(
        is_valid=is_valid,
        checked_count=checked,
        mismatches=mismatches,
        missing_files=missing,
        untracked_files=untracked,
        errors=errors,
    )
