# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Artifact packager. Turns one payload into a per-platform artifact set.

For every platform target the payload is copied byte-for-byte to

    <dist>/<name>_<version>_<os>_<arch>[.exe]

and marked executable. With compression on, each copy is wrapped into a
`.zip` (windows) or `.tar.gz` (everything else) and the raw copy is
removed, so the final directory holds only archives plus checksums.txt.

The batch is best-effort. A failure on one platform is recorded and the
loop moves on to the next one; the caller gets every failure back in
BuildResult and decides what exit code that means. Whatever a failing
platform left half-written is removed so the manifest never lists it.
"""

import logging
import os
import re
import tarfile
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from shipwright.logging.logger import get_logger
from shipwright.release.checksums.integrity import (
    append_checksum,
    truncate_manifest,
)
from shipwright.release.exceptions import ValidationError
from shipwright.release.platforms import PlatformTarget
from shipwright.release.versioning import Version
from shipwright.utils.filesystem import atomic_copy, make_executable, safe_delete

_logger: logging.Logger = get_logger(__name__)

# Archive member name for the optional shell completion script.
COMPLETIONS_MEMBER = "completions"


class ArtifactState(str, Enum):
    RAW = "raw"
    ARCHIVED = "archived"
    CHECKSUMMED = "checksummed"


@dataclass
class Artifact:
    """One produced file, tied to exactly one platform and version."""

    target: PlatformTarget
    version: Version
    path: Path
    state: ArtifactState = ArtifactState.RAW
    sha256: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class TargetFailure:
    """A platform that could not be packaged, and why."""

    target: PlatformTarget
    error: str


@dataclass
class BuildResult:
    """Everything a build produced, plus everything that went wrong."""

    dist_dir: Path
    manifest_path: Path
    artifacts: list[Artifact] = field(default_factory=list)
    failures: list[TargetFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def artifact_basename(artifact_name: str, version: Version, target: PlatformTarget) -> str:
    """`<name>_<version>_<os>_<arch>` plus `.exe` for windows targets."""
    return f"{artifact_name}_{version}_{target.slug}{target.executable_suffix}"


def archive_path_for(raw_path: Path, target: PlatformTarget) -> Path:
    return raw_path.with_name(raw_path.name + target.archive_suffix)


def _validate_inputs(
    payload: Path,
    targets: Sequence[PlatformTarget],
    artifact_name: str,
    completions: Optional[Path],
) -> None:
    if not payload.exists():
        raise ValidationError(f"Source file '{payload}' not found")
    if not payload.is_file():
        raise ValidationError(f"Source path '{payload}' is not a regular file")
    if not os.access(payload, os.R_OK):
        raise ValidationError(f"Source file '{payload}' is not readable")
    if not targets:
        raise ValidationError("At least one platform target is required")
    if len(set(targets)) != len(targets):
        raise ValidationError("Platform targets must be unique")
    if not artifact_name or "/" in artifact_name or artifact_name.startswith("."):
        raise ValidationError(f"Invalid artifact name '{artifact_name}'")
    if completions is not None and not completions.is_file():
        raise ValidationError(f"Completion script '{completions}' not found")


def _write_zip(raw_path: Path, archive_path: Path, completions: Optional[Path]) -> None:
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.write(raw_path, arcname=raw_path.name)
        if completions is not None:
            archive.write(completions, arcname=COMPLETIONS_MEMBER)


def _write_tar_gz(raw_path: Path, archive_path: Path, completions: Optional[Path]) -> None:
    with tarfile.open(archive_path, "w:gz") as archive:
        archive.add(raw_path, arcname=raw_path.name, recursive=False)
        if completions is not None:
            archive.add(completions, arcname=COMPLETIONS_MEMBER, recursive=False)


def compress_artifact(raw_path: Path, target: PlatformTarget, completions: Optional[Path] = None) -> Path:
    """
    Archive a raw artifact in its platform's format and remove the raw copy.

    The archive holds the raw file under its own basename. A partially
    written archive is deleted before the error propagates.

    Returns:
        Path to the archive.
    """
    archive_path = archive_path_for(raw_path, target)
    try:
        if target.is_windows:
            _write_zip(raw_path, archive_path, completions)
        else:
            _write_tar_gz(raw_path, archive_path, completions)
    except BaseException:
        safe_delete(archive_path)
        raise
    raw_path.unlink()
    return archive_path


def _package_one(
    payload: Path,
    version: Version,
    target: PlatformTarget,
    dist_dir: Path,
    artifact_name: str,
    compress: bool,
    completions: Optional[Path],
) -> Artifact:
    raw_path = dist_dir / artifact_basename(artifact_name, version, target)
    artifact = Artifact(target=target, version=version, path=raw_path)

    atomic_copy(payload, raw_path)
    make_executable(raw_path)

    if compress:
        artifact.path = compress_artifact(raw_path, target, completions)
        artifact.state = ArtifactState.ARCHIVED

    artifact.sha256 = append_checksum(dist_dir, artifact.path)
    artifact.state = ArtifactState.CHECKSUMMED
    return artifact


def _discard_partial(dist_dir: Path, artifact_name: str, version: Version, target: PlatformTarget) -> None:
    raw_path = dist_dir / artifact_basename(artifact_name, version, target)
    for path in (raw_path, archive_path_for(raw_path, target)):
        try:
            safe_delete(path)
        except OSError as err:
            _logger.warning(
                "Could not remove partial artifact",
                extra={"path": str(path), "error": str(err)},
            )


def _final_name(artifact_name: str, version: Version, target: PlatformTarget, compress: bool) -> str:
    raw_name = artifact_basename(artifact_name, version, target)
    return raw_name + target.archive_suffix if compress else raw_name


def _prune_stale_artifacts(dist_dir: Path, artifact_name: str, keep: set[str]) -> list[str]:
    """
    Remove artifacts of `artifact_name` left by earlier builds whose names
    are not in `keep`. Files not named `<artifact_name>_v<digit>...` are
    left alone.
    """
    pattern = re.compile(re.escape(artifact_name) + r"_v[0-9]")
    removed: list[str] = []
    for path in sorted(dist_dir.iterdir(), key=lambda p: p.name):
        if not path.is_file() or not pattern.match(path.name) or path.name in keep:
            continue
        path.unlink()
        removed.append(path.name)
    if removed:
        _logger.info("Removed stale artifacts", extra={"files": removed})
    return removed


def build_artifacts(
    payload: Path,
    version: Version,
    targets: Sequence[PlatformTarget],
    dist_dir: Path,
    artifact_name: str,
    compress: bool = False,
    completions: Optional[Path] = None,
) -> BuildResult:
    """
    Produce one artifact per platform target from a single payload.

    Args:
        payload: The file copied verbatim for every target.
        version: Release version, embedded in every artifact name.
        targets: Platforms to build, processed in this order.
        dist_dir: Output directory. Created if missing. Earlier artifacts of
            `artifact_name` that this build does not produce are removed,
            unrelated files are left alone, and checksums.txt is truncated.
        artifact_name: Name prefix for every artifact.
        compress: Archive each artifact and drop the raw copy.
        completions: Optional shell completion script bundled into archives.

    Returns:
        BuildResult listing finished artifacts and per-platform failures.

    Raises:
        ValidationError: Bad inputs, detected before anything is written.
        OSError: If dist_dir or the manifest cannot be created at all.
    """
    _validate_inputs(payload, targets, artifact_name, completions)

    _logger.info(
        "Building for platforms",
        extra={
            "version": str(version),
            "platforms": [t.slug for t in targets],
            "compress": compress,
            "dist_dir": str(dist_dir),
        },
    )

    dist_dir.mkdir(parents=True, exist_ok=True)
    _prune_stale_artifacts(
        dist_dir,
        artifact_name,
        {_final_name(artifact_name, version, t, compress) for t in targets},
    )
    manifest = truncate_manifest(dist_dir)
    result = BuildResult(dist_dir=dist_dir, manifest_path=manifest)

    for target in targets:
        _logger.info("Processing platform", extra={"platform": target.slug})
        try:
            artifact = _package_one(
                payload, version, target, dist_dir, artifact_name, compress, completions
            )
        except (OSError, tarfile.TarError, zipfile.BadZipFile) as err:
            _logger.error(
                "Failed to package platform",
                extra={"platform": target.slug, "error": str(err)},
            )
            _discard_partial(dist_dir, artifact_name, version, target)
            result.failures.append(TargetFailure(target=target, error=str(err)))
            continue

        result.artifacts.append(artifact)
        _logger.debug(
            "Generated artifact",
            extra={"platform": target.slug, "file": artifact.name},
        )

    if result.ok:
        _logger.info(
            "Build completed successfully",
            extra={"artifacts": len(result.artifacts), "manifest": str(manifest)},
        )
    else:
        _logger.error(
            f"Build completed with {len(result.failures)} errors",
            extra={"failed_platforms": [f.target.slug for f in result.failures]},
        )
    return result
