# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Release publishing across providers.

publish() runs one provider through a fixed sequence:

  1. The assets are exactly what checksums.txt lists, plus the manifest.
  2. provider.ensure_ready() checks tooling and credentials.
  3. If the version is already released, stop with ReleaseExistsError
     before anything is uploaded.
  4. provider.create_release(), retried per the provider's policy. Only
     TransientPublishError is retried.

publish_all() runs each requested provider in order and never lets one
provider's failure stop the next.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from shipwright.logging.logger import get_logger
from shipwright.release.checksums.integrity import (
    MANIFEST_FILENAME,
    ManifestFormatError,
    manifest_path,
    parse_checksum_file,
)
from shipwright.release.exceptions import (
    PublishError,
    ReleaseExistsError,
    ShipwrightError,
    TransientPublishError,
)
from shipwright.release.publishing.base import ReleaseProvider
from shipwright.release.versioning import Version
from shipwright.utils.retry import RetryPolicy, SleepFn, retry_with_policy

_logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class PublishOutcome:
    """What happened on one provider."""

    provider: str
    success: bool
    attempts: int
    assets: tuple[str, ...] = ()
    error: Optional[str] = None


def list_release_assets(dist_dir: Path) -> list[Path]:
    """
    The artifacts listed in checksums.txt plus the manifest itself, sorted by name.

    Anything else in the dist directory is never uploaded.

    Raises:
        PublishError: Missing dist dir or manifest, a malformed or empty
            manifest, or a listed artifact that is not on disk.
    """
    if not dist_dir.is_dir():
        raise PublishError(f"Distribution directory {dist_dir} does not exist")
    manifest = manifest_path(dist_dir)
    try:
        listed = parse_checksum_file(manifest)
    except FileNotFoundError:
        raise PublishError(f"No {MANIFEST_FILENAME} found in {dist_dir}") from None
    except ManifestFormatError as err:
        raise PublishError(f"Malformed {MANIFEST_FILENAME} in {dist_dir}: {err}") from err
    if not listed:
        raise PublishError(f"No artifacts found in {dist_dir}")

    missing = sorted(name for name in listed if not (dist_dir / name).is_file())
    if missing:
        raise PublishError(f"Artifacts listed in {MANIFEST_FILENAME} are missing: {', '.join(missing)}")
    return sorted([manifest, *(dist_dir / name for name in listed)], key=lambda p: p.name)


def publish(
    provider: ReleaseProvider,
    version: Version,
    dist_dir: Path,
    retry_policy: Optional[RetryPolicy] = None,
    sleep: SleepFn = time.sleep,
) -> PublishOutcome:
    """
    Publish every asset in `dist_dir` as release `version` on one provider.

    `retry_policy` overrides the provider's own policy for release creation.

    Returns:
        A successful PublishOutcome.

    Raises:
        PublishError: Missing or empty dist dir, not ready, or create failed.
        ReleaseExistsError: The release already exists. Nothing was uploaded.
        RetryExhaustedError: Every attempt failed transiently.
        ToolMissingError, CIEnvironmentError: From ensure_ready().
    """
    assets = list_release_assets(dist_dir)

    _logger.info(
        f"Creating {provider.name} release",
        extra={"provider": provider.name, "version": str(version), "assets": len(assets)},
    )
    provider.ensure_ready()

    if provider.release_exists(version):
        raise ReleaseExistsError(provider.name, str(version))

    attempts = 0

    def _create() -> None:
        nonlocal attempts
        attempts += 1
        provider.create_release(version, assets)

    retry_with_policy(
        _create,
        retry_policy or provider.retry_policy,
        should_retry=lambda err: isinstance(err, TransientPublishError),
        description=f"{provider.name} release creation",
        sleep=sleep,
        logger=_logger,
    )

    return PublishOutcome(
        provider=provider.name,
        success=True,
        attempts=attempts,
        assets=tuple(a.name for a in assets),
    )


def publish_all(
    providers: Sequence[ReleaseProvider],
    version: Version,
    dist_dir: Path,
    sleep: SleepFn = time.sleep,
) -> list[PublishOutcome]:
    """
    Run publish() for each provider in order.

    A provider that fails is recorded as a failed outcome and the next one
    still runs. Callers decide the exit status from the outcomes.
    """
    outcomes: list[PublishOutcome] = []
    for provider in providers:
        try:
            outcome = publish(provider, version, dist_dir, sleep=sleep)
        except (ShipwrightError, OSError) as err:
            _logger.error(
                f"Failed to create {provider.name} release",
                extra={"provider": provider.name, "version": str(version), "error": str(err)},
            )
            attempts = getattr(err, "attempts", 0)
            outcome = PublishOutcome(
                provider=provider.name,
                success=False,
                attempts=attempts,
                error=str(err),
            )
        else:
            _logger.info(
                f"{provider.name} release completed",
                extra={"provider": provider.name, "version": str(version), "attempts": outcome.attempts},
            )
        outcomes.append(outcome)
    return outcomes
