# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Release pipeline steps.

Each CLI command maps to one function here. Every function takes a
RunContext, which carries the version, the dist directory, the image name,
the loaded configuration and the environment the run was started with.
Nothing below reads os.environ directly.

    build    -> run_build
    release  -> run_release   (build, then publish to each provider)
    docker   -> run_docker
    clean    -> run_clean
    verify   -> run_verify
"""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence

from shipwright.config.schema import GitLabCIContext, ShipwrightConfig
from shipwright.logging.logger import get_logger
from shipwright.release.checksums.integrity import VerificationResult, verify_checksums
from shipwright.release.cleanup.cleaner import CleanResult, clean_dist_dir
from shipwright.release.container.image import ImagePublisher, ImageRef, ImageResult
from shipwright.release.environment.validator import require_tools
from shipwright.release.exceptions import PackagingError, ValidationError
from shipwright.release.packaging.packager import BuildResult, build_artifacts
from shipwright.release.publishing.base import Provider, ReleaseProvider
from shipwright.release.publishing.github import GitHubProvider
from shipwright.release.publishing.gitlab import GitLabProvider
from shipwright.release.publishing.publisher import PublishOutcome, publish_all
from shipwright.release.versioning import Version
from shipwright.utils.process import CommandRunner, run_command
from shipwright.utils.retry import SleepFn

_logger: logging.Logger = get_logger(__name__)

# Providers always run in this order, whatever order the flags came in.
PROVIDER_ORDER: tuple[Provider, ...] = (Provider.GITHUB, Provider.GITLAB)
PROVIDER_TOOLS: dict[Provider, str] = {Provider.GITHUB: "gh", Provider.GITLAB: "release-cli"}


@dataclass(frozen=True)
class RunContext:
    """Everything one pipeline invocation needs."""

    version: Version
    dist_dir: Path
    image_name: str
    config: ShipwrightConfig
    environ: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        version: str,
        dist_dir: str | Path,
        image_name: str,
        config: Optional[ShipwrightConfig] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "RunContext":
        """
        Validate the raw CLI values and build a context.

        Raises:
            VersionFormatError: `version` is not v<major>.<minor>.<patch>[-tag].
            ValidationError: `image_name` is empty.
        """
        parsed = Version.parse(version)
        if not image_name.strip():
            raise ValidationError("Image name must not be empty")
        return cls(
            version=parsed,
            dist_dir=Path(dist_dir),
            image_name=image_name.strip(),
            config=config or ShipwrightConfig(),
            environ=dict(environ if environ is not None else os.environ),
        )


def run_build(ctx: RunContext, compress: bool = False) -> BuildResult:
    """
    Package the payload for every configured platform.

    Raises:
        ValidationError: Bad payload or platform list. Nothing was written.
        PackagingError: At least one platform failed. The others were built.
    """
    build = ctx.config.build
    result = build_artifacts(
        payload=Path(build.payload),
        version=ctx.version,
        targets=build.targets(),
        dist_dir=ctx.dist_dir,
        artifact_name=build.artifact_name,
        compress=compress,
        completions=Path(build.completions) if build.completions else None,
    )
    if not result.ok:
        raise PackagingError(result.failures)
    return result


def make_providers(
    ctx: RunContext,
    selected: Sequence[Provider],
    runner: CommandRunner = run_command,
) -> list[ReleaseProvider]:
    """Instantiate the selected providers in canonical order."""
    providers: list[ReleaseProvider] = []
    for provider in PROVIDER_ORDER:
        if provider not in selected:
            continue
        if provider is Provider.GITHUB:
            providers.append(GitHubProvider(ctx.config.github, runner=runner))
        else:
            providers.append(GitLabProvider(ctx.config.gitlab, environ=ctx.environ, runner=runner))
    return providers


def run_release(
    ctx: RunContext,
    providers: Sequence[Provider],
    compress: bool = False,
    runner: CommandRunner = run_command,
    sleep: SleepFn = time.sleep,
) -> list[PublishOutcome]:
    """
    Build, then publish the dist directory to each selected provider.

    The GitLab CI identity and the provider CLIs are checked before the
    build so that a job missing either fails without writing anything.

    Returns:
        One outcome per provider, in the order they ran.

    Raises:
        ValidationError: No provider selected, or bad CI identity.
        ToolMissingError: gh or release-cli is not installed.
        PackagingError: The build failed. Nothing was published.
    """
    if not providers:
        raise ValidationError("At least one of --github or --gitlab must be specified")

    if Provider.GITLAB in providers:
        GitLabCIContext.from_env(ctx.environ)
    require_tools([PROVIDER_TOOLS[p] for p in PROVIDER_ORDER if p in providers])

    run_build(ctx, compress=compress)

    outcomes = publish_all(make_providers(ctx, providers, runner), ctx.version, ctx.dist_dir, sleep=sleep)
    failed = [o.provider for o in outcomes if not o.success]
    if failed:
        _logger.error(
            "Release failed for some providers",
            extra={"failed": failed, "version": str(ctx.version)},
        )
    else:
        _logger.info("Release completed", extra={"version": str(ctx.version)})
    return outcomes


def run_docker(
    ctx: RunContext,
    runner: CommandRunner = run_command,
    sleep: SleepFn = time.sleep,
) -> ImageResult:
    """
    Build and push the multi-platform image as <image>:<version> and <image>:latest.

    Raises:
        ValidationError: Bad image name.
        ToolMissingError: docker is not installed.
        BuildError: Daemon, builder, registry login or build failure.
        RegistryIntegrityError: A pushed tag does not resolve.
    """
    image = ImageRef(repository=ctx.image_name, version=ctx.version)
    require_tools(["docker"])
    publisher = ImagePublisher(ctx.config.docker, runner=runner, sleep=sleep, environ=ctx.environ)

    _logger.info("Setting up Docker buildx", extra={"image": ctx.image_name})
    publisher.wait_for_daemon()
    publisher.ensure_builder()
    if ctx.config.docker.require_login:
        publisher.check_login()
    return publisher.build_and_push(image)


def run_clean(ctx: RunContext) -> CleanResult:
    return clean_dist_dir(ctx.dist_dir, min_free_bytes=ctx.config.clean.min_free_bytes)


def run_verify(ctx: RunContext) -> VerificationResult:
    """Re-hash the dist directory against its checksum manifest."""
    result = verify_checksums(ctx.dist_dir)
    log_fn = _logger.info if result.is_valid else _logger.error
    log_fn(
        "Checksum verification finished",
        extra={
            "valid": result.is_valid,
            "checked": result.checked_count,
            "mismatches": list(result.mismatches),
            "missing": list(result.missing_files),
            "untracked": list(result.untracked_files),
        },
    )
    return result
