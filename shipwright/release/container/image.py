# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Multi-platform container image build and push via docker buildx.

Sequence for `shipwright ... docker`:

  1. wait_for_daemon()  - poll `docker info`
  2. ensure_builder()   - reuse a running buildx builder or create one
  3. check_login()      - `docker system info` must show a registry user
  4. build_and_push()   - skip if both tags already resolve, otherwise one
                          `docker buildx build --push` for every platform,
                          then check that both tags resolve

A push that reports success but leaves a tag unresolvable raises
RegistryIntegrityError. It is not retried: pushing again would hide
whatever went wrong in the registry.
"""

import logging
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Sequence

from shipwright.config.schema import DockerConfig
from shipwright.logging.logger import get_logger
from shipwright.release.exceptions import (
    BuildError,
    BuilderError,
    PollTimeoutError,
    RegistryIntegrityError,
    ValidationError,
)
from shipwright.release.versioning import Version
from shipwright.utils.process import CommandRunner, run_command
from shipwright.utils.retry import SleepFn, poll_until

_logger: logging.Logger = get_logger(__name__)

_REPOSITORY_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._/:-]*[a-z0-9]$|^[a-z0-9]$")

OCI_LABEL_PREFIX = "org.opencontainers.image"


@dataclass(frozen=True)
class ImageRef:
    """An image repository plus the version it is tagged with."""

    repository: str
    version: Version

    def __post_init__(self) -> None:
        if not _REPOSITORY_PATTERN.match(self.repository):
            raise ValidationError(f"Invalid image name: {self.repository!r}")

    @property
    def tags(self) -> tuple[str, str]:
        """Version tag first, then latest."""
        return (f"{self.repository}:{self.version}", f"{self.repository}:latest")


@dataclass(frozen=True)
class ImageResult:
    """Outcome of build_and_push."""

    image: ImageRef
    skipped: bool
    tags: tuple[str, ...]
    platforms: tuple[str, ...]
    vcs_ref: Optional[str] = None
    build_date: Optional[str] = None


def utc_build_date(now: Optional[datetime] = None) -> str:
    """UTC timestamp in the form OCI labels use, e.g. 2024-05-01T12:00:00Z."""
    moment = now or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def resolve_vcs_ref(
    environ: Optional[Mapping[str, str]] = None,
    runner: CommandRunner = run_command,
) -> str:
    """
    Commit the image is built from.

    CI_COMMIT_SHA wins when set. Otherwise ask git.

    Raises:
        BuildError: Neither source produced a revision.
    """
    env = environ if environ is not None else os.environ
    sha = env.get("CI_COMMIT_SHA", "").strip()
    if sha:
        return sha

    result = runner(["git", "rev-parse", "HEAD"], timeout_seconds=30)
    revision = result.stdout.strip()
    if not result.ok or not revision:
        raise BuildError("Failed to determine VCS reference")
    return revision


class ImagePublisher:
    """Drives docker and buildx for one image repository."""

    def __init__(
        self,
        config: DockerConfig,
        runner: CommandRunner = run_command,
        sleep: SleepFn = time.sleep,
        environ: Optional[Mapping[str, str]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._config = config
        self._run = runner
        self._sleep = sleep
        self._environ = environ if environ is not None else os.environ
        self._clock = clock

    def _poll(self, predicate: Callable[[], bool], description: str) -> int:
        return poll_until(
            predicate,
            timeout_seconds=self._config.poll_timeout_seconds,
            interval_seconds=self._config.poll_interval_seconds,
            description=description,
            sleep=self._sleep,
            logger=_logger,
        )

    def _succeeds(self, args: Sequence[str]) -> bool:
        return self._run(list(args), timeout_seconds=120).ok

    def wait_for_daemon(self) -> None:
        """
        Raises:
            BuildError: The docker daemon did not answer before the deadline.
        """
        try:
            self._poll(lambda: self._succeeds(["docker", "info"]), "Docker daemon")
        except PollTimeoutError as err:
            raise BuildError(f"Docker daemon is not running or not accessible: {err}") from err

    def check_login(self) -> None:
        """
        Refuse to build when `docker system info` shows no registry user,
        so an unauthenticated push fails before the build starts.

        Raises:
            BuildError: Not logged in, or `docker system info` failed.
        """
        result = self._run(["docker", "system", "info"], timeout_seconds=60)
        if not result.ok:
            raise BuildError(f"Failed to read docker system info: {result.stderr.strip()}")
        if not re.search(r"^\s*Username:", result.stdout, re.MULTILINE):
            raise BuildError("Docker is not logged in. Please authenticate first")
        _logger.debug("Docker registry login found")

    def _builder_state(self) -> tuple[bool, bool]:
        """(present, running) for the configured builder, from `docker buildx ls`."""
        result = self._run(["docker", "buildx", "ls"], timeout_seconds=60)
        if not result.ok:
            return False, False

        name = self._config.builder_name
        present = False
        running = False
        in_block = False
        for line in result.stdout.splitlines():
            fields = line.split()
            if not fields:
                continue
            head = fields[0].rstrip("*")
            if head == name:
                present = in_block = True
            elif head == "\\_" or (in_block and head.startswith(name)):
                # Node lines under a builder carry its status.
                pass
            else:
                in_block = False
            if in_block and "running" in line:
                running = True
        return present, running

    def ensure_builder(self) -> None:
        """
        Make sure the buildx builder exists, is selected and is running.

        Raises:
            BuilderError: A step did not succeed before its deadline.
        """
        name = self._config.builder_name
        present, running = self._builder_state()
        if present and running:
            _logger.info("Docker buildx builder already exists and is running", extra={"builder": name})
            return

        if present:
            _logger.info("Removing existing non-running builder", extra={"builder": name})
            self._run(["docker", "buildx", "rm", name], timeout_seconds=60)

        steps: list[tuple[str, Callable[[], bool]]] = [
            (
                f"buildx builder '{name}' to be created",
                lambda: self._succeeds(["docker", "buildx", "create", "--use", "--name", name]),
            ),
            (
                f"buildx builder '{name}' to bootstrap",
                lambda: self._succeeds(["docker", "buildx", "inspect", "--bootstrap", name]),
            ),
            (
                f"buildx builder '{name}' to enter running state",
                lambda: "Status: running" in self._run(["docker", "buildx", "inspect", name], timeout_seconds=60).stdout,
            ),
        ]
        for description, predicate in steps:
            try:
                self._poll(predicate, description)
            except PollTimeoutError as err:
                raise BuilderError(str(err)) from err

        _logger.info("Docker buildx setup completed successfully", extra={"builder": name})

    def image_exists(self, tag: str) -> bool:
        return self._run(["docker", "manifest", "inspect", tag], timeout_seconds=120).ok

    def build_command(
        self,
        image: ImageRef,
        platforms: Sequence[str],
        vcs_ref: str,
        build_date: str,
    ) -> list[str]:
        version = str(image.version)
        args = [
            "docker",
            "buildx",
            "build",
            "--platform",
            ",".join(platforms),
            "--build-arg",
            f"VERSION={version}",
            "--build-arg",
            f"BUILD_DATE={build_date}",
            "--build-arg",
            f"VCS_REF={vcs_ref}",
            "--label",
            f"{OCI_LABEL_PREFIX}.created={build_date}",
            "--label",
            f"{OCI_LABEL_PREFIX}.version={version}",
            "--label",
            f"{OCI_LABEL_PREFIX}.revision={vcs_ref}",
        ]
        for tag in image.tags:
            args.extend(["-t", tag])
        if self._config.dockerfile:
            args.extend(["-f", self._config.dockerfile])
        args.extend(["--push", self._config.context])
        return args

    def build_and_push(
        self,
        image: ImageRef,
        platforms: Optional[Sequence[str]] = None,
        vcs_ref: Optional[str] = None,
    ) -> ImageResult:
        """
        Build every platform in one buildx invocation and push both tags.

        Raises:
            BuildError: No VCS revision, or the build command failed.
            RegistryIntegrityError: A tag does not resolve after the push.
        """
        targets = tuple(platforms or self._config.platforms)

        if all(self.image_exists(tag) for tag in image.tags):
            _logger.info("Docker images already exist, skipping build", extra={"tags": list(image.tags)})
            return ImageResult(image=image, skipped=True, tags=image.tags, platforms=targets)

        revision = vcs_ref or resolve_vcs_ref(self._environ, self._run)
        build_date = utc_build_date(self._clock())

        _logger.info(
            "Building and pushing Docker images",
            extra={"tags": list(image.tags), "platforms": list(targets), "vcs_ref": revision},
        )
        result = self._run(
            self.build_command(image, targets, revision, build_date),
            timeout_seconds=self._config.build_timeout_seconds,
        )
        if not result.ok:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise BuildError(f"Failed to build and push Docker images: {detail}")

        for tag in image.tags:
            if not self.image_exists(tag):
                raise RegistryIntegrityError(tag)

        _logger.info("Docker images built and pushed successfully", extra={"tags": list(image.tags)})
        return ImageResult(
            image=image,
            skipped=False,
            tags=image.tags,
            platforms=targets,
            vcs_ref=revision,
            build_date=build_date,
        )
