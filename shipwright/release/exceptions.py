# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Exceptions raised by the release pipeline.

They sit in one module so the CLI layer can map an error kind to an exit
code without importing every subsystem. The grouping mirrors how failures
propagate:

  - ValidationError and ToolMissingError are pre-flight. Nothing has been
    written yet when they are raised.
  - PackagingError is raised once, after every platform has been attempted.
  - PublishError is scoped to one provider. The other provider still runs.
  - RegistryIntegrityError means a push reported success but a tag does not
    resolve. It is never retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from shipwright.release.packaging.packager import TargetFailure


class ShipwrightError(Exception):
    """Base for every error the pipeline raises on purpose."""


class ValidationError(ShipwrightError):
    """Bad input detected before any side effect."""


class VersionFormatError(ValidationError):
    """Version string does not match v<major>.<minor>.<patch>[-tag]."""


class UnsupportedPlatformError(ValidationError):
    """An (os, arch) pair outside the supported matrix."""


class CIEnvironmentError(ValidationError):
    """
    Required CI identity variables are missing or malformed.

    Carries both lists so the message can name every offending variable at
    once instead of making the user fix them one run at a time.
    """

    def __init__(self, missing: Sequence[str], invalid: Sequence[str]) -> None:
        self.missing = list(missing)
        self.invalid = list(invalid)
        parts: list[str] = []
        if self.missing:
            parts.append(f"Required GitLab CI variables not set: {' '.join(self.missing)}")
        if self.invalid:
            parts.append(f"Invalid GitLab CI variable values: {' '.join(self.invalid)}")
        super().__init__("; ".join(parts))


class ToolMissingError(ShipwrightError):
    """A required external executable is not on PATH."""

    def __init__(self, tool: str) -> None:
        self.tool = tool
        super().__init__(f"Required tool not found: {tool}")


class CommandError(ShipwrightError):
    """An external command exited non-zero or timed out."""


class PackagingError(ShipwrightError):
    """One or more platform targets failed during a build."""

    def __init__(self, failures: Sequence[TargetFailure]) -> None:
        self.failures = list(failures)
        names = ", ".join(f.target.slug for f in self.failures)
        super().__init__(f"Build completed with {len(self.failures)} errors ({names})")


class PublishError(ShipwrightError):
    """A release could not be published to a provider."""


class ReleaseExistsError(PublishError):
    """The provider already has a release under this version."""

    def __init__(self, provider: str, version: str) -> None:
        self.provider = provider
        self.version = version
        super().__init__(f"Release {version} already exists on {provider}")


class AuthenticationError(PublishError):
    """The provider tooling is not authenticated."""


class TransientPublishError(PublishError):
    """A publish attempt failed in a way that is worth retrying."""


class RetryExhaustedError(ShipwrightError):
    """A retried operation failed on every attempt."""

    def __init__(self, description: str, attempts: int, last_error: BaseException) -> None:
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")


class PollTimeoutError(ShipwrightError):
    """A bounded polling loop ran out of time."""


class BuildError(ShipwrightError):
    """Container image build or push failed."""


class BuilderError(BuildError):
    """The multi-platform builder could not be created or bootstrapped."""


class RegistryIntegrityError(ShipwrightError):
    """A tag reported as pushed does not resolve in the registry."""

    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"Failed to verify pushed image: {tag}")


class CleanupError(ShipwrightError):
    """The distribution directory could not be removed safely."""


class InstallError(ShipwrightError):
    """Installing or uninstalling a released binary failed."""
