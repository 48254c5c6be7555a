# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Release provider interface.

A provider is a remote service that hosts tagged releases with downloadable
assets. Each concrete provider wraps one CLI tool. The publisher drives all
of them through the same four steps:

    ensure_ready() -> release_exists() -> create_release() (with retries)

so duplicate detection and retry behaviour are identical across providers,
and a provider only has to know how to talk to its own tool.
"""

import enum
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Sequence

from shipwright.release.versioning import Version
from shipwright.utils.retry import SINGLE_ATTEMPT, RetryPolicy


class Provider(str, enum.Enum):
    GITHUB = "github"
    GITLAB = "gitlab"


def release_title(version: Version) -> str:
    return f"Release {version}"


def release_notes(version: Version) -> str:
    return f"Automated release of version {version}"


class ReleaseProvider(ABC):
    """One release hosting service."""

    provider: Provider

    @property
    def name(self) -> str:
        return self.provider.value

    @property
    def retry_policy(self) -> RetryPolicy:
        """How create_release is retried. Providers override this."""
        return SINGLE_ATTEMPT

    @abstractmethod
    def ensure_ready(self) -> None:
        """
        Check tooling and credentials before any network write.

        Raises:
            ToolMissingError, AuthenticationError, CIEnvironmentError
        """

    @abstractmethod
    def release_exists(self, version: Version) -> bool:
        """Whether a release tagged `version` is already published."""

    @abstractmethod
    def create_release(self, version: Version, assets: Sequence[Path]) -> None:
        """
        Create the release and attach every asset.

        Raises:
            TransientPublishError: For failures worth retrying.
            PublishError: For everything else.
        """
