# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
GitHub releases through the `gh` CLI.

Release creation is the only step that gets retried: 3 attempts, 5s then
10s apart by default. A failing `gh release create` usually means a flaky
upload, while a failing `gh auth status` will not fix itself by waiting.
"""

import logging
from pathlib import Path
from typing import Sequence

from shipwright.config.schema import GitHubConfig
from shipwright.logging.logger import get_logger
from shipwright.release.environment.validator import check_gh_version
from shipwright.release.exceptions import AuthenticationError, PublishError, TransientPublishError
from shipwright.release.publishing.base import Provider, ReleaseProvider, release_notes, release_title
from shipwright.release.versioning import Version
from shipwright.utils.process import CommandRunner, run_command
from shipwright.utils.retry import RetryPolicy

_logger: logging.Logger = get_logger(__name__)


class GitHubProvider(ReleaseProvider):
    provider = Provider.GITHUB

    def __init__(self, config: GitHubConfig, runner: CommandRunner = run_command) -> None:
        self._config = config
        self._run = runner

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self._config.max_attempts,
            initial_delay_seconds=self._config.initial_backoff_seconds,
            backoff_factor=self._config.backoff_factor,
        )

    def _repo_args(self) -> list[str]:
        if self._config.repository:
            return ["--repo", self._config.repository]
        return []

    def ensure_ready(self) -> None:
        version_check = check_gh_version(self._config.min_gh_version, runner=self._run)
        if not version_check.passed:
            raise PublishError(version_check.message)

        auth = self._run(["gh", "auth", "status"], timeout_seconds=60)
        if not auth.ok:
            raise AuthenticationError(
                "GitHub CLI not authenticated. Please run 'gh auth login' first"
            )

    def release_exists(self, version: Version) -> bool:
        result = self._run(
            ["gh", "release", "view", str(version), *self._repo_args()],
            timeout_seconds=60,
        )
        return result.ok

    def create_release(self, version: Version, assets: Sequence[Path]) -> None:
        if not assets:
            raise PublishError("No assets to upload")

        args = [
            "gh",
            "release",
            "create",
            str(version),
            *(str(a) for a in assets),
            "--title",
            release_title(version),
            "--notes",
            release_notes(version),
            *self._repo_args(),
        ]
        result = self._run(args, timeout_seconds=self._config.timeout_seconds)
        if not result.ok:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise TransientPublishError(f"gh release create failed: {detail}")

        _logger.info(
            "GitHub release created successfully",
            extra={"provider": self.name, "version": str(version), "assets": len(assets)},
        )
